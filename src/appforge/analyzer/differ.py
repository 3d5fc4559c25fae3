"""Two-version declaration diff."""

import logging

from appforge.analyzer.config import AnalyzerConfig
from appforge.analyzer.exceptions import UnsupportedSourceError
from appforge.analyzer.extractor import extract_declarations
from appforge.models import DeclarationChangeSet, ExtractedDeclaration

logger = logging.getLogger(__name__)


def safe_extract(
    content: str, file_path: str, config: AnalyzerConfig | None = None
) -> dict[str, ExtractedDeclaration]:
    """``extract_declarations`` that degrades to an empty mapping on failure."""
    try:
        return extract_declarations(content, file_path, config)
    except UnsupportedSourceError as exc:
        logger.debug("Skipping declarations of %s: %s", file_path, exc)
        return {}
    except Exception as exc:
        logger.warning("Failed to extract declarations from %s: %s", file_path, exc)
        return {}


def diff_declarations(
    current: dict[str, ExtractedDeclaration],
    previous: dict[str, ExtractedDeclaration],
) -> DeclarationChangeSet:
    """Classify declarations as new, updated (text differs) or deleted."""
    changes = DeclarationChangeSet()
    for name, declaration in current.items():
        if name not in previous:
            changes.new_declarations[name] = declaration.dependencies
        elif previous[name].source_text != declaration.source_text:
            changes.updated_declarations[name] = declaration.dependencies
    for name, declaration in previous.items():
        if name not in current:
            changes.deleted_declarations[name] = declaration.dependencies
    return changes


def process_declarations(
    content: str,
    file_path: str,
    previous_content: str | None = None,
    config: AnalyzerConfig | None = None,
) -> DeclarationChangeSet:
    """Compute the declaration changes of a file between two versions.

    Never raises: unparseable input yields an empty (or partial) result.

    Args:
        content: New file content.
        file_path: Project path of the file.
        previous_content: Content in the parent version; when absent every
            declaration is new.
        config: Project-layout conventions.

    Returns:
        DeclarationChangeSet with the three name -> dependencies mappings.
    """
    current = safe_extract(content, file_path, config)
    if not previous_content:
        return DeclarationChangeSet(
            new_declarations={name: decl.dependencies for name, decl in current.items()}
        )
    previous = safe_extract(previous_content, file_path, config)
    return diff_declarations(current, previous)
