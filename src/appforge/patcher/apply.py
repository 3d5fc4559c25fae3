"""Batch application of edits against a file cache."""

import asyncio
import logging
from typing import Iterable

from appforge.models import Edit, EditOutcome, FailedEdit
from appforge.patcher.cache import FileCache
from appforge.patcher.matching import (
    DEFAULT_SIMILARITY_THRESHOLD,
    describe_failure,
    do_replace,
)

logger = logging.getLogger(__name__)


def group_edits_by_path(edits: Iterable[Edit]) -> dict[str, list[Edit]]:
    """Group edits by path, keeping first-seen path order and stream order."""
    grouped: dict[str, list[Edit]] = {}
    for edit in edits:
        grouped.setdefault(edit.path, []).append(edit)
    return grouped


async def _apply_path_edits(
    path: str,
    path_edits: list[Edit],
    known_files: set[str],
    cache: FileCache,
    threshold: float,
) -> Edit | FailedEdit:
    """Apply all edits for one path; any failure voids the whole path."""
    first = path_edits[0]

    if first.is_creation:
        if path in known_files or path in cache:
            return FailedEdit(edit=first, error=f"Cannot create {path} - file already exists")
        current = ""
    else:
        content = await cache.get(path)
        if content is None:
            return FailedEdit(edit=first, error=f"Error reading {path}: File not found")
        current = content

    for edit in path_edits:
        new_content = do_replace(current, edit.original, edit.updated)
        if new_content is None:
            return FailedEdit(
                edit=edit,
                error=describe_failure(path, edit.original, edit.updated, current, threshold),
            )
        current = new_content

    return Edit(path=path, original=first.original, updated=current)


async def apply_edits(
    existing_files: Iterable[str],
    edits: list[Edit],
    cache: FileCache,
    project_id: str = "",
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> EditOutcome:
    """Apply edits grouped by path and partition them into passed and failed.

    Edits for one path are applied in stream order against the cumulative
    result. Distinct paths are applied concurrently. A path passes only when
    every one of its edits succeeds; it is then reported once, with
    ``updated`` holding the final content, and the cache is updated. A path
    with a failing edit reports only that first failure and leaves the cache
    untouched.

    Args:
        existing_files: Paths known to exist in the current version.
        edits: Edits in stream order.
        cache: File cache for this run; seeds and receives file contents.
        project_id: Used for log context only.
        threshold: Similarity threshold for "did you mean" diagnostics.

    Returns:
        EditOutcome with passed and failed edits in first-seen path order.
    """
    grouped = group_edits_by_path(edits)
    if not grouped:
        return EditOutcome()

    logger.info("[coder:%s] Applying edits %s", project_id, ", ".join(grouped))
    known_files = set(existing_files)

    results = await asyncio.gather(
        *(
            _apply_path_edits(path, path_edits, known_files, cache, threshold)
            for path, path_edits in grouped.items()
        )
    )

    passed: list[Edit] = []
    failed: list[FailedEdit] = []
    for result in results:
        if isinstance(result, FailedEdit):
            logger.info("[coder:%s] Edit to %s failed", project_id, result.edit.path)
            failed.append(result)
        else:
            cache.set(result.path, result.updated)
            passed.append(result)

    return EditOutcome(passed=passed, failed=failed)
