"""Dependency-graph enrichment of a deployed version.

Per changed file the analyzer's delta decides which declaration rows the
version stops referencing and which new rows it gains. Model calls and
object-store reads happen first; every row change then lands in one
transaction together with the ``enriched`` progress advance.
"""

import logging
import posixpath
import sqlite3
from dataclasses import dataclass, field

from appforge.agents.annotator import Annotator
from appforge.analyzer import AnalyzerConfig, diff_declarations, safe_extract
from appforge.analyzer.paths import to_project_path
from appforge.collaborators.exceptions import ObjectNotFoundError
from appforge.collaborators.object_store import ObjectStore
from appforge.models import (
    Declaration,
    DeclarationChangeSet,
    DeclarationDependency,
    DeclarationSpecs,
    ExternalDependency,
    ExtractedDeclaration,
    FileRecord,
    VersionProgress,
    is_canvas_node,
)
from appforge.orchestrator.state import check_transition
from appforge.persistence import ProjectDatabase
from appforge.persistence import repository as repo
from appforge.utils.ast_parser import is_supported_source

logger = logging.getLogger(__name__)


@dataclass
class FileDelta:
    """Analyzer and annotator output for one changed file."""

    path: str
    file_id: str
    changes: DeclarationChangeSet
    declarations: dict[str, ExtractedDeclaration]
    specs: dict[str, DeclarationSpecs] = field(default_factory=dict)

    @property
    def written_names(self) -> list[str]:
        """New and updated names, in source order."""
        touched = set(self.changes.new_declarations) | set(self.changes.updated_declarations)
        return [name for name in self.declarations if name in touched]


@dataclass
class EnrichmentReport:
    files: int = 0
    inserted: int = 0
    removed: int = 0
    internal_edges: int = 0
    package_edges: int = 0
    canvas_nodes: int = 0
    skipped_packages: list[str] = field(default_factory=list)


async def read_file_record(store: ObjectStore, project_id: str, record: FileRecord) -> str:
    content = await store.read_file(project_id, record.path, record.version_tag)
    if content is None:
        raise ObjectNotFoundError(f"Missing object for {record.path}@{record.version_tag}")
    return content


async def compute_file_deltas(
    conn: sqlite3.Connection,
    store: ObjectStore,
    annotator: Annotator,
    version_id: str,
    config: AnalyzerConfig,
) -> list[FileDelta]:
    """Analyze and annotate every changed source file of a version.

    A version without a parent analyzes all of its files.
    """
    version = repo.get_version(conn, version_id)
    files = {record.path: record for record in repo.list_version_files(conn, version_id)}
    parent_files: dict[str, FileRecord] = {}
    if version.parent_version_id is not None:
        parent_files = {
            record.path: record
            for record in repo.list_version_files(conn, version.parent_version_id)
        }
        paths = [path for path in version.changed_files if path in files]
    else:
        paths = sorted(files)

    deltas: list[FileDelta] = []
    for path in paths:
        if not is_supported_source(path):
            continue
        content = await read_file_record(store, version.project_id, files[path])
        current = safe_extract(content, path, config)
        previous: dict[str, ExtractedDeclaration] = {}
        if path in parent_files:
            previous_content = await read_file_record(store, version.project_id, parent_files[path])
            previous = safe_extract(previous_content, path, config)

        delta = FileDelta(
            path=path,
            file_id=files[path].id,
            changes=diff_declarations(current, previous),
            declarations=current,
        )
        if delta.changes.is_empty:
            continue
        to_annotate = {name: current[name] for name in delta.written_names}
        delta.specs = await annotator.annotate(path, content, to_annotate)
        deltas.append(delta)
        logger.debug(
            "[enrich:%s] %s: %d new, %d updated, %d deleted",
            version.project_id,
            path,
            len(delta.changes.new_declarations),
            len(delta.changes.updated_declarations),
            len(delta.changes.deleted_declarations),
        )
    return deltas


def _candidate_paths(dependency_path: str, config: AnalyzerConfig) -> list[str]:
    """Stored paths an internal import may refer to, most specific first."""
    rooted = to_project_path(dependency_path)
    stem = rooted[: -len(config.default_extension)] if rooted.endswith(config.default_extension) else rooted
    candidates = [rooted]
    candidates.extend(stem + ext for ext in config.source_extensions)
    candidates.extend(posixpath.join(stem, "index") + ext for ext in config.source_extensions)
    return [candidate.lstrip("/") for candidate in dict.fromkeys(candidates)]


def _internal_targets(
    by_path: dict[str, dict[str, Declaration]],
    dependency_path: str,
    names: list[str],
    config: AnalyzerConfig,
) -> list[Declaration]:
    for candidate in _candidate_paths(dependency_path, config):
        declarations = by_path.get(candidate)
        if declarations is None:
            continue
        targets: list[Declaration] = []
        for name in names:
            matched = [
                decl
                for decl_name, decl in declarations.items()
                if decl_name == name or decl_name.startswith(f"{name}.")
            ]
            if not matched and "default" in declarations:
                matched = [declarations["default"]]
            targets.extend(decl for decl in matched if decl not in targets)
        return targets
    return []


def _write_edges(
    conn: sqlite3.Connection,
    declaration: Declaration,
    dependencies: list[DeclarationDependency],
    by_path: dict[str, dict[str, Declaration]],
    packages: dict[str, str],
    config: AnalyzerConfig,
    report: EnrichmentReport,
) -> None:
    for dependency in dependencies:
        if isinstance(dependency, ExternalDependency):
            package_id = packages.get(dependency.name)
            if package_id is None:
                logger.warning(
                    "Skipping edge from %s to unknown package %s", declaration.name, dependency.name
                )
                if dependency.name not in report.skipped_packages:
                    report.skipped_packages.append(dependency.name)
                continue
            repo.add_declaration_package(
                conn, declaration.id, package_id, dependency.from_path, dependency.depends_on
            )
            report.package_edges += 1
            continue

        for target in _internal_targets(by_path, dependency.from_path, dependency.depends_on, config):
            if target.id == declaration.id:
                continue
            repo.add_dependency(conn, declaration.id, target.id)
            report.internal_edges += 1


async def enrich_version(
    db: ProjectDatabase,
    store: ObjectStore,
    annotator: Annotator,
    version_id: str,
    config: AnalyzerConfig | None = None,
) -> EnrichmentReport:
    """Update the version's declaration graph and advance it to ``enriched``.

    Args:
        db: Connected project database.
        store: Object store holding file contents.
        annotator: Produces specs for new and updated declarations.
        version_id: A version at progress ``deployed``.
        config: Analyzer layout conventions.

    Returns:
        EnrichmentReport with row and edge counts.

    Raises:
        VersionStateError: If the version is not at ``deployed``.
        ObjectNotFoundError: If a file's content is missing from the store.
    """
    config = config or AnalyzerConfig()
    version = repo.get_version(db.conn, version_id)
    check_transition(version.progress, VersionProgress.ENRICHED)
    project_id = version.project_id

    deltas = await compute_file_deltas(db.conn, store, annotator, version_id, config)
    report = EnrichmentReport(files=len(deltas))

    with db.transaction() as conn:
        # Files deleted in this version take all their declarations with them.
        for path in version.deleted_files:
            stale = [decl.id for decl in repo.list_version_declarations(conn, version_id, path)]
            repo.remove_version_declarations(conn, version_id, stale)
            report.removed += len(stale)

        written: list[tuple[Declaration, list[DeclarationDependency]]] = []
        for delta in deltas:
            carried = {
                decl.name: decl for decl in repo.list_version_declarations(conn, version_id, delta.path)
            }
            stale_names = set(delta.written_names) | set(delta.changes.deleted_declarations)
            stale = [carried[name].id for name in stale_names if name in carried]
            repo.remove_version_declarations(conn, version_id, stale)
            report.removed += len(stale)

            for name in delta.written_names:
                specs = delta.specs.get(name)
                predecessor = carried.get(name)
                canvas_node_id = None
                if specs is not None and is_canvas_node(specs):
                    if predecessor is not None and predecessor.canvas_node_id:
                        canvas_node_id = predecessor.canvas_node_id
                    else:
                        node = repo.create_canvas_node(
                            conn, project_id, name, specs.type, {"path": delta.path}
                        )
                        canvas_node_id = node.id
                        report.canvas_nodes += 1
                declaration = repo.insert_declaration(
                    conn,
                    project_id,
                    delta.file_id,
                    name,
                    specs,
                    previous_id=predecessor.id if predecessor is not None else None,
                    canvas_node_id=canvas_node_id,
                )
                repo.add_version_declaration(conn, version_id, declaration.id)
                written.append((declaration, delta.declarations[name].dependencies))
                report.inserted += 1

        # Edges go in after every file's rows so imports between changed files resolve.
        by_path: dict[str, dict[str, Declaration]] = {}
        for decl in repo.list_version_declarations(conn, version_id):
            by_path.setdefault(decl.file_path, {})[decl.name] = decl
        packages = {pkg.name: pkg.id for pkg in repo.list_version_packages(conn, version_id)}
        for declaration, dependencies in written:
            _write_edges(conn, declaration, dependencies, by_path, packages, config, report)

        repo.update_version(conn, version_id, progress=VersionProgress.ENRICHED)

    logger.info(
        "[enrich:%s] %d declarations written, %d removed, %d internal edges, %d package edges",
        project_id,
        report.inserted,
        report.removed,
        report.internal_edges,
        report.package_edges,
    )
    return report
