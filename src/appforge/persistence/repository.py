"""Typed reads and writes over the project database.

Functions take an open connection and never manage transactions themselves;
callers group related writes with ``ProjectDatabase.transaction()``.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import TypeAdapter

from appforge.models import (
    CanvasNode,
    Declaration,
    DeclarationSpecs,
    FailedEdit,
    FileRecord,
    PackageChanges,
    PackageKind,
    PackageRecord,
    PackageSpec,
    Project,
    Version,
    VersionProgress,
)
from appforge.persistence.exceptions import RecordNotFoundError, VersionImmutableError

logger = logging.getLogger(__name__)

_SPECS_ADAPTER: TypeAdapter = TypeAdapter(DeclarationSpecs)
_FAILED_EDITS_ADAPTER: TypeAdapter = TypeAdapter(list[FailedEdit])

# Version columns writable through update_version
_JSON_VERSION_FIELDS = ("changed_files", "deleted_files", "failed_edits", "package_changes", "summary")
_PLAIN_VERSION_FIELDS = ("progress", "machine_id", "prompt")


def new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── projects ──────────────────────────────────────────────────────


def create_project(conn: sqlite3.Connection, name: str, project_id: str | None = None) -> Project:
    project = Project(id=project_id or new_id(), name=name)
    conn.execute(
        "INSERT INTO projects (id, name, created_at) VALUES (?, ?, ?)",
        (project.id, project.name, _now()),
    )
    return project


def get_project(conn: sqlite3.Connection, project_id: str) -> Project:
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    if row is None:
        raise RecordNotFoundError(f"No project with id={project_id}")
    return Project(id=row["id"], name=row["name"], active_version_id=row["active_version_id"])


# ── versions ──────────────────────────────────────────────────────


def _version_from_row(row: sqlite3.Row) -> Version:
    return Version(
        id=row["id"],
        project_id=row["project_id"],
        number=row["number"],
        progress=VersionProgress(row["progress"]),
        prompt=row["prompt"],
        machine_id=row["machine_id"],
        parent_version_id=row["parent_version_id"],
        changed_files=json.loads(row["changed_files"]),
        deleted_files=json.loads(row["deleted_files"]),
        failed_edits=_FAILED_EDITS_ADAPTER.validate_json(row["failed_edits"]),
        package_changes=PackageChanges.model_validate_json(row["package_changes"]),
        summary=json.loads(row["summary"]) if row["summary"] else None,
        activated=bool(row["activated"]),
    )


def get_version(conn: sqlite3.Connection, version_id: str) -> Version:
    row = conn.execute("SELECT * FROM versions WHERE id = ?", (version_id,)).fetchone()
    if row is None:
        raise RecordNotFoundError(f"No version with id={version_id}")
    return _version_from_row(row)


def get_active_version(conn: sqlite3.Connection, project_id: str) -> Version | None:
    project = get_project(conn, project_id)
    if project.active_version_id is None:
        return None
    return get_version(conn, project.active_version_id)


def ensure_mutable(conn: sqlite3.Connection, version_id: str) -> Version:
    """Return the version, raising if it has already succeeded."""
    version = get_version(conn, version_id)
    if version.is_immutable:
        raise VersionImmutableError(f"Version {version_id} has succeeded and is immutable")
    return version


def init_version(
    conn: sqlite3.Connection,
    project_id: str,
    prompt: str = "",
    parent_version_id: str | None = None,
    initial_files: dict[str, str] | None = None,
) -> Version:
    """Create the next version of a project.

    Every file, package and declaration association of the parent is copied
    by reference. ``initial_files`` (path -> version tag) seeds a version
    without a parent, e.g. from a boilerplate preset. Call inside a
    transaction.

    Returns:
        The new version at progress ``initiated``.
    """
    get_project(conn, project_id)
    row = conn.execute(
        "SELECT COALESCE(MAX(number), 0) AS latest FROM versions WHERE project_id = ?",
        (project_id,),
    ).fetchone()
    version = Version(
        id=new_id(),
        project_id=project_id,
        number=row["latest"] + 1,
        prompt=prompt,
        parent_version_id=parent_version_id,
    )
    conn.execute(
        """
        INSERT INTO versions (id, project_id, number, progress, prompt, parent_version_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            version.id,
            project_id,
            version.number,
            version.progress.value,
            prompt,
            parent_version_id,
            _now(),
        ),
    )

    if parent_version_id is not None:
        get_version(conn, parent_version_id)
        conn.execute(
            """
            INSERT INTO version_files (version_id, file_id, version_tag)
            SELECT ?, file_id, version_tag FROM version_files WHERE version_id = ?
            """,
            (version.id, parent_version_id),
        )
        conn.execute(
            """
            INSERT INTO version_packages (version_id, package_id)
            SELECT ?, package_id FROM version_packages WHERE version_id = ?
            """,
            (version.id, parent_version_id),
        )
        conn.execute(
            """
            INSERT INTO version_declarations (version_id, declaration_id)
            SELECT ?, declaration_id FROM version_declarations WHERE version_id = ?
            """,
            (version.id, parent_version_id),
        )

    for path, tag in (initial_files or {}).items():
        set_version_file(conn, version.id, upsert_file(conn, project_id, path), tag)

    logger.info(
        "[version:%s] Initiated version %d (parent=%s)", project_id, version.number, parent_version_id
    )
    return version


def update_version(conn: sqlite3.Connection, version_id: str, **fields: Any) -> Version:
    """Update version columns; succeeded versions are immutable."""
    ensure_mutable(conn, version_id)
    assignments: list[str] = []
    values: list[Any] = []
    for key, value in fields.items():
        if key in _JSON_VERSION_FIELDS:
            if key == "failed_edits":
                value = _FAILED_EDITS_ADAPTER.dump_json(value).decode("utf-8")
            elif key == "package_changes":
                value = value.model_dump_json()
            else:
                value = json.dumps(value) if value is not None else None
        elif key in _PLAIN_VERSION_FIELDS:
            if isinstance(value, VersionProgress):
                value = value.value
        else:
            raise ValueError(f"Unknown version field: {key}")
        assignments.append(f"{key} = ?")
        values.append(value)

    if assignments:
        conn.execute(
            f"UPDATE versions SET {', '.join(assignments)} WHERE id = ?",
            (*values, version_id),
        )
    return get_version(conn, version_id)


def activate_version(conn: sqlite3.Connection, project_id: str, version_id: str) -> None:
    conn.execute("UPDATE versions SET activated = 0 WHERE project_id = ?", (project_id,))
    conn.execute("UPDATE versions SET activated = 1 WHERE id = ?", (version_id,))
    conn.execute("UPDATE projects SET active_version_id = ? WHERE id = ?", (version_id, project_id))


# ── files ─────────────────────────────────────────────────────────


def upsert_file(conn: sqlite3.Connection, project_id: str, path: str) -> str:
    """Return the id of the project's file row for ``path``, creating it."""
    row = conn.execute(
        "SELECT id FROM files WHERE project_id = ? AND path = ?", (project_id, path)
    ).fetchone()
    if row is not None:
        return row["id"]
    file_id = new_id()
    conn.execute(
        "INSERT INTO files (id, project_id, path) VALUES (?, ?, ?)", (file_id, project_id, path)
    )
    return file_id


def set_version_file(conn: sqlite3.Connection, version_id: str, file_id: str, version_tag: str) -> None:
    ensure_mutable(conn, version_id)
    conn.execute(
        """
        INSERT INTO version_files (version_id, file_id, version_tag) VALUES (?, ?, ?)
        ON CONFLICT (version_id, file_id) DO UPDATE SET version_tag = excluded.version_tag
        """,
        (version_id, file_id, version_tag),
    )


def remove_version_file(conn: sqlite3.Connection, version_id: str, path: str) -> None:
    ensure_mutable(conn, version_id)
    conn.execute(
        """
        DELETE FROM version_files
        WHERE version_id = ? AND file_id IN (SELECT id FROM files WHERE path = ?)
        """,
        (version_id, path),
    )


def list_version_files(conn: sqlite3.Connection, version_id: str) -> list[FileRecord]:
    rows = conn.execute(
        """
        SELECT f.id, f.project_id, f.path, vf.version_tag
        FROM version_files vf JOIN files f ON f.id = vf.file_id
        WHERE vf.version_id = ?
        ORDER BY f.path
        """,
        (version_id,),
    ).fetchall()
    return [
        FileRecord(id=r["id"], project_id=r["project_id"], path=r["path"], version_tag=r["version_tag"])
        for r in rows
    ]


# ── packages ──────────────────────────────────────────────────────


def _package_from_row(row: sqlite3.Row) -> PackageRecord:
    return PackageRecord(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        version=row["version"],
        kind=PackageKind(row["kind"]),
    )


def upsert_package(conn: sqlite3.Connection, project_id: str, spec: PackageSpec) -> PackageRecord:
    conn.execute(
        """
        INSERT INTO packages (id, project_id, name, version, kind) VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (project_id, name) DO UPDATE SET version = excluded.version, kind = excluded.kind
        """,
        (new_id(), project_id, spec.name, spec.version, spec.kind.value),
    )
    row = conn.execute(
        "SELECT * FROM packages WHERE project_id = ? AND name = ?", (project_id, spec.name)
    ).fetchone()
    return _package_from_row(row)


def add_version_package(conn: sqlite3.Connection, version_id: str, package_id: str) -> None:
    ensure_mutable(conn, version_id)
    conn.execute(
        "INSERT OR IGNORE INTO version_packages (version_id, package_id) VALUES (?, ?)",
        (version_id, package_id),
    )


def remove_version_package(conn: sqlite3.Connection, version_id: str, name: str) -> None:
    ensure_mutable(conn, version_id)
    conn.execute(
        """
        DELETE FROM version_packages
        WHERE version_id = ? AND package_id IN (SELECT id FROM packages WHERE name = ?)
        """,
        (version_id, name),
    )


def list_version_packages(conn: sqlite3.Connection, version_id: str) -> list[PackageRecord]:
    rows = conn.execute(
        """
        SELECT p.* FROM version_packages vp JOIN packages p ON p.id = vp.package_id
        WHERE vp.version_id = ?
        ORDER BY p.name
        """,
        (version_id,),
    ).fetchall()
    return [_package_from_row(r) for r in rows]


# ── declarations ──────────────────────────────────────────────────


def _declaration_from_row(row: sqlite3.Row) -> Declaration:
    return Declaration(
        id=row["id"],
        project_id=row["project_id"],
        file_id=row["file_id"],
        file_path=row["path"],
        name=row["name"],
        type=row["type"],
        specs=_SPECS_ADAPTER.validate_json(row["specs"]) if row["specs"] else None,
        previous_id=row["previous_id"],
        canvas_node_id=row["canvas_node_id"],
    )


def insert_declaration(
    conn: sqlite3.Connection,
    project_id: str,
    file_id: str,
    name: str,
    specs: DeclarationSpecs | None,
    previous_id: str | None = None,
    canvas_node_id: str | None = None,
) -> Declaration:
    declaration_id = new_id()
    conn.execute(
        """
        INSERT INTO declarations
            (id, project_id, file_id, name, type, specs, previous_id, canvas_node_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            declaration_id,
            project_id,
            file_id,
            name,
            specs.type if specs is not None else "other",
            _SPECS_ADAPTER.dump_json(specs).decode("utf-8") if specs is not None else None,
            previous_id,
            canvas_node_id,
            _now(),
        ),
    )
    return get_declaration(conn, declaration_id)


def get_declaration(conn: sqlite3.Connection, declaration_id: str) -> Declaration:
    row = conn.execute(
        "SELECT d.*, f.path FROM declarations d JOIN files f ON f.id = d.file_id WHERE d.id = ?",
        (declaration_id,),
    ).fetchone()
    if row is None:
        raise RecordNotFoundError(f"No declaration with id={declaration_id}")
    return _declaration_from_row(row)


def add_version_declaration(conn: sqlite3.Connection, version_id: str, declaration_id: str) -> None:
    ensure_mutable(conn, version_id)
    conn.execute(
        "INSERT OR IGNORE INTO version_declarations (version_id, declaration_id) VALUES (?, ?)",
        (version_id, declaration_id),
    )


def remove_version_declarations(
    conn: sqlite3.Connection, version_id: str, declaration_ids: list[str]
) -> None:
    ensure_mutable(conn, version_id)
    conn.executemany(
        "DELETE FROM version_declarations WHERE version_id = ? AND declaration_id = ?",
        [(version_id, declaration_id) for declaration_id in declaration_ids],
    )


def list_version_declarations(
    conn: sqlite3.Connection, version_id: str, path: str | None = None
) -> list[Declaration]:
    """Declarations referenced by a version, optionally limited to one file."""
    query = """
        SELECT d.*, f.path
        FROM version_declarations vd
        JOIN declarations d ON d.id = vd.declaration_id
        JOIN files f ON f.id = d.file_id
        WHERE vd.version_id = ?
    """
    params: tuple = (version_id,)
    if path is not None:
        query += " AND f.path = ?"
        params = (version_id, path)
    rows = conn.execute(query + " ORDER BY f.path, d.name", params).fetchall()
    return [_declaration_from_row(r) for r in rows]


def add_dependency(conn: sqlite3.Connection, dependent_id: str, dependency_id: str) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO dependencies (dependent_id, dependency_id) VALUES (?, ?)",
        (dependent_id, dependency_id),
    )


def list_dependencies(conn: sqlite3.Connection, dependent_id: str) -> list[Declaration]:
    rows = conn.execute(
        """
        SELECT d.*, f.path FROM dependencies dep
        JOIN declarations d ON d.id = dep.dependency_id
        JOIN files f ON f.id = d.file_id
        WHERE dep.dependent_id = ?
        ORDER BY d.name
        """,
        (dependent_id,),
    ).fetchall()
    return [_declaration_from_row(r) for r in rows]


def add_declaration_package(
    conn: sqlite3.Connection,
    declaration_id: str,
    package_id: str,
    import_path: str,
    names: list[str],
) -> None:
    conn.execute(
        """
        INSERT INTO declaration_packages (declaration_id, package_id, import_path, declarations)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (declaration_id, package_id, import_path)
        DO UPDATE SET declarations = excluded.declarations
        """,
        (declaration_id, package_id, import_path, json.dumps(names)),
    )


def list_declaration_packages(conn: sqlite3.Connection, declaration_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT p.name, dp.import_path, dp.declarations
        FROM declaration_packages dp JOIN packages p ON p.id = dp.package_id
        WHERE dp.declaration_id = ?
        ORDER BY p.name, dp.import_path
        """,
        (declaration_id,),
    ).fetchall()
    return [
        {"package": r["name"], "import_path": r["import_path"], "declarations": json.loads(r["declarations"])}
        for r in rows
    ]


# ── canvas nodes ──────────────────────────────────────────────────


def create_canvas_node(
    conn: sqlite3.Connection,
    project_id: str,
    declaration_name: str,
    node_type: str,
    data: dict[str, Any] | None = None,
) -> CanvasNode:
    node = CanvasNode(
        id=new_id(),
        project_id=project_id,
        declaration_name=declaration_name,
        node_type=node_type,
        data=data or {},
    )
    conn.execute(
        "INSERT INTO canvas_nodes (id, project_id, declaration_name, node_type, data) VALUES (?, ?, ?, ?, ?)",
        (node.id, project_id, declaration_name, node_type, json.dumps(node.data)),
    )
    return node


def count_canvas_nodes(conn: sqlite3.Connection, project_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM canvas_nodes WHERE project_id = ?", (project_id,)
    ).fetchone()
    return row["n"]


# ── summaries ─────────────────────────────────────────────────────


def version_counts(conn: sqlite3.Connection, version_id: str) -> dict[str, int]:
    """Association counts of a version (files, packages, declarations)."""
    counts: dict[str, int] = {}
    for key, table in (
        ("files", "version_files"),
        ("packages", "version_packages"),
        ("declarations", "version_declarations"),
    ):
        row = conn.execute(
            f"SELECT COUNT(*) AS n FROM {table} WHERE version_id = ?", (version_id,)
        ).fetchone()
        counts[key] = row["n"]
    return counts
