"""SQLite-backed project database."""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from appforge.persistence.exceptions import PersistenceError

logger = logging.getLogger(__name__)

# Current schema version (bump when tables change).
_SCHEMA_VERSION = 1

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id                TEXT PRIMARY KEY,
        name              TEXT NOT NULL,
        active_version_id TEXT,
        created_at        TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS versions (
        id                TEXT PRIMARY KEY,
        project_id        TEXT    NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        number            INTEGER NOT NULL,
        progress          TEXT    NOT NULL DEFAULT 'initiated',
        prompt            TEXT    NOT NULL DEFAULT '',
        machine_id        TEXT,
        parent_version_id TEXT REFERENCES versions(id),
        changed_files     TEXT    NOT NULL DEFAULT '[]',
        deleted_files     TEXT    NOT NULL DEFAULT '[]',
        failed_edits      TEXT    NOT NULL DEFAULT '[]',
        package_changes   TEXT    NOT NULL DEFAULT '{}',
        summary           TEXT,
        activated         INTEGER NOT NULL DEFAULT 0,
        created_at        TEXT    NOT NULL,
        UNIQUE (project_id, number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS files (
        id         TEXT PRIMARY KEY,
        project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        path       TEXT NOT NULL,
        UNIQUE (project_id, path)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS version_files (
        version_id  TEXT NOT NULL REFERENCES versions(id) ON DELETE CASCADE,
        file_id     TEXT NOT NULL REFERENCES files(id) ON DELETE CASCADE,
        version_tag TEXT NOT NULL,
        PRIMARY KEY (version_id, file_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS packages (
        id         TEXT PRIMARY KEY,
        project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        name       TEXT NOT NULL,
        version    TEXT NOT NULL DEFAULT 'latest',
        kind       TEXT NOT NULL DEFAULT 'runtime',
        UNIQUE (project_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS version_packages (
        version_id TEXT NOT NULL REFERENCES versions(id) ON DELETE CASCADE,
        package_id TEXT NOT NULL REFERENCES packages(id) ON DELETE CASCADE,
        PRIMARY KEY (version_id, package_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS canvas_nodes (
        id         TEXT PRIMARY KEY,
        project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        declaration_name TEXT NOT NULL,
        node_type  TEXT NOT NULL,
        data       TEXT NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS declarations (
        id             TEXT PRIMARY KEY,
        project_id     TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        file_id        TEXT NOT NULL REFERENCES files(id) ON DELETE CASCADE,
        name           TEXT NOT NULL,
        type           TEXT NOT NULL,
        specs          TEXT,
        previous_id    TEXT REFERENCES declarations(id),
        canvas_node_id TEXT REFERENCES canvas_nodes(id),
        created_at     TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS version_declarations (
        version_id     TEXT NOT NULL REFERENCES versions(id) ON DELETE CASCADE,
        declaration_id TEXT NOT NULL REFERENCES declarations(id) ON DELETE CASCADE,
        PRIMARY KEY (version_id, declaration_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dependencies (
        dependent_id  TEXT NOT NULL REFERENCES declarations(id) ON DELETE CASCADE,
        dependency_id TEXT NOT NULL REFERENCES declarations(id) ON DELETE CASCADE,
        PRIMARY KEY (dependent_id, dependency_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS declaration_packages (
        declaration_id TEXT NOT NULL REFERENCES declarations(id) ON DELETE CASCADE,
        package_id     TEXT NOT NULL REFERENCES packages(id) ON DELETE CASCADE,
        import_path    TEXT NOT NULL,
        declarations   TEXT NOT NULL DEFAULT '[]',
        PRIMARY KEY (declaration_id, package_id, import_path)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_versions_project ON versions(project_id, number)",
    "CREATE INDEX IF NOT EXISTS idx_declarations_file ON declarations(file_id, name)",
    "CREATE INDEX IF NOT EXISTS idx_version_files_version ON version_files(version_id)",
    "CREATE INDEX IF NOT EXISTS idx_version_declarations_version ON version_declarations(version_id)",
)


class ProjectDatabase:
    """Manages the project SQLite database.

    Usage::

        with ProjectDatabase(settings.database_path) as db:
            with db.transaction() as conn:
                init_version(conn, project_id, prompt)

    Pass ``":memory:"`` for a throwaway database.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = path if str(path) == ":memory:" else Path(path)
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        """Return the active connection. Raises if not connected."""
        if self._conn is None:
            raise PersistenceError(
                "ProjectDatabase is not connected. Use as context manager or call connect()."
            )
        return self._conn

    # ── lifecycle ─────────────────────────────────────────────────

    def connect(self) -> sqlite3.Connection:
        """Open (or create) the database and run migrations."""
        if isinstance(self.path, Path):
            self.path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are explicit via transaction().
        conn = sqlite3.connect(str(self.path), isolation_level=None)
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        self._conn = conn
        self._migrate()
        logger.debug("Project DB connected at %s", self.path)
        return conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "ProjectDatabase":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside one transaction; rolls back on any exception."""
        conn = self.conn
        if conn.in_transaction:
            raise PersistenceError("Nested transactions are not supported")
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    # ── migration ─────────────────────────────────────────────────

    def _migrate(self) -> None:
        """Idempotently create all tables."""
        with self.transaction() as c:
            for statement in _SCHEMA:
                c.execute(statement)
            row = c.execute("SELECT version FROM schema_version").fetchone()
            if row is None:
                c.execute("INSERT INTO schema_version (version) VALUES (?)", (_SCHEMA_VERSION,))
