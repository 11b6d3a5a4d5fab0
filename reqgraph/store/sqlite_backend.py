"""
SQLite row-store backend.

One row per requirement and per user, with nested structures (relationships,
comments, history, extra fields) stored as JSON text, and a single metadata
row holding the project configuration and counters. The database runs in WAL
mode so readers are never blocked by a writer; writers serialize through
``BEGIN IMMEDIATE`` and SQLite's busy timeout.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from pydantic import ValidationError

from reqgraph.config import config
from reqgraph.engine.record_store import RecordStore
from reqgraph.errors import BackendUnavailable, SchemaMismatch
from reqgraph.models.project import ProjectData
from reqgraph.models.requirement import Requirement, User
from reqgraph.store.base import StorageBackend

logger = logging.getLogger("reqgraph.sqlite_backend")

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS requirements (
    id TEXT PRIMARY KEY NOT NULL,
    spec_id TEXT,
    prefix_override TEXT,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'Draft',
    priority TEXT NOT NULL DEFAULT 'Medium',
    owner TEXT NOT NULL DEFAULT '',
    feature TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    created_by TEXT,
    modified_at TEXT NOT NULL,
    req_type TEXT NOT NULL DEFAULT 'Functional',
    dependencies TEXT NOT NULL DEFAULT '[]',
    tags TEXT NOT NULL DEFAULT '[]',
    relationships TEXT NOT NULL DEFAULT '[]',
    comments TEXT NOT NULL DEFAULT '[]',
    history TEXT NOT NULL DEFAULT '[]',
    archived INTEGER NOT NULL DEFAULT 0,
    custom_status TEXT,
    custom_fields TEXT NOT NULL DEFAULT '{}',
    urls TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_requirements_spec_id ON requirements(spec_id);
CREATE INDEX IF NOT EXISTS idx_requirements_feature ON requirements(feature);
CREATE INDEX IF NOT EXISTS idx_requirements_status ON requirements(status);
CREATE INDEX IF NOT EXISTS idx_requirements_archived ON requirements(archived);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY NOT NULL,
    spec_id TEXT,
    name TEXT NOT NULL,
    email TEXT NOT NULL DEFAULT '',
    handle TEXT NOT NULL,
    created_at TEXT NOT NULL,
    archived INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_users_handle ON users(handle);

CREATE TABLE IF NOT EXISTS metadata (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    name TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    id_config TEXT NOT NULL DEFAULT '{}',
    features TEXT NOT NULL DEFAULT '[]',
    next_feature_number INTEGER NOT NULL DEFAULT 1,
    next_spec_number INTEGER NOT NULL DEFAULT 1,
    prefix_counters TEXT NOT NULL DEFAULT '{}',
    relationship_definitions TEXT NOT NULL DEFAULT '[]',
    reaction_definitions TEXT NOT NULL DEFAULT '[]',
    meta_counters TEXT NOT NULL DEFAULT '{}',
    type_definitions TEXT NOT NULL DEFAULT '[]',
    allowed_prefixes TEXT NOT NULL DEFAULT '[]',
    restrict_prefixes INTEGER NOT NULL DEFAULT 0
);

INSERT OR IGNORE INTO metadata (id) VALUES (1);
"""

# version -> SQL upgrading a database of that version by one
MIGRATIONS: Dict[int, str] = {}

REQUIREMENT_COLUMNS = (
    "id", "spec_id", "prefix_override", "title", "description", "status", "priority", "owner",
    "feature", "created_at", "created_by", "modified_at", "req_type", "dependencies", "tags",
    "relationships", "comments", "history", "archived", "custom_status", "custom_fields", "urls",
)
REQUIREMENT_JSON_COLUMNS = (
    "dependencies", "tags", "relationships", "comments", "history", "custom_fields", "urls",
)
USER_COLUMNS = ("id", "spec_id", "name", "email", "handle", "created_at", "archived")
METADATA_COLUMNS = (
    "name", "title", "description", "id_config", "features", "next_feature_number",
    "next_spec_number", "prefix_counters", "relationship_definitions", "reaction_definitions",
    "meta_counters", "type_definitions", "allowed_prefixes", "restrict_prefixes",
)
METADATA_JSON_COLUMNS = (
    "id_config", "features", "prefix_counters", "relationship_definitions", "reaction_definitions",
    "meta_counters", "type_definitions", "allowed_prefixes",
)
# Empty lists in these columns load as the built-in definitions
DEFAULTED_COLUMNS = ("relationship_definitions", "reaction_definitions", "type_definitions")


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def requirement_to_row(req: Requirement) -> tuple:
    data = req.model_dump(mode="json")
    row = []
    for column in REQUIREMENT_COLUMNS:
        value = data[column]
        if column in REQUIREMENT_JSON_COLUMNS:
            value = _to_json(value)
        elif column == "archived":
            value = int(value)
        row.append(value)
    return tuple(row)


def row_to_requirement(row: sqlite3.Row) -> Requirement:
    data = {column: row[column] for column in REQUIREMENT_COLUMNS}
    for column in REQUIREMENT_JSON_COLUMNS:
        data[column] = json.loads(data[column] or "null")
    data["archived"] = bool(data["archived"])
    return Requirement.model_validate({k: v for k, v in data.items() if v is not None})


class SqliteBackend(StorageBackend):
    """
    Backend storing the project in a ``.db``/``.sqlite``/``.sqlite3`` file.

    Usage:
        with SqliteBackend("requirements.db") as backend:
            store = backend.load()
            backend.save(store)
    """

    name = "sqlite"

    def __init__(self, path: Union[str, Path], busy_timeout_ms: Optional[int] = None):
        super().__init__(path)
        self.busy_timeout_ms = config.sqlite_busy_timeout_ms if busy_timeout_ms is None else busy_timeout_ms
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            try:
                conn = sqlite3.connect(
                    str(self.path),
                    timeout=self.busy_timeout_ms / 1000,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            except sqlite3.DatabaseError as e:
                raise BackendUnavailable(self.path, str(e)) from e
            self._conn = conn
            self._init_schema()
        return self._conn

    def _init_schema(self) -> None:
        """Create the schema or bring an older one up to SCHEMA_VERSION."""
        with self._transaction():
            current = self.get_schema_version()
            if current is None:
                self._execute_script(SCHEMA_SQL)
                self._conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
                logger.info("Created database schema version %d in %s", SCHEMA_VERSION, self.path)
                return
            if current > SCHEMA_VERSION:
                raise SchemaMismatch(self.path, current, SCHEMA_VERSION)
            while current < SCHEMA_VERSION:
                logger.warning("Migrating %s from schema version %d", self.path, current)
                self._execute_script(MIGRATIONS[current])
                current += 1
                self._conn.execute("UPDATE schema_version SET version = ?", (current,))

    def _execute_script(self, script: str) -> None:
        # executescript() would commit the open transaction
        for statement in script.split(";"):
            if statement.strip():
                self._conn.execute(statement)

    def get_schema_version(self) -> Optional[int]:
        """Version stored in ``schema_version``, None for a fresh database."""
        exists = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        ).fetchone()
        if exists is None:
            return None
        row = self._conn.execute("SELECT MAX(version) AS version FROM schema_version").fetchone()
        return row["version"] if row and row["version"] is not None else None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a write transaction, rolling back on any failure."""
        conn = self._conn if self._conn is not None else self.conn
        if conn.in_transaction:
            # Nested use (update -> save) joins the outer transaction
            yield conn
            return
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            raise BackendUnavailable(self.path, f"database is busy: {e}") from e
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            conn.execute("ROLLBACK")
            raise BackendUnavailable(self.path, str(e)) from e
        except BaseException:
            conn.execute("ROLLBACK")
            raise

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -- Load -----------------------------------------------------------------

    def _load_metadata(self, conn: sqlite3.Connection) -> Dict[str, Any]:
        row = conn.execute(f"SELECT {', '.join(METADATA_COLUMNS)} FROM metadata WHERE id = 1").fetchone()
        if row is None:
            return {}
        data = {column: row[column] for column in METADATA_COLUMNS}
        for column in METADATA_JSON_COLUMNS:
            data[column] = json.loads(data[column] or "null")
        for column in DEFAULTED_COLUMNS:
            if not data[column]:
                del data[column]
        if not data["id_config"]:
            del data["id_config"]
        data["restrict_prefixes"] = bool(data["restrict_prefixes"])
        return {k: v for k, v in data.items() if v is not None}

    def _load_project(self, conn: sqlite3.Connection) -> ProjectData:
        data = self._load_metadata(conn)
        rows = conn.execute(f"SELECT {', '.join(REQUIREMENT_COLUMNS)} FROM requirements ORDER BY rowid").fetchall()
        users = conn.execute(f"SELECT {', '.join(USER_COLUMNS)} FROM users ORDER BY rowid").fetchall()
        try:
            data["requirements"] = [row_to_requirement(row) for row in rows]
            data["users"] = [
                User.model_validate({**dict(row), "archived": bool(row["archived"])}) for row in users
            ]
            return ProjectData.model_validate(data)
        except (ValidationError, json.JSONDecodeError) as e:
            raise BackendUnavailable(self.path, f"corrupt row data: {e}") from e

    def load(self) -> RecordStore:
        """
        Load the project.

        Raises:
            BackendUnavailable: If the database is missing, locked or corrupt
            SchemaMismatch: If the schema is newer than supported
        """
        if not self.exists():
            raise BackendUnavailable(self.path, "file does not exist")
        try:
            project = self._load_project(self.conn)
        except sqlite3.DatabaseError as e:
            raise BackendUnavailable(self.path, str(e)) from e
        store = RecordStore(project)
        if store.assign_missing_keys():
            self.save(store)
        logger.debug("Loaded %d requirement(s) from %s", len(store), self.path)
        return store

    # -- Save -----------------------------------------------------------------

    def _write_project(self, conn: sqlite3.Connection, data: ProjectData) -> None:
        conn.execute("DELETE FROM requirements")
        conn.execute("DELETE FROM users")
        placeholders = ", ".join("?" for _ in REQUIREMENT_COLUMNS)
        conn.executemany(
            f"INSERT OR REPLACE INTO requirements ({', '.join(REQUIREMENT_COLUMNS)}) VALUES ({placeholders})",
            [requirement_to_row(req) for req in data.requirements],
        )
        conn.executemany(
            f"INSERT OR REPLACE INTO users ({', '.join(USER_COLUMNS)}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (str(u.id), u.spec_id, u.name, u.email, u.handle, u.created_at.isoformat(), int(u.archived))
                for u in data.users
            ],
        )
        meta = data.model_dump(mode="json", include=set(METADATA_COLUMNS))
        values = [
            _to_json(meta[c]) if c in METADATA_JSON_COLUMNS else int(meta[c]) if c == "restrict_prefixes" else meta[c]
            for c in METADATA_COLUMNS
        ]
        conn.execute(
            f"INSERT OR REPLACE INTO metadata (id, {', '.join(METADATA_COLUMNS)}) "
            f"VALUES (1, {', '.join('?' for _ in METADATA_COLUMNS)})",
            values,
        )

    def save(self, store: RecordStore) -> None:
        """
        Replace the stored project in one transaction.

        Raises:
            BackendUnavailable: If the database is locked or cannot be written
        """
        try:
            with self._transaction() as conn:
                self._write_project(conn, store.data)
        except sqlite3.DatabaseError as e:
            raise BackendUnavailable(self.path, str(e)) from e
        logger.info("Saved %d requirement(s) to %s", len(store), self.path)

    def update(self, update_fn: Callable[[RecordStore], Any]) -> RecordStore:
        """
        Load, mutate and save inside one write transaction.

        Other writers wait on the busy timeout until the update commits.
        If ``update_fn`` raises, nothing is written.
        """
        if not self.exists():
            raise BackendUnavailable(self.path, "file does not exist")
        with self._transaction() as conn:
            store = RecordStore(self._load_project(conn))
            update_fn(store)
            self._write_project(conn, store.data)
        return store

    def counts(self) -> Dict[str, int]:
        """Row counts per table, for migration checks."""
        return {
            table: self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for table in ("requirements", "users")
        }

    def list_tables(self) -> List[str]:
        rows = self.conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name").fetchall()
        return [row["name"] for row in rows]
