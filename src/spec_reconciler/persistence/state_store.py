"""
spec-reconciler — committed session state store

File: src/spec_reconciler/persistence/state_store.py
Last updated: 2026-10-17

Purpose
- SQLite record of committed sessions: which spec node hashes (and texts) and
  which code snapshot each commit settled on.

What should be included in this file
- Schema version table and checksum-verified migrations.
- Short-lived connections, immediate transactions, busy retry with backoff.

Functional requirements
- Migrations are idempotent; a database newer than this code is refused.
- ``last_commit`` is the baseline for the changed-node set of the next session.

Non-functional requirements
- SQLite-first; no long-lived connections.
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from spec_reconciler.constants import STATE_DB_SCHEMA_VERSION
from spec_reconciler.domain.models import JSONValue, SessionPhase

SQLParams = Sequence[str | int | float | bytes | None]

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

_SCHEMA_VERSIONS_TABLE_SQL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_MIGRATION_0001_STATEMENTS: Final[tuple[str, ...]] = (
    _SCHEMA_VERSIONS_TABLE_SQL,
    """
    CREATE TABLE IF NOT EXISTS committed_sessions (
        session_id TEXT PRIMARY KEY,
        committed_at TEXT NOT NULL,
        final_state TEXT NOT NULL,
        spec_snapshot_hash TEXT NOT NULL CHECK (length(spec_snapshot_hash) = 64),
        code_snapshot_hash TEXT NOT NULL CHECK (length(code_snapshot_hash) = 64),
        report_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS committed_nodes (
        session_id TEXT NOT NULL REFERENCES committed_sessions(session_id) ON DELETE CASCADE,
        node_id TEXT NOT NULL,
        content_hash TEXT NOT NULL CHECK (length(content_hash) = 64),
        text TEXT NOT NULL,
        PRIMARY KEY (session_id, node_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_committed_sessions_committed_at
    ON committed_sessions(committed_at DESC)
    """,
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)


class StateStoreError(RuntimeError):
    """Base class for state store failures."""


class StateStoreBusyError(StateStoreError):
    """SQLite stayed busy after every retry."""


class StateStoreMigrationError(StateStoreError):
    """Schema history does not match this code."""


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class _Migration:
    version: int
    name: str
    statements: tuple[str, ...]
    checksum: str


def _migration_checksum(version: int, name: str, statements: Sequence[str]) -> str:
    digest = hashlib.sha256()
    digest.update(f"{version}:{name}\n".encode())
    for statement in statements:
        normalized = "\n".join(line.rstrip() for line in statement.strip().splitlines())
        digest.update(normalized.encode("utf-8"))
        digest.update(b"\n--\n")
    return digest.hexdigest()


_MIGRATIONS: Final[tuple[_Migration, ...]] = (
    _Migration(
        version=1,
        name="committed_sessions",
        statements=_MIGRATION_0001_STATEMENTS,
        checksum=_migration_checksum(1, "committed_sessions", _MIGRATION_0001_STATEMENTS),
    ),
)


@dataclass(frozen=True, slots=True)
class CommitRecord:
    """One committed session as persisted."""

    session_id: str
    final_state: SessionPhase
    spec_snapshot_hash: str
    code_snapshot_hash: str
    node_hashes: Mapping[str, str] = field(default_factory=dict)
    node_texts: Mapping[str, str] = field(default_factory=dict)
    report: Mapping[str, JSONValue] = field(default_factory=dict)
    committed_at: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "final_state", SessionPhase(self.final_state))
        object.__setattr__(self, "node_hashes", dict(sorted(self.node_hashes.items())))
        object.__setattr__(self, "node_texts", dict(sorted(self.node_texts.items())))
        if not self.committed_at:
            object.__setattr__(self, "committed_at", _utc_now_iso())


class StateStore:
    """SQLite store of committed sessions with deterministic migrations."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms

    @property
    def path(self) -> Path:
        return self._path

    def __enter__(self) -> StateStore:
        self.migrate()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        self._execute(conn, "BEGIN IMMEDIATE", (), operation="begin transaction")
        try:
            yield conn
        except Exception:
            self._execute(conn, "ROLLBACK", (), operation="rollback transaction")
            raise
        else:
            self._execute(conn, "COMMIT", (), operation="commit transaction")

    def migrate(self) -> int:
        """Apply migrations idempotently and return the schema version."""

        with self.connection() as conn:
            self._execute(conn, _SCHEMA_VERSIONS_TABLE_SQL, (), operation="create schema_versions")
            applied = {
                int(row["version"]): MigrationRecord(
                    version=int(row["version"]),
                    name=str(row["name"]),
                    checksum=str(row["checksum"]),
                    applied_at=str(row["applied_at"]),
                )
                for row in self._execute(
                    conn,
                    "SELECT version, name, checksum, applied_at FROM schema_versions",
                    (),
                    operation="load migrations",
                ).fetchall()
            }
            current = max(applied, default=0)
            if current > STATE_DB_SCHEMA_VERSION:
                raise StateStoreMigrationError(
                    "database schema is newer than supported "
                    f"(db={current}, code={STATE_DB_SCHEMA_VERSION})"
                )

            for migration in _MIGRATIONS:
                if migration.version > STATE_DB_SCHEMA_VERSION:
                    continue
                record = applied.get(migration.version)
                if record is not None:
                    if record.checksum != migration.checksum:
                        raise StateStoreMigrationError(
                            f"migration checksum mismatch for version {migration.version}: "
                            f"db={record.checksum} code={migration.checksum}"
                        )
                    continue
                with self.transaction(conn) as tx:
                    for statement in migration.statements:
                        self._execute(
                            tx, statement, (), operation=f"apply migration {migration.version}"
                        )
                    self._execute(
                        tx,
                        "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                        "VALUES (?, ?, ?, ?)",
                        (migration.version, migration.name, migration.checksum, _utc_now_iso()),
                        operation=f"record migration {migration.version}",
                    )
                current = migration.version
            return current

    # ------------------------------------------------------------------
    # Committed sessions
    # ------------------------------------------------------------------

    def record_commit(self, record: CommitRecord) -> CommitRecord:
        self.migrate()
        with self.connection() as conn, self.transaction(conn) as tx:
            self._execute(
                tx,
                "INSERT INTO committed_sessions (session_id, committed_at, final_state, "
                "spec_snapshot_hash, code_snapshot_hash, report_json) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.session_id,
                    record.committed_at,
                    record.final_state.value,
                    record.spec_snapshot_hash,
                    record.code_snapshot_hash,
                    _canonical_json(dict(record.report)),
                ),
                operation="insert committed session",
            )
            for node_id, content_hash in record.node_hashes.items():
                self._execute(
                    tx,
                    "INSERT INTO committed_nodes (session_id, node_id, content_hash, text) "
                    "VALUES (?, ?, ?, ?)",
                    (record.session_id, node_id, content_hash, record.node_texts.get(node_id, "")),
                    operation="insert committed node",
                )
        return record

    def last_commit(self) -> CommitRecord | None:
        commits = self.list_commits(limit=1)
        return commits[0] if commits else None

    def get_commit(self, session_id: str) -> CommitRecord | None:
        self.migrate()
        with self.connection() as conn:
            row = self._execute(
                conn,
                "SELECT * FROM committed_sessions WHERE session_id = ?",
                (session_id,),
                operation="load committed session",
            ).fetchone()
            return None if row is None else self._load_record(conn, row)

    def list_commits(self, *, limit: int = 20) -> list[CommitRecord]:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.migrate()
        with self.connection() as conn:
            rows = self._execute(
                conn,
                "SELECT * FROM committed_sessions "
                "ORDER BY committed_at DESC, rowid DESC LIMIT ?",
                (limit,),
                operation="list committed sessions",
            ).fetchall()
            return [self._load_record(conn, row) for row in rows]

    def _load_record(self, conn: sqlite3.Connection, row: sqlite3.Row) -> CommitRecord:
        session_id = str(row["session_id"])
        nodes = self._execute(
            conn,
            "SELECT node_id, content_hash, text FROM committed_nodes "
            "WHERE session_id = ? ORDER BY node_id",
            (session_id,),
            operation="load committed nodes",
        ).fetchall()
        return CommitRecord(
            session_id=session_id,
            final_state=SessionPhase(str(row["final_state"])),
            spec_snapshot_hash=str(row["spec_snapshot_hash"]),
            code_snapshot_hash=str(row["code_snapshot_hash"]),
            node_hashes={str(node["node_id"]): str(node["content_hash"]) for node in nodes},
            node_texts={str(node["node_id"]): str(node["text"]) for node in nodes},
            report=json.loads(str(row["report_json"])),
            committed_at=str(row["committed_at"]),
        )

    # ------------------------------------------------------------------
    # Execution helpers
    # ------------------------------------------------------------------

    def _execute(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if _is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                if _is_busy_error(exc):
                    raise StateStoreBusyError(
                        f"{operation} hit SQLITE_BUSY for {self._path} after "
                        f"{self._busy_retry_limit + 1} attempt(s): {exc}"
                    ) from exc
                raise StateStoreError(f"{operation} failed for {self._path}: {exc}") from exc
        raise StateStoreBusyError(f"{operation} exhausted retries unexpectedly")


def _is_busy_error(exc: sqlite3.Error) -> bool:
    message = str(exc).lower()
    return any(fragment in message for fragment in _BUSY_SUBSTRINGS)


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _canonical_json(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = [
    "CommitRecord",
    "MigrationRecord",
    "StateStore",
    "StateStoreBusyError",
    "StateStoreError",
    "StateStoreMigrationError",
]
