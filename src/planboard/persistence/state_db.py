"""
planboard - state database handle

File: src/planboard/persistence/state_db.py
Last updated: 2026-10-19

Purpose
- Own the SQLite file that holds projects, tasks, drafts, the draft step journal and
  the audit trail.
- Apply the checksummed schema migrations and report their status.

Behavior
- Every call opens a short-lived WAL connection unless the caller threads one through.
- ``transaction`` nests through savepoints, so a draft step or a rollback can compose
  several repository writes into one commit.
- Lock contention is retried a bounded number of times with exponential backoff.
- Audit rows are append-only; triggers reject UPDATE and DELETE.
"""

from __future__ import annotations

import hashlib
import itertools
import sqlite3
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, Literal

from planboard.constants import STATE_DB_SCHEMA_VERSION
from planboard.domain.models import (
    ActionType,
    Actor,
    DraftStatus,
    EntityType,
    Priority,
    StepStatus,
    TaskStatus,
)

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None
Row = dict[str, RowValue]

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

MigrationState = Literal["applied", "pending", "checksum_mismatch"]


def _one_of(enum_type: Iterable[object]) -> str:
    return ", ".join(sorted(f"'{member}'" for member in enum_type))


class StateDBError(RuntimeError):
    """Base class for state database failures."""


class StateDBBusyError(StateDBError):
    """The database stayed locked after every retry."""


class StateDBMigrationError(StateDBError):
    """The stored schema cannot be reconciled with the known migrations."""


class StateDBCorruptionError(StateDBError):
    """SQLite reported a malformed file."""


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]

    @property
    def checksum(self) -> str:
        digest = hashlib.sha256(f"{self.version}:{self.name}\n".encode())
        for statement in self.statements:
            lines = (line.rstrip() for line in statement.strip().splitlines())
            digest.update("\n".join(lines).encode("utf-8") + b"\n--\n")
        return digest.hexdigest()


_HISTORY_TABLE: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""


def _append_only(table: str, event: str) -> str:
    return f"""
    CREATE TRIGGER IF NOT EXISTS {table}_append_only_{event.lower()}
    BEFORE {event} ON {table}
    BEGIN
        SELECT RAISE(ABORT, '{table} is append-only');
    END
    """


# Tasks carry a bare project id with no foreign key: an empty id marks an orphan and
# the project cascade runs in the applier.
MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration(
        version=1,
        name="initial_planboard_schema",
        statements=(
            _HISTORY_TABLE,
            """
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                icon TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL CHECK (status IN ({_one_of(TaskStatus)})),
                priority TEXT NOT NULL CHECK (priority IN ({_one_of(Priority)})),
                wbs TEXT,
                created_at INTEGER NOT NULL,
                start_date INTEGER,
                due_date INTEGER,
                completion INTEGER NOT NULL CHECK (completion BETWEEN 0 AND 100),
                assignee TEXT,
                is_milestone INTEGER NOT NULL CHECK (is_milestone IN (0, 1)),
                predecessors_json TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS drafts (
                id TEXT PRIMARY KEY,
                project_id TEXT,
                status TEXT NOT NULL CHECK (status IN ({_one_of(DraftStatus)})),
                actions_json TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                created_by TEXT NOT NULL CHECK (created_by IN ({_one_of(Actor)})),
                reason TEXT
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS audit_logs (
                id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL CHECK (entity_type IN ({_one_of(EntityType)})),
                entity_id TEXT NOT NULL,
                action TEXT NOT NULL,
                before_json TEXT,
                after_json TEXT,
                actor TEXT NOT NULL CHECK (actor IN ({_one_of(Actor)})),
                reason TEXT,
                timestamp INTEGER NOT NULL,
                project_id TEXT,
                task_id TEXT,
                draft_id TEXT,
                rollback_of TEXT
            )
            """,
            _append_only("audit_logs", "UPDATE"),
            _append_only("audit_logs", "DELETE"),
            "CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)",
            "CREATE INDEX IF NOT EXISTS idx_drafts_status_created ON drafts(status, created_at)",
            "CREATE INDEX IF NOT EXISTS idx_audit_logs_timestamp ON audit_logs(timestamp DESC)",
            "CREATE INDEX IF NOT EXISTS idx_audit_logs_project "
            "ON audit_logs(project_id, timestamp DESC)",
            "CREATE INDEX IF NOT EXISTS idx_audit_logs_task ON audit_logs(task_id, timestamp DESC)",
            "CREATE INDEX IF NOT EXISTS idx_audit_logs_entity "
            "ON audit_logs(entity_type, entity_id)",
        ),
    ),
    Migration(
        version=2,
        name="draft_step_journal",
        statements=(
            f"""
            CREATE TABLE IF NOT EXISTS draft_steps (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                draft_id TEXT NOT NULL,
                position INTEGER NOT NULL CHECK (position >= 0),
                action_id TEXT NOT NULL,
                action TEXT NOT NULL CHECK (action IN ({_one_of(ActionType)})),
                status TEXT NOT NULL CHECK (status IN ({_one_of(StepStatus)})),
                audit_id TEXT,
                error TEXT,
                recorded_at INTEGER NOT NULL,
                FOREIGN KEY(draft_id) REFERENCES drafts(id) ON DELETE CASCADE
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_draft_steps_draft ON draft_steps(draft_id, position)",
        ),
    ),
)


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    """A row of ``schema_versions``."""

    version: int
    name: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class MigrationStatus:
    """One known migration compared against what the database has recorded."""

    version: int
    name: str
    checksum: str
    status: MigrationState
    applied_at: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "version": self.version,
            "name": self.name,
            "checksum": self.checksum,
            "status": self.status,
            "applied_at": self.applied_at,
        }


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------


class StateDB:
    """Handle on the planboard SQLite file.

    Created once by the caller and shared by every repository and service. No
    connection stays open between calls.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for name, value in (
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._savepoints = itertools.count(1)
        self._migrated = False

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON")
            mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()
            if mode is None or str(mode[0]).lower() != "wal":
                raise StateDBError(f"could not switch {self._path} to WAL journal mode")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Commit everything inside the block or nothing.

        Inside an open transaction the block becomes a savepoint, so a failing inner
        block unwinds only its own writes.
        """
        if conn is None:
            with self.connection() as owned, self.transaction(conn=owned, immediate=immediate):
                yield owned
            return

        if conn.in_transaction:
            name = f"sp_{next(self._savepoints)}"
            begin = f"SAVEPOINT {name}"
            commit = f"RELEASE SAVEPOINT {name}"
            rollback: tuple[str, ...] = (f"ROLLBACK TO SAVEPOINT {name}", commit)
        else:
            begin = "BEGIN IMMEDIATE" if immediate else "BEGIN"
            commit = "COMMIT"
            rollback = ("ROLLBACK",)

        self._run(conn, begin)
        try:
            yield conn
        except Exception:
            for statement in rollback:
                self._run(conn, statement)
            raise
        self._run(conn, commit)

    # -----------
    # Migrations
    # -----------

    def migrate(self) -> int:
        """Apply outstanding migrations and return the resulting schema version."""

        with self.connection() as conn:
            self._run(conn, _HISTORY_TABLE)
            for status in self._compare(self._recorded(conn)):
                if status.status == "checksum_mismatch":
                    raise StateDBMigrationError(
                        f"migration {status.version} ({status.name}) was changed after it "
                        f"was applied to {self._path}"
                    )
                if status.status == "applied":
                    continue
                migration = MIGRATIONS[status.version - 1]
                with self.transaction(conn=conn) as tx:
                    for statement in migration.statements:
                        self._run(tx, statement)
                    self._run(
                        tx,
                        "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                        "VALUES (?, ?, ?, ?)",
                        (migration.version, migration.name, migration.checksum, _utc_now()),
                    )
            version = max(self._recorded(conn), default=0)
        self._migrated = True
        return version

    def ensure_migrated(self) -> None:
        if not self._migrated:
            self.migrate()

    def schema_history(self) -> list[MigrationRecord]:
        with self.connection() as conn:
            return sorted(self._recorded(conn).values(), key=lambda record: record.version)

    def migration_status(self) -> list[MigrationStatus]:
        """Report every known migration against the file, without touching it.

        A database file that does not exist yet reports everything as pending.
        """
        if not self._path.exists():
            return self._compare({})
        with self.connection() as conn:
            return self._compare(self._recorded(conn))

    def _recorded(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        exists = self._run(
            conn,
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_versions'",
        ).fetchone()
        if exists is None:
            return {}
        rows = self._run(
            conn, "SELECT version, name, checksum, applied_at FROM schema_versions"
        ).fetchall()
        return {
            int(row["version"]): MigrationRecord(
                version=int(row["version"]),
                name=str(row["name"]),
                checksum=str(row["checksum"]),
                applied_at=str(row["applied_at"]),
            )
            for row in rows
        }

    @staticmethod
    def _compare(recorded: dict[int, MigrationRecord]) -> list[MigrationStatus]:
        newest = max(recorded, default=0)
        if newest > STATE_DB_SCHEMA_VERSION:
            raise StateDBMigrationError(
                f"database schema version {newest} is newer than this release "
                f"({STATE_DB_SCHEMA_VERSION})"
            )
        statuses: list[MigrationStatus] = []
        for migration in MIGRATIONS[:STATE_DB_SCHEMA_VERSION]:
            record = recorded.get(migration.version)
            state: MigrationState
            if record is None:
                state = "pending"
            elif record.checksum != migration.checksum:
                state = "checksum_mismatch"
            else:
                state = "applied"
            statuses.append(
                MigrationStatus(
                    version=migration.version,
                    name=migration.name,
                    checksum=migration.checksum,
                    status=state,
                    applied_at=None if record is None else record.applied_at,
                )
            )
        return statuses

    # -----------
    # Statements
    # -----------

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Run one write statement and return the affected row count."""

        if conn is not None:
            return self._run(conn, sql, params).rowcount
        with self.transaction() as tx:
            return self._run(tx, sql, params).rowcount

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[Row]:
        if conn is not None:
            return [dict(row) for row in self._run(conn, sql, params).fetchall()]
        with self.connection() as owned:
            return [dict(row) for row in self._run(owned, sql, params).fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> Row | None:
        rows = self.query_all(sql, params, conn=conn)
        return rows[0] if rows else None

    def close(self) -> None:
        """Nothing to release; connections never outlive a call."""

    def __enter__(self) -> StateDB:
        self.ensure_migrated()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def _run(
        self, conn: sqlite3.Connection, sql: str, params: SQLParams = ()
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                kind = _classify(exc)
                if kind == "busy" and attempt < self._busy_retry_limit:
                    time.sleep(self._busy_retry_backoff_ms / 1000.0 * 2**attempt)
                    attempt += 1
                    continue
                if kind == "busy":
                    raise StateDBBusyError(
                        f"{self._path} stayed locked after {attempt + 1} attempt(s): {exc}"
                    ) from exc
                if kind == "corrupt":
                    raise StateDBCorruptionError(f"{self._path} is damaged: {exc}") from exc
                raise StateDBError(f"statement failed on {self._path}: {exc}") from exc


def _classify(exc: sqlite3.Error) -> Literal["busy", "corrupt", "other"]:
    name = str(getattr(exc, "sqlite_errorname", ""))
    message = str(exc).lower()
    if name.startswith(("SQLITE_BUSY", "SQLITE_LOCKED")) or "is locked" in message:
        return "busy"
    if name.startswith(("SQLITE_CORRUPT", "SQLITE_NOTADB")) or "malformed" in message:
        return "corrupt"
    return "other"


def _utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MIGRATIONS",
    "Migration",
    "MigrationRecord",
    "MigrationStatus",
    "Row",
    "RowValue",
    "SQLParams",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
]
