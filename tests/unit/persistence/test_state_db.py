"""Unit tests for StateDB migrations, transactions, and append-only audit storage."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from planboard.constants import STATE_DB_SCHEMA_VERSION
from planboard.persistence.state_db import (
    MIGRATIONS,
    StateDB,
    StateDBBusyError,
    StateDBMigrationError,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_migrate_is_idempotent_and_records_history(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "nested" / "planboard.sqlite")

    assert db.migrate() == STATE_DB_SCHEMA_VERSION
    assert db.migrate() == STATE_DB_SCHEMA_VERSION

    history = db.schema_history()
    assert [row.version for row in history] == list(range(1, STATE_DB_SCHEMA_VERSION + 1))
    assert [row.checksum for row in history] == [m.checksum for m in MIGRATIONS]
    assert all(len(row.checksum) == 64 for row in history)


def test_migration_status_reads_without_creating_the_file(tmp_path: Path) -> None:
    path = tmp_path / "missing" / "planboard.sqlite"
    db = StateDB(path)

    pending = db.migration_status()

    assert [status.status for status in pending] == ["pending"] * STATE_DB_SCHEMA_VERSION
    assert not path.exists()

    db.migrate()
    applied = db.migration_status()
    assert {status.status for status in applied} == {"applied"}
    assert all(status.applied_at for status in applied)


def test_changed_migration_is_reported_and_blocks_migrate(db: StateDB) -> None:
    db.execute("UPDATE schema_versions SET checksum = ? WHERE version = 1", ("0" * 64,))
    reopened = StateDB(db.path)

    statuses = reopened.migration_status()

    assert statuses[0].status == "checksum_mismatch"
    with pytest.raises(StateDBMigrationError, match="changed after it was applied"):
        reopened.migrate()


def test_newer_schema_is_rejected(db: StateDB) -> None:
    db.execute(
        "INSERT INTO schema_versions (version, name, checksum, applied_at) VALUES (?, ?, ?, ?)",
        (STATE_DB_SCHEMA_VERSION + 1, "future", "f" * 64, "2099-01-01T00:00:00Z"),
    )

    with pytest.raises(StateDBMigrationError, match="newer than this release"):
        StateDB(db.path).migrate()


def test_transaction_rolls_back_on_error(db: StateDB) -> None:
    with pytest.raises(RuntimeError, match="boom"), db.transaction() as conn:
        db.execute(
            "INSERT INTO projects (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
            ("prj-1", "P", 1, 1),
            conn=conn,
        )
        raise RuntimeError("boom")

    assert db.query_one("SELECT id FROM projects WHERE id = ?", ("prj-1",)) is None


def test_nested_transaction_uses_savepoint(db: StateDB) -> None:
    with db.transaction() as conn:
        db.execute(
            "INSERT INTO projects (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
            ("prj-outer", "outer", 1, 1),
            conn=conn,
        )
        with pytest.raises(ValueError), db.transaction(conn=conn) as inner:
            db.execute(
                "INSERT INTO projects (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
                ("prj-inner", "inner", 1, 1),
                conn=inner,
            )
            raise ValueError("inner failure")

    rows = db.query_all("SELECT id FROM projects ORDER BY id")
    assert [row["id"] for row in rows] == ["prj-outer"]


def test_locked_database_is_retried_then_reported(tmp_path: Path) -> None:
    path = tmp_path / "locked.sqlite"
    StateDB(path).migrate()
    contender = StateDB(path, busy_timeout_ms=0, busy_retry_limit=2, busy_retry_backoff_ms=0)

    holder = sqlite3.connect(path, isolation_level=None)
    try:
        holder.execute("BEGIN EXCLUSIVE")
        with pytest.raises(StateDBBusyError, match="3 attempt"):
            contender.execute(
                "INSERT INTO projects (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
                ("prj-1", "P", 1, 1),
            )
    finally:
        holder.execute("ROLLBACK")
        holder.close()


def test_audit_rows_are_append_only(db: StateDB) -> None:
    db.execute(
        """
        INSERT INTO audit_logs (id, entity_type, entity_id, action, actor, timestamp)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        ("aud-1", "task", "tsk-1", "create", "user", 1),
    )

    with pytest.raises(sqlite3.IntegrityError, match="append-only"):
        db.execute("UPDATE audit_logs SET reason = 'x' WHERE id = 'aud-1'")
    with pytest.raises(sqlite3.IntegrityError, match="append-only"):
        db.execute("DELETE FROM audit_logs WHERE id = 'aud-1'")


def test_task_status_check_constraint(db: StateDB) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        db.execute(
            """
            INSERT INTO tasks (
                id, project_id, title, status, priority, created_at, completion,
                is_milestone, predecessors_json, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            ("tsk-1", "", "t", "BLOCKED", "LOW", 1, 0, 0, "[]", 1),
        )
