"""
planboard - module skeleton

File: src/planboard/persistence/repositories.py
Last updated: 2026-10-19

Purpose
- Repository/DAO classes for reading/writing domain entities to the state DB.

What should be included in this file
- Repositories: ProjectRepo, TaskRepo, DraftRepo, AuditRepo, DraftStepRepo.
- Filtered, paginated audit queries.
- Tolerant decoding of JSON blobs (predecessors, draft actions, audit snapshots).

Functional requirements
- Every method accepts an optional connection so callers can group writes into one
  transaction (one saga step, one rollback).
- Malformed stored JSON degrades to an empty list or ``None`` and is logged, never raised.
- Audit rows are append-only.

Non-functional requirements
- Must be efficient; audit listing is paginated in SQL.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, Final, cast

import structlog

from planboard.constants import MAX_PAGE_SIZE
from planboard.domain.models import (
    Actor,
    AuditRecord,
    Draft,
    DraftAction,
    DraftStatus,
    DraftStep,
    EntityType,
    JSONObject,
    Priority,
    Project,
    StepStatus,
    Task,
    TaskStatus,
    canonical_json,
)
from planboard.persistence.state_db import RowValue, SQLParams, StateDB

if TYPE_CHECKING:
    import sqlite3

_LIST_LIMIT: Final[int] = 10_000

_PROJECT_COLUMNS: Final[str] = "id, name, description, icon, created_at, updated_at"
_TASK_COLUMNS: Final[str] = (
    "id, project_id, title, description, status, priority, wbs, created_at, start_date, "
    "due_date, completion, assignee, is_milestone, predecessors_json, updated_at"
)
_DRAFT_COLUMNS: Final[str] = "id, project_id, status, actions_json, created_at, created_by, reason"
_AUDIT_COLUMNS: Final[str] = (
    "id, entity_type, entity_id, action, before_json, after_json, actor, reason, timestamp, "
    "project_id, task_id, draft_id, rollback_of"
)


class _BaseRepo:
    def __init__(self, db: StateDB, *, logger: Any | None = None) -> None:
        self._db = db
        self._db.ensure_migrated()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @staticmethod
    def _validate_page(limit: int, offset: int, *, max_limit: int = _LIST_LIMIT) -> None:
        if limit <= 0 or limit > max_limit:
            raise ValueError(f"limit must be in [1, {max_limit}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")

    def _safe_json_loads(self, raw: RowValue, *, default: object, column: str) -> object:
        """Decode a stored JSON blob, degrading to ``default`` on any parse failure."""
        if raw is None:
            return default
        if not isinstance(raw, str):
            self._logger.warning("malformed_json_blob", column=column, reason="non-text value")
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            self._logger.warning("malformed_json_blob", column=column, reason=str(exc))
            return default


class ProjectRepo(_BaseRepo):
    """Repository for project rows."""

    def get(self, project_id: str, *, conn: sqlite3.Connection | None = None) -> Project | None:
        row = self._db.query_one(
            f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ?",
            (project_id,),
            conn=conn,
        )
        return None if row is None else _project_from_row(row)

    def list(self, *, conn: sqlite3.Connection | None = None) -> list[Project]:
        rows = self._db.query_all(
            f"SELECT {_PROJECT_COLUMNS} FROM projects ORDER BY created_at ASC, id ASC",
            conn=conn,
        )
        return [_project_from_row(row) for row in rows]

    def exists(self, project_id: str, *, conn: sqlite3.Connection | None = None) -> bool:
        row = self._db.query_one(
            "SELECT 1 AS found FROM projects WHERE id = ?", (project_id,), conn=conn
        )
        return row is not None

    def insert(self, project: Project, *, conn: sqlite3.Connection | None = None) -> Project:
        self._db.execute(
            f"INSERT INTO projects ({_PROJECT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            _project_params(project),
            conn=conn,
        )
        return project

    def upsert(self, project: Project, *, conn: sqlite3.Connection | None = None) -> Project:
        self._db.execute(
            f"""
            INSERT INTO projects ({_PROJECT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name,
                description=excluded.description,
                icon=excluded.icon,
                created_at=excluded.created_at,
                updated_at=excluded.updated_at
            """,
            _project_params(project),
            conn=conn,
        )
        return project

    def update(
        self,
        project_id: str,
        changes: Mapping[str, object],
        *,
        updated_at: int,
        conn: sqlite3.Connection | None = None,
    ) -> Project | None:
        """Apply a partial update; ``None`` values keep the stored field."""
        with self._db.transaction(conn=conn) as tx:
            existing = self.get(project_id, conn=tx)
            if existing is None:
                return None
            updated = _merge(existing, changes, updated_at=updated_at)
            self.upsert(updated, conn=tx)
            return updated

    def delete(self, project_id: str, *, conn: sqlite3.Connection | None = None) -> bool:
        return self._db.execute("DELETE FROM projects WHERE id = ?", (project_id,), conn=conn) > 0


class TaskRepo(_BaseRepo):
    """Repository for task rows. ``predecessors`` is stored as a JSON array."""

    def get(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> Task | None:
        row = self._db.query_one(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?",
            (task_id,),
            conn=conn,
        )
        return None if row is None else self._task_from_row(row)

    def list(self, *, conn: sqlite3.Connection | None = None) -> list[Task]:
        rows = self._db.query_all(
            f"SELECT {_TASK_COLUMNS} FROM tasks ORDER BY created_at ASC, id ASC",
            conn=conn,
        )
        return [self._task_from_row(row) for row in rows]

    def list_for_project(
        self, project_id: str, *, conn: sqlite3.Connection | None = None
    ) -> list[Task]:
        rows = self._db.query_all(
            f"""
            SELECT {_TASK_COLUMNS} FROM tasks
            WHERE project_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            (project_id,),
            conn=conn,
        )
        return [self._task_from_row(row) for row in rows]

    def insert(self, task: Task, *, conn: sqlite3.Connection | None = None) -> Task:
        self._db.execute(
            f"INSERT INTO tasks ({_TASK_COLUMNS}) VALUES ({_placeholders(15)})",
            _task_params(task),
            conn=conn,
        )
        return task

    def upsert(self, task: Task, *, conn: sqlite3.Connection | None = None) -> Task:
        self._db.execute(
            f"""
            INSERT INTO tasks ({_TASK_COLUMNS}) VALUES ({_placeholders(15)})
            ON CONFLICT(id) DO UPDATE SET
                project_id=excluded.project_id,
                title=excluded.title,
                description=excluded.description,
                status=excluded.status,
                priority=excluded.priority,
                wbs=excluded.wbs,
                created_at=excluded.created_at,
                start_date=excluded.start_date,
                due_date=excluded.due_date,
                completion=excluded.completion,
                assignee=excluded.assignee,
                is_milestone=excluded.is_milestone,
                predecessors_json=excluded.predecessors_json,
                updated_at=excluded.updated_at
            """,
            _task_params(task),
            conn=conn,
        )
        return task

    def update(
        self,
        task_id: str,
        changes: Mapping[str, object],
        *,
        updated_at: int,
        conn: sqlite3.Connection | None = None,
    ) -> Task | None:
        """Apply a partial update; ``None`` values keep the stored field."""
        with self._db.transaction(conn=conn) as tx:
            existing = self.get(task_id, conn=tx)
            if existing is None:
                return None
            updated = _merge(existing, changes, updated_at=updated_at)
            self.upsert(updated, conn=tx)
            return updated

    def delete(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> bool:
        return self._db.execute("DELETE FROM tasks WHERE id = ?", (task_id,), conn=conn) > 0

    def delete_for_project(
        self, project_id: str, *, conn: sqlite3.Connection | None = None
    ) -> int:
        return self._db.execute("DELETE FROM tasks WHERE project_id = ?", (project_id,), conn=conn)

    def _task_from_row(self, row: Mapping[str, RowValue]) -> Task:
        raw_predecessors = self._safe_json_loads(
            row.get("predecessors_json"), default=[], column="tasks.predecessors_json"
        )
        if not isinstance(raw_predecessors, list) or not all(
            isinstance(item, str) for item in raw_predecessors
        ):
            self._logger.warning(
                "malformed_json_blob",
                column="tasks.predecessors_json",
                reason="expected array of strings",
                task_id=row.get("id"),
            )
            raw_predecessors = []
        return Task(
            id=cast("str", row["id"]),
            project_id=cast("str", row["project_id"]),
            title=cast("str", row["title"]),
            description=cast("str | None", row["description"]),
            status=cast("TaskStatus", row["status"]),
            priority=cast("Priority", row["priority"]),
            wbs=cast("str | None", row["wbs"]),
            created_at=cast("int", row["created_at"]),
            start_date=cast("int | None", row["start_date"]),
            due_date=cast("int | None", row["due_date"]),
            completion=cast("int", row["completion"]),
            assignee=cast("str | None", row["assignee"]),
            is_milestone=bool(row["is_milestone"]),
            predecessors=tuple(raw_predecessors),
            updated_at=cast("int", row["updated_at"]),
        )


class DraftRepo(_BaseRepo):
    """Repository for drafts. Actions are stored as a JSON array of planned actions."""

    def insert(self, draft: Draft, *, conn: sqlite3.Connection | None = None) -> Draft:
        self._db.execute(
            f"INSERT INTO drafts ({_DRAFT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                draft.id,
                draft.project_id,
                draft.status.value,
                _actions_json(draft.actions),
                draft.created_at,
                draft.created_by.value,
                draft.reason,
            ),
            conn=conn,
        )
        return draft

    def get(self, draft_id: str, *, conn: sqlite3.Connection | None = None) -> Draft | None:
        row = self._db.query_one(
            f"SELECT {_DRAFT_COLUMNS} FROM drafts WHERE id = ?",
            (draft_id,),
            conn=conn,
        )
        return None if row is None else self._draft_from_row(row)

    def list(
        self,
        *,
        status: DraftStatus | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Draft]:
        self._validate_page(limit, offset)
        sql = f"SELECT {_DRAFT_COLUMNS} FROM drafts"
        params: list[object] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(DraftStatus(status).value)
        sql += " ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)))
        return [self._draft_from_row(row) for row in rows]

    def set_status(
        self,
        draft_id: str,
        status: DraftStatus,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        return (
            self._db.execute(
                "UPDATE drafts SET status = ? WHERE id = ?",
                (status.value, draft_id),
                conn=conn,
            )
            > 0
        )

    def update_actions(
        self,
        draft_id: str,
        actions: Iterable[DraftAction],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        return (
            self._db.execute(
                "UPDATE drafts SET actions_json = ? WHERE id = ?",
                (_actions_json(actions), draft_id),
                conn=conn,
            )
            > 0
        )

    def _draft_from_row(self, row: Mapping[str, RowValue]) -> Draft:
        raw_actions = self._safe_json_loads(
            row.get("actions_json"), default=[], column="drafts.actions_json"
        )
        actions: tuple[DraftAction, ...] = ()
        if isinstance(raw_actions, list):
            try:
                actions = tuple(DraftAction.from_dict(item) for item in raw_actions)
            except (TypeError, ValueError) as exc:
                self._logger.warning(
                    "malformed_json_blob",
                    column="drafts.actions_json",
                    reason=str(exc),
                    draft_id=row.get("id"),
                )
        else:
            self._logger.warning(
                "malformed_json_blob",
                column="drafts.actions_json",
                reason="expected array",
                draft_id=row.get("id"),
            )
        return Draft(
            id=cast("str", row["id"]),
            project_id=cast("str | None", row["project_id"]),
            status=cast("DraftStatus", row["status"]),
            actions=actions,
            created_at=cast("int", row["created_at"]),
            created_by=cast("Actor", row["created_by"]),
            reason=cast("str | None", row["reason"]),
        )


class AuditRepo(_BaseRepo):
    """Append-only repository for audit log entries."""

    def append(self, record: AuditRecord, *, conn: sqlite3.Connection | None = None) -> AuditRecord:
        self._db.execute(
            f"INSERT INTO audit_logs ({_AUDIT_COLUMNS}) VALUES ({_placeholders(13)})",
            (
                record.id,
                record.entity_type.value,
                record.entity_id,
                record.action,
                None if record.before is None else canonical_json(record.before),
                None if record.after is None else canonical_json(record.after),
                record.actor.value,
                record.reason,
                record.timestamp,
                record.project_id,
                record.task_id,
                record.draft_id,
                record.rollback_of,
            ),
            conn=conn,
        )
        return record

    def get(self, audit_id: str, *, conn: sqlite3.Connection | None = None) -> AuditRecord | None:
        row = self._db.query_one(
            f"SELECT {_AUDIT_COLUMNS} FROM audit_logs WHERE id = ?",
            (audit_id,),
            conn=conn,
        )
        return None if row is None else self._audit_from_row(row)

    def list(
        self,
        *,
        project_id: str | None = None,
        task_id: str | None = None,
        actor: Actor | str | None = None,
        action: str | None = None,
        entity_type: EntityType | str | None = None,
        q: str | None = None,
        from_ts: int | None = None,
        to_ts: int | None = None,
        draft_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[AuditRecord], int]:
        """Return one page of matching entries, newest first, plus the total match count."""
        self._validate_page(limit, offset, max_limit=MAX_PAGE_SIZE)
        clauses: list[str] = []
        params: list[object] = []
        for column, value in (
            ("project_id", project_id),
            ("task_id", task_id),
            ("actor", None if actor is None else str(actor)),
            ("action", action),
            ("entity_type", None if entity_type is None else str(entity_type)),
            ("draft_id", draft_id),
        ):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        if from_ts is not None:
            clauses.append("timestamp >= ?")
            params.append(from_ts)
        if to_ts is not None:
            clauses.append("timestamp <= ?")
            params.append(to_ts)
        if q:
            pattern = f"%{_escape_like(q)}%"
            clauses.append("(entity_id LIKE ? ESCAPE '\\' OR reason LIKE ? ESCAPE '\\')")
            params.extend((pattern, pattern))

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._db.connection() as conn:
            count_row = self._db.query_one(
                f"SELECT COUNT(*) AS total FROM audit_logs{where}",
                cast("SQLParams", tuple(params)),
                conn=conn,
            )
            rows = self._db.query_all(
                f"""
                SELECT {_AUDIT_COLUMNS} FROM audit_logs{where}
                ORDER BY timestamp DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                cast("SQLParams", (*params, limit, offset)),
                conn=conn,
            )
        total = 0 if count_row is None else int(cast("int", count_row["total"]))
        return [self._audit_from_row(row) for row in rows], total

    def _audit_from_row(self, row: Mapping[str, RowValue]) -> AuditRecord:
        return AuditRecord(
            id=cast("str", row["id"]),
            entity_type=cast("EntityType", row["entity_type"]),
            entity_id=cast("str", row["entity_id"]),
            action=cast("str", row["action"]),
            before=self._snapshot(row.get("before_json"), "audit_logs.before_json"),
            after=self._snapshot(row.get("after_json"), "audit_logs.after_json"),
            actor=cast("Actor", row["actor"]),
            reason=cast("str | None", row["reason"]),
            timestamp=cast("int", row["timestamp"]),
            project_id=cast("str | None", row["project_id"]),
            task_id=cast("str | None", row["task_id"]),
            draft_id=cast("str | None", row["draft_id"]),
            rollback_of=cast("str | None", row["rollback_of"]),
        )

    def _snapshot(self, raw: RowValue, column: str) -> JSONObject | None:
        loaded = self._safe_json_loads(raw, default=None, column=column)
        if loaded is None or isinstance(loaded, dict):
            return cast("JSONObject | None", loaded)
        self._logger.warning("malformed_json_blob", column=column, reason="expected object")
        return None


class DraftStepRepo(_BaseRepo):
    """Append-only journal of per-action apply outcomes."""

    def append(
        self,
        step: DraftStep,
        *,
        action: str,
        conn: sqlite3.Connection | None = None,
    ) -> DraftStep:
        self._db.execute(
            """
            INSERT INTO draft_steps (
                draft_id, position, action_id, action, status, audit_id, error, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                step.draft_id,
                step.position,
                step.action_id,
                action,
                step.status.value,
                step.audit_id,
                step.error,
                step.recorded_at,
            ),
            conn=conn,
        )
        return step

    def list_for_draft(
        self, draft_id: str, *, conn: sqlite3.Connection | None = None
    ) -> list[DraftStep]:
        rows = self._db.query_all(
            """
            SELECT draft_id, position, action_id, status, audit_id, error, recorded_at
            FROM draft_steps
            WHERE draft_id = ?
            ORDER BY id ASC
            """,
            (draft_id,),
            conn=conn,
        )
        return [
            DraftStep(
                draft_id=cast("str", row["draft_id"]),
                position=cast("int", row["position"]),
                action_id=cast("str", row["action_id"]),
                status=cast("StepStatus", row["status"]),
                audit_id=cast("str | None", row["audit_id"]),
                error=cast("str | None", row["error"]),
                recorded_at=cast("int", row["recorded_at"]),
            )
            for row in rows
        ]

    def completed_steps(
        self, draft_id: str, *, conn: sqlite3.Connection | None = None
    ) -> set[tuple[int, str]]:
        """(position, action id) pairs whose step already committed as applied or skipped."""
        rows = self._db.query_all(
            """
            SELECT DISTINCT position, action_id FROM draft_steps
            WHERE draft_id = ? AND status IN (?, ?)
            """,
            (draft_id, StepStatus.APPLIED.value, StepStatus.SKIPPED.value),
            conn=conn,
        )
        return {(cast("int", row["position"]), cast("str", row["action_id"])) for row in rows}


# ------------------------
# Internal helper routines
# ------------------------


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _merge(record: Any, changes: Mapping[str, object], *, updated_at: int) -> Any:
    present = {key: value for key, value in changes.items() if value is not None}
    present.pop("id", None)
    present["updated_at"] = updated_at
    return dataclasses.replace(record, **present)


def _actions_json(actions: Iterable[DraftAction]) -> str:
    return canonical_json([action.to_dict() for action in actions])


def _project_params(project: Project) -> SQLParams:
    return (
        project.id,
        project.name,
        project.description,
        project.icon,
        project.created_at,
        project.updated_at,
    )


def _task_params(task: Task) -> SQLParams:
    return (
        task.id,
        task.project_id,
        task.title,
        task.description,
        task.status.value,
        task.priority.value,
        task.wbs,
        task.created_at,
        task.start_date,
        task.due_date,
        task.completion,
        task.assignee,
        1 if task.is_milestone else 0,
        canonical_json(list(task.predecessors)),
        task.updated_at,
    )


def _project_from_row(row: Mapping[str, RowValue]) -> Project:
    return Project(
        id=cast("str", row["id"]),
        name=cast("str", row["name"]),
        description=cast("str | None", row["description"]),
        icon=cast("str | None", row["icon"]),
        created_at=cast("int", row["created_at"]),
        updated_at=cast("int", row["updated_at"]),
    )


__all__ = [
    "AuditRepo",
    "DraftRepo",
    "DraftStepRepo",
    "ProjectRepo",
    "TaskRepo",
]
