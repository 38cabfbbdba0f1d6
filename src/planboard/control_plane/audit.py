"""
planboard - module skeleton

File: src/planboard/control_plane/audit.py
Last updated: 2026-10-19

Purpose
- Record immutable audit entries and turn a selected entry into a corrective mutation.

What should be included in this file
- AuditLog: record, get, paginated list with filters, rollback.
- Snapshot reconstruction for projects (flat or nested with tasks) and tasks.

Functional requirements
- A rollback derives its direction from which snapshots are present:
  no ``before`` deletes, no ``after`` re-creates, both restores ``before``.
- The correction and its new audit entry commit together.
- Rollback performs no constraint resolution; completion is clamped on reconstruction.

Non-functional requirements
- Audit rows are never updated or deleted.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast

import structlog

from planboard.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from planboard.domain.errors import NotFoundError, RollbackError
from planboard.domain.ids import generate_audit_id
from planboard.domain.models import (
    ROLLBACK_ACTION,
    Actor,
    AuditRecord,
    EntityType,
    JSONObject,
    Project,
    ProjectDeleteSnapshot,
    Task,
)
from planboard.observability.logging import correlation_scope
from planboard.utils.clock import Clock, now_ms

if TYPE_CHECKING:
    import sqlite3

    from planboard.persistence.repositories import AuditRepo, ProjectRepo, TaskRepo
    from planboard.persistence.state_db import StateDB


@dataclass(frozen=True, slots=True)
class AuditFilters:
    project_id: str | None = None
    task_id: str | None = None
    actor: Actor | str | None = None
    action: str | None = None
    entity_type: EntityType | str | None = None
    q: str | None = None
    from_ts: int | None = None
    to_ts: int | None = None
    page: int = 1
    page_size: int | None = None


@dataclass(frozen=True, slots=True)
class AuditPage:
    data: tuple[AuditRecord, ...]
    total: int
    page: int
    page_size: int

    def to_dict(self) -> dict[str, object]:
        return {
            "data": [record.to_dict() for record in self.data],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
        }


class AuditLog:
    """Append-only audit trail with selective rollback."""

    def __init__(
        self,
        db: StateDB,
        *,
        projects: ProjectRepo,
        tasks: TaskRepo,
        audits: AuditRepo,
        clock: Clock = now_ms,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
        logger: Any | None = None,
    ) -> None:
        if not 1 <= default_page_size <= max_page_size <= MAX_PAGE_SIZE:
            raise ValueError(
                f"page sizes must satisfy 1 <= default <= max <= {MAX_PAGE_SIZE}"
            )
        self._db = db
        self._projects = projects
        self._tasks = tasks
        self._audits = audits
        self._clock = clock
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def record(
        self,
        *,
        entity_type: EntityType,
        entity_id: str,
        action: str,
        actor: Actor,
        before: JSONObject | None,
        after: JSONObject | None,
        reason: str | None = None,
        project_id: str | None = None,
        task_id: str | None = None,
        draft_id: str | None = None,
        rollback_of: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> AuditRecord:
        timestamp = self._clock()
        entry = AuditRecord(
            id=generate_audit_id(timestamp_ms=timestamp),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor,
            timestamp=timestamp,
            before=before,
            after=after,
            reason=reason,
            project_id=project_id or None,
            task_id=task_id,
            draft_id=draft_id,
            rollback_of=rollback_of,
        )
        return self._audits.append(entry, conn=conn)

    def get(self, audit_id: str) -> AuditRecord:
        entry = self._audits.get(audit_id)
        if entry is None:
            raise NotFoundError("Audit log", audit_id, "Audit log not found.")
        return entry

    def list(self, filters: AuditFilters | None = None) -> AuditPage:
        resolved = filters if filters is not None else AuditFilters()
        page_size = resolved.page_size
        if page_size is None:
            page_size = self._default_page_size
        if resolved.page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= page_size <= self._max_page_size:
            raise ValueError(f"page_size must be in [1, {self._max_page_size}]")

        records, total = self._audits.list(
            project_id=resolved.project_id,
            task_id=resolved.task_id,
            actor=resolved.actor,
            action=resolved.action,
            entity_type=resolved.entity_type,
            q=resolved.q,
            from_ts=resolved.from_ts,
            to_ts=resolved.to_ts,
            limit=page_size,
            offset=(resolved.page - 1) * page_size,
        )
        return AuditPage(data=tuple(records), total=total, page=resolved.page, page_size=page_size)

    def rollback(
        self,
        audit_id: str,
        *,
        actor: Actor | str = Actor.USER,
        reason: str | None = None,
    ) -> AuditRecord:
        """Undo the mutation recorded by ``audit_id`` and append a ``rollback`` entry.

        Raises:
            NotFoundError: the entry, or an entity it must act on, is absent.
            RollbackError: the entry carries no usable snapshot.
        """
        resolved_actor = Actor(actor)
        with correlation_scope(audit_id=audit_id), self._db.transaction() as conn:
            entry = self._audits.get(audit_id, conn=conn)
            if entry is None:
                raise NotFoundError("Audit log", audit_id, "Audit log not found.")
            if entry.before is None and entry.after is None:
                raise RollbackError("Audit entry has no snapshot to roll back.")

            if entry.entity_type is EntityType.PROJECT:
                live_before, restored = self._rollback_project(entry, conn)
                project_id: str | None = entry.entity_id
                task_id: str | None = None
            else:
                live_before, restored = self._rollback_task(entry, conn)
                reference = restored if restored is not None else live_before
                raw_project = (reference or {}).get("project_id")
                project_id = raw_project if isinstance(raw_project, str) else None
                task_id = entry.entity_id

            correction = self.record(
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                action=ROLLBACK_ACTION,
                actor=resolved_actor,
                before=live_before,
                after=restored,
                reason=reason or f"Rollback of audit {audit_id}",
                project_id=project_id,
                task_id=task_id,
                draft_id=None,
                rollback_of=audit_id,
                conn=conn,
            )

        self._logger.info(
            "audit_rollback_applied",
            audit_id=audit_id,
            rollback_audit_id=correction.id,
            entity_type=entry.entity_type.value,
            entity_id=entry.entity_id,
            actor=resolved_actor.value,
        )
        return correction

    # --------
    # Projects
    # --------

    def _rollback_project(
        self, entry: AuditRecord, conn: sqlite3.Connection
    ) -> tuple[JSONObject | None, JSONObject | None]:
        project_id = entry.entity_id
        live = self._projects.get(project_id, conn=conn)

        if entry.before is None:
            if live is None:
                raise NotFoundError("Project", project_id, "Project not found for rollback.")
            children = self._tasks.list_for_project(project_id, conn=conn)
            self._tasks.delete_for_project(project_id, conn=conn)
            self._projects.delete(project_id, conn=conn)
            return ProjectDeleteSnapshot(project=live, tasks=tuple(children)).to_dict(), None

        if entry.after is not None and live is None:
            raise NotFoundError("Project", project_id, "Project not found for rollback.")

        project, snapshot_tasks = _project_snapshot(entry.before)
        if project.id != project_id:
            raise RollbackError("Project snapshot does not match the audited entity.")

        nested = snapshot_tasks is not None
        live_before: JSONObject | None = None
        if live is not None:
            if nested:
                live_children = self._tasks.list_for_project(project_id, conn=conn)
                live_before = ProjectDeleteSnapshot(live, tuple(live_children)).to_dict()
            else:
                live_before = live.to_dict()

        self._projects.upsert(project, conn=conn)
        if snapshot_tasks is None:
            return live_before, project.to_dict()

        self._tasks.delete_for_project(project_id, conn=conn)
        for task in snapshot_tasks:
            self._tasks.upsert(task, conn=conn)
        return live_before, ProjectDeleteSnapshot(project, snapshot_tasks).to_dict()

    # -----
    # Tasks
    # -----

    def _rollback_task(
        self, entry: AuditRecord, conn: sqlite3.Connection
    ) -> tuple[JSONObject | None, JSONObject | None]:
        task_id = entry.entity_id
        live = self._tasks.get(task_id, conn=conn)

        if entry.before is None:
            if live is None:
                raise NotFoundError("Task", task_id, "Task not found for rollback.")
            self._tasks.delete(task_id, conn=conn)
            return live.to_dict(), None

        if entry.after is not None and live is None:
            raise NotFoundError("Task", task_id, "Task not found for rollback.")

        task = _task_snapshot(entry.before)
        if task.id != task_id:
            raise RollbackError("Task snapshot does not match the audited entity.")
        if task.project_id and not self._projects.exists(task.project_id, conn=conn):
            raise RollbackError("Project missing for task rollback.")

        self._tasks.upsert(task, conn=conn)
        return (None if live is None else live.to_dict()), task.to_dict()


# ------------------------
# Internal helper routines
# ------------------------


def _project_snapshot(raw: Mapping[str, object]) -> tuple[Project, tuple[Task, ...] | None]:
    """Parse a flat project snapshot or a nested ``{project, tasks}`` one."""
    try:
        if "project" in raw:
            nested_project = raw["project"]
            raw_tasks = raw.get("tasks") or []
            if not isinstance(nested_project, Mapping) or not isinstance(raw_tasks, list):
                raise RollbackError("Project snapshot is malformed.")
            project = Project.from_dict(nested_project)
            tasks = tuple(
                Task.from_dict(cast("Mapping[str, object]", item)) for item in raw_tasks
            )
            return project, tasks
        return Project.from_dict(raw), None
    except (TypeError, ValueError) as exc:
        raise RollbackError(f"Project snapshot is malformed: {exc}") from exc


def _task_snapshot(raw: Mapping[str, object]) -> Task:
    try:
        return Task.from_dict(raw)
    except (TypeError, ValueError) as exc:
        raise RollbackError(f"Task snapshot is malformed: {exc}") from exc


__all__ = [
    "AuditFilters",
    "AuditLog",
    "AuditPage",
]
