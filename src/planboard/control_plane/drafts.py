"""
planboard - module skeleton

File: src/planboard/control_plane/drafts.py
Last updated: 2026-10-19

Purpose
- Own the draft state machine (pending -> applied | discarded) and the applier.

What should be included in this file
- DraftLifecycle: create, get, list, steps, discard, refresh, apply.
- Per-action apply steps that re-read live state before mutating.
- A step journal so an interrupted apply resumes where it stopped.

Functional requirements
- Applying or discarding a terminal draft returns it unchanged.
- Each step commits its mutation, audit entry, and journal row together.
- A failing step is journaled as failed; earlier steps stay committed and the draft stays pending.

Non-functional requirements
- Single logical writer; overlapping applies of the same draft are not coordinated.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from planboard.domain.errors import NotFoundError, StaleDraftError
from planboard.domain.ids import generate_draft_id
from planboard.domain.models import (
    ActionType,
    Actor,
    AuditRecord,
    Draft,
    DraftAction,
    DraftStatus,
    DraftStep,
    EntityType,
    JSONObject,
    Project,
    ProjectDeleteSnapshot,
    ProjectPatch,
    ProposedAction,
    StepStatus,
    Task,
    TaskPatch,
)
from planboard.observability.logging import correlation_scope
from planboard.utils.clock import Clock, now_ms

if TYPE_CHECKING:
    import sqlite3

    from planboard.control_plane.audit import AuditLog
    from planboard.persistence.repositories import (
        DraftRepo,
        DraftStepRepo,
        ProjectRepo,
        TaskRepo,
    )
    from planboard.persistence.state_db import StateDB
    from planboard.planning.planner import DraftPlanner


@dataclass(frozen=True, slots=True)
class DraftCreateResult:
    draft: Draft
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {"draft": self.draft.to_dict(), "warnings": list(self.warnings)}


class DraftLifecycle:
    """Persists planned drafts and applies them step by step."""

    def __init__(
        self,
        db: StateDB,
        *,
        planner: DraftPlanner,
        audit: AuditLog,
        drafts: DraftRepo,
        steps: DraftStepRepo,
        projects: ProjectRepo,
        tasks: TaskRepo,
        clock: Clock = now_ms,
        logger: Any | None = None,
    ) -> None:
        self._db = db
        self._planner = planner
        self._audit = audit
        self._drafts = drafts
        self._steps = steps
        self._projects = projects
        self._tasks = tasks
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    # -----
    # Reads
    # -----

    def get_draft(self, draft_id: str) -> Draft:
        draft = self._drafts.get(draft_id)
        if draft is None:
            raise NotFoundError("Draft", draft_id, "Draft not found.")
        return draft

    def list_drafts(self, status: DraftStatus | str | None = None) -> list[Draft]:
        return self._drafts.list(status=status)

    def draft_steps(self, draft_id: str) -> list[DraftStep]:
        self.get_draft(draft_id)
        return self._steps.list_for_draft(draft_id)

    # ---------
    # Mutations
    # ---------

    def create_draft(
        self,
        actions: Sequence[ProposedAction | Mapping[str, object]],
        *,
        created_by: Actor | str = Actor.USER,
        reason: str | None = None,
        project_id: str | None = None,
    ) -> DraftCreateResult:
        """Plan ``actions`` and persist them as a pending draft.

        Raises:
            ValueError: an action payload fails validation.
            ConstraintViolationError: planning rejected an explicit date change.
        """
        proposed = _coerce_actions(actions)
        plan = self._planner.plan(proposed)
        now = self._clock()
        draft = Draft(
            id=generate_draft_id(timestamp_ms=now),
            status=DraftStatus.PENDING,
            actions=plan.actions,
            created_at=now,
            created_by=Actor(created_by),
            reason=reason,
            project_id=project_id,
        )
        self._drafts.insert(draft)
        self._logger.info(
            "draft_created",
            draft_id=draft.id,
            action_count=len(draft.actions),
            warning_count=len(plan.warnings),
            created_by=draft.created_by.value,
        )
        return DraftCreateResult(draft=draft, warnings=plan.warnings)

    def discard_draft(self, draft_id: str) -> Draft:
        draft = self.get_draft(draft_id)
        if draft.status.is_terminal:
            return draft
        self._drafts.set_status(draft_id, DraftStatus.DISCARDED)
        self._logger.info("draft_discarded", draft_id=draft_id)
        return dataclasses.replace(draft, status=DraftStatus.DISCARDED)

    def refresh_draft_actions(self, draft_id: str) -> DraftCreateResult:
        """Re-plan a pending draft against current state, keeping its id and status."""
        draft = self.get_draft(draft_id)
        if draft.status.is_terminal:
            return DraftCreateResult(draft=draft)

        proposed = [ProposedAction.from_planned(action) for action in draft.actions]
        plan = self._planner.plan(proposed)
        self._drafts.update_actions(draft_id, plan.actions)
        self._logger.info(
            "draft_refreshed",
            draft_id=draft_id,
            action_count=len(plan.actions),
            warning_count=len(plan.warnings),
        )
        return DraftCreateResult(
            draft=dataclasses.replace(draft, actions=plan.actions), warnings=plan.warnings
        )

    def apply_draft(self, draft_id: str, *, actor: Actor | str = Actor.USER) -> Draft:
        """Execute a pending draft's actions in order, one committed step at a time.

        A retry after a failure skips every step already journaled as applied or skipped.

        Raises:
            NotFoundError: the draft does not exist.
            StaleDraftError: live state no longer matches the plan at some step.
        """
        resolved_actor = Actor(actor)
        draft = self.get_draft(draft_id)
        if draft.status.is_terminal:
            self._logger.info(
                "draft_apply_noop", draft_id=draft_id, status=draft.status.value
            )
            return draft

        with correlation_scope(draft_id=draft_id):
            completed = self._steps.completed_steps(draft_id)
            if completed:
                self._logger.info(
                    "draft_apply_resumed", draft_id=draft_id, completed_steps=len(completed)
                )
            for position, action in enumerate(draft.actions):
                if (position, action.id) in completed:
                    continue
                self._run_step(draft, action, position, resolved_actor)

            self._drafts.set_status(draft_id, DraftStatus.APPLIED)

        self._logger.info(
            "draft_applied", draft_id=draft_id, action_count=len(draft.actions)
        )
        return dataclasses.replace(draft, status=DraftStatus.APPLIED)

    # ---------------
    # Step execution
    # ---------------

    def _run_step(self, draft: Draft, action: DraftAction, position: int, actor: Actor) -> None:
        with correlation_scope(action_id=action.id):
            try:
                with self._db.transaction() as conn:
                    step = self._apply_action(draft, action, position, actor, conn)
            except Exception as exc:
                self._journal_failure(draft, action, position, exc)
                self._logger.warning(
                    "draft_apply_failed",
                    draft_id=draft.id,
                    action_id=action.id,
                    position=position,
                    error=str(exc),
                )
                raise

        event = "draft_step_skipped" if step.status is StepStatus.SKIPPED else "draft_step_applied"
        self._logger.info(
            event,
            draft_id=draft.id,
            action_id=action.id,
            position=position,
            entity_type=action.entity_type.value,
            action=action.action.value,
            audit_id=step.audit_id,
        )

    def _apply_action(
        self,
        draft: Draft,
        action: DraftAction,
        position: int,
        actor: Actor,
        conn: sqlite3.Connection,
    ) -> DraftStep:
        if action.flagged_not_found:
            status = StepStatus.SKIPPED
            audit_id: str | None = None
        else:
            if action.entity_type is EntityType.PROJECT:
                entry = self._apply_project(draft, action, position, actor, conn)
            else:
                entry = self._apply_task(draft, action, position, actor, conn)
            status = StepStatus.APPLIED
            audit_id = entry.id

        step = DraftStep(
            draft_id=draft.id,
            action_id=action.id,
            position=position,
            status=status,
            recorded_at=self._clock(),
            audit_id=audit_id,
        )
        return self._steps.append(step, action=action.action.value, conn=conn)

    def _apply_project(
        self,
        draft: Draft,
        action: DraftAction,
        position: int,
        actor: Actor,
        conn: sqlite3.Connection,
    ) -> AuditRecord:
        stale = _StaleFactory(draft.id, action.id, position)
        now = self._clock()

        if action.action is ActionType.CREATE:
            if action.after is None:
                raise stale("Planned project create has no payload.")
            try:
                project = dataclasses.replace(Project.from_dict(action.after), updated_at=now)
            except ValueError as exc:
                raise stale(f"Planned project payload is invalid: {exc}") from exc
            if self._projects.get(project.id, conn=conn) is not None:
                raise stale(f"Project {project.id} already exists.")
            self._projects.insert(project, conn=conn)
            return self._record(
                draft, action, actor, None, project.to_dict(), project.id, None, conn
            )

        entity_id = action.entity_id or ""
        live = self._projects.get(entity_id, conn=conn)
        if live is None:
            raise stale(f"Project {entity_id} no longer exists.")

        if action.action is ActionType.UPDATE:
            if action.after is None:
                raise stale(f"Planned update of project {entity_id} has no payload.")
            try:
                changes = ProjectPatch.from_dict(action.after).changes()
            except ValueError as exc:
                raise stale(f"Planned project payload is invalid: {exc}") from exc
            updated = self._projects.update(entity_id, changes, updated_at=now, conn=conn)
            if updated is None:
                raise stale(f"Project {entity_id} no longer exists.")
            return self._record(
                draft, action, actor, live.to_dict(), updated.to_dict(), entity_id, None, conn
            )

        children = self._tasks.list_for_project(entity_id, conn=conn)
        snapshot = ProjectDeleteSnapshot(project=live, tasks=tuple(children))
        self._tasks.delete_for_project(entity_id, conn=conn)
        self._projects.delete(entity_id, conn=conn)
        return self._record(draft, action, actor, snapshot.to_dict(), None, entity_id, None, conn)

    def _apply_task(
        self,
        draft: Draft,
        action: DraftAction,
        position: int,
        actor: Actor,
        conn: sqlite3.Connection,
    ) -> AuditRecord:
        stale = _StaleFactory(draft.id, action.id, position)
        now = self._clock()

        if action.action is ActionType.CREATE:
            if action.after is None:
                raise stale("Planned task create has no payload.")
            try:
                task = dataclasses.replace(Task.from_dict(action.after), updated_at=now)
            except ValueError as exc:
                raise stale(f"Planned task payload is invalid: {exc}") from exc
            if self._tasks.get(task.id, conn=conn) is not None:
                raise stale(f"Task {task.id} already exists.")
            self._tasks.insert(task, conn=conn)
            return self._record(
                draft, action, actor, None, task.to_dict(), task.project_id, task.id, conn
            )

        entity_id = action.entity_id or ""
        live = self._tasks.get(entity_id, conn=conn)
        if live is None:
            raise stale(f"Task {entity_id} no longer exists.")

        if action.action is ActionType.UPDATE:
            if action.after is None:
                raise stale(f"Planned update of task {entity_id} has no payload.")
            try:
                changes = TaskPatch.from_dict(action.after).changes()
            except ValueError as exc:
                raise stale(f"Planned task payload is invalid: {exc}") from exc
            updated = self._tasks.update(entity_id, changes, updated_at=now, conn=conn)
            if updated is None:
                raise stale(f"Task {entity_id} no longer exists.")
            return self._record(
                draft,
                action,
                actor,
                live.to_dict(),
                updated.to_dict(),
                updated.project_id,
                entity_id,
                conn,
            )

        self._tasks.delete(entity_id, conn=conn)
        return self._record(
            draft, action, actor, live.to_dict(), None, live.project_id, entity_id, conn
        )

    def _record(
        self,
        draft: Draft,
        action: DraftAction,
        actor: Actor,
        before: JSONObject | None,
        after: JSONObject | None,
        project_id: str | None,
        task_id: str | None,
        conn: sqlite3.Connection,
    ) -> AuditRecord:
        entity_id = action.entity_id
        if entity_id is None:
            entity_id = task_id if action.entity_type is EntityType.TASK else project_id
        return self._audit.record(
            entity_type=action.entity_type,
            entity_id=entity_id or "",
            action=action.action.value,
            actor=actor,
            before=before,
            after=after,
            reason=draft.reason,
            project_id=project_id,
            task_id=task_id,
            draft_id=draft.id,
            conn=conn,
        )

    def _journal_failure(
        self, draft: Draft, action: DraftAction, position: int, exc: Exception
    ) -> None:
        step = DraftStep(
            draft_id=draft.id,
            action_id=action.id,
            position=position,
            status=StepStatus.FAILED,
            recorded_at=self._clock(),
            error=str(exc) or type(exc).__name__,
        )
        self._steps.append(step, action=action.action.value)


class _StaleFactory:
    __slots__ = ("_action_id", "_draft_id", "_position")

    def __init__(self, draft_id: str, action_id: str, position: int) -> None:
        self._draft_id = draft_id
        self._action_id = action_id
        self._position = position

    def __call__(self, message: str) -> StaleDraftError:
        return StaleDraftError(
            message,
            draft_id=self._draft_id,
            action_id=self._action_id,
            position=self._position,
        )


def _coerce_actions(
    actions: Sequence[ProposedAction | Mapping[str, object]],
) -> list[ProposedAction]:
    out: list[ProposedAction] = []
    for index, item in enumerate(actions):
        if isinstance(item, ProposedAction):
            out.append(item)
            continue
        try:
            out.append(ProposedAction.from_dict(item))
        except ValueError as exc:
            raise ValueError(f"actions[{index}]: {exc}") from exc
    return out


__all__ = [
    "DraftCreateResult",
    "DraftLifecycle",
]
