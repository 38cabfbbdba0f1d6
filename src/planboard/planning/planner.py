"""
planboard - module skeleton

File: src/planboard/planning/planner.py
Last updated: 2026-10-19

Purpose
- Compile proposed actions into an annotated, simulated plan without writing anything.

What should be included in this file
- Input normalization for project and task creates.
- An in-memory projection of projects and tasks that actions are replayed against.
- Per-task constraint resolution and the explicit-date conflict guard.
- DraftPlanner: loads current state once and plans against it.

Functional requirements
- Actions are replayed strictly in order; action N sees the effects of actions 1..N-1.
- Missing update/delete targets produce a warning and a snapshot-less action, never an error.
- An explicit date request that a dependency would move raises ConstraintViolationError.

Non-functional requirements
- Deterministic given a clock and the loaded state.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog

from planboard.constants import (
    DEFAULT_MAX_RESOLUTION_PASSES,
    DEFAULT_PROJECT_NAME,
    DEFAULT_RESOLUTION_MODE,
    DEFAULT_TASK_TITLE,
    RESOLUTION_MODES,
)
from planboard.domain.errors import ConstraintViolationError, PredecessorEnd
from planboard.domain.ids import generate_action_id, generate_project_id, generate_task_id
from planboard.domain.models import (
    ActionType,
    DraftAction,
    EntityType,
    PlanResult,
    Priority,
    Project,
    ProjectPatch,
    ProposedAction,
    Task,
    TaskPatch,
    TaskStatus,
    clamp_completion,
)
from planboard.planning.constraints import (
    ConstraintResult,
    apply_task_constraints,
    effective_end,
    find_predecessors,
    resolve_dependency_conflicts,
    resolve_to_fixed_point,
)
from planboard.utils.clock import Clock, now_ms

if TYPE_CHECKING:
    from planboard.persistence.repositories import ProjectRepo, TaskRepo


PROJECT_UPDATE_NOT_FOUND: Final[str] = "Project not found for update."
PROJECT_DELETE_NOT_FOUND: Final[str] = "Project not found for delete."
TASK_NOT_FOUND: Final[str] = "Task not found."
TASK_MISSING_PROJECT: Final[str] = "Task create missing projectId."


@dataclass(frozen=True, slots=True)
class PlannerSettings:
    resolution_mode: str = DEFAULT_RESOLUTION_MODE
    max_passes: int = DEFAULT_MAX_RESOLUTION_PASSES

    def __post_init__(self) -> None:
        if self.resolution_mode not in RESOLUTION_MODES:
            allowed = ", ".join(RESOLUTION_MODES)
            raise ValueError(f"resolution_mode must be one of: {allowed}")
        if self.max_passes < 1:
            raise ValueError("max_passes must be >= 1")


def normalize_project_input(patch: ProjectPatch, *, now: int) -> Project:
    """Fill create defaults for a project payload."""
    return Project(
        id=patch.id or generate_project_id(timestamp_ms=now),
        name=patch.name if patch.name is not None else DEFAULT_PROJECT_NAME,
        description=patch.description,
        icon=patch.icon,
        created_at=now,
        updated_at=now,
    )


def normalize_task_input(patch: TaskPatch, *, now: int) -> Task:
    """Fill create defaults for a task payload.

    ``start_date`` defaults to ``created_at``; completion is clamped.
    """
    created_at = patch.created_at if patch.created_at is not None else now
    return Task(
        id=patch.id or generate_task_id(timestamp_ms=now),
        project_id=patch.project_id or "",
        title=patch.title if patch.title is not None else DEFAULT_TASK_TITLE,
        description=patch.description,
        status=patch.status if patch.status is not None else TaskStatus.TODO,
        priority=patch.priority if patch.priority is not None else Priority.MEDIUM,
        wbs=patch.wbs,
        created_at=created_at,
        updated_at=now,
        start_date=patch.start_date if patch.start_date is not None else created_at,
        due_date=patch.due_date,
        completion=clamp_completion(patch.completion),
        assignee=patch.assignee,
        is_milestone=bool(patch.is_milestone),
        predecessors=patch.predecessors or (),
    )


class _Projection:
    """Mutable in-memory view of projects and tasks for one planning run."""

    def __init__(self, projects: Iterable[Project], tasks: Iterable[Task]) -> None:
        self.projects: dict[str, Project] = {project.id: project for project in projects}
        self.tasks: dict[str, Task] = {task.id: task for task in tasks}

    def task_list(self) -> list[Task]:
        return list(self.tasks.values())

    def remove_project(self, project_id: str) -> None:
        self.projects.pop(project_id, None)
        for task_id in [tid for tid, task in self.tasks.items() if task.project_id == project_id]:
            del self.tasks[task_id]


def plan_actions(
    proposed: Sequence[ProposedAction],
    projects: Iterable[Project],
    tasks: Iterable[Task],
    *,
    now: int,
    settings: PlannerSettings | None = None,
) -> PlanResult:
    """Replay ``proposed`` against a projection of ``projects`` and ``tasks``.

    Raises:
        ConstraintViolationError: an explicit date change conflicts with a dependency.
    """
    resolved_settings = settings if settings is not None else PlannerSettings()
    projection = _Projection(projects, tasks)
    planned: list[DraftAction] = []
    for item in proposed:
        action_id = item.id or generate_action_id(timestamp_ms=now)
        if item.entity_type is EntityType.PROJECT:
            planned.append(_plan_project(item, action_id, projection, now=now))
        else:
            planned.append(
                _plan_task(item, action_id, projection, now=now, settings=resolved_settings)
            )
    warnings = tuple(warning for action in planned for warning in action.warnings)
    return PlanResult(actions=tuple(planned), warnings=warnings)


class DraftPlanner:
    """Loads current state once and plans proposed actions against it."""

    def __init__(
        self,
        projects: ProjectRepo,
        tasks: TaskRepo,
        *,
        settings: PlannerSettings | None = None,
        clock: Clock = now_ms,
        logger: Any | None = None,
    ) -> None:
        self._projects = projects
        self._tasks = tasks
        self._settings = settings if settings is not None else PlannerSettings()
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> PlannerSettings:
        return self._settings

    def plan(self, proposed: Sequence[ProposedAction]) -> PlanResult:
        try:
            result = plan_actions(
                proposed,
                self._projects.list(),
                self._tasks.list(),
                now=self._clock(),
                settings=self._settings,
            )
        except ConstraintViolationError as exc:
            self._logger.warning(
                "draft_plan_rejected",
                task_id=exc.task_id,
                violated_fields=list(exc.violated_fields),
            )
            raise
        self._logger.info(
            "draft_planned",
            action_count=len(result.actions),
            warning_count=len(result.warnings),
            resolution_mode=self._settings.resolution_mode,
        )
        return result


# ------------------------
# Internal helper routines
# ------------------------


def _plan_project(
    item: ProposedAction,
    action_id: str,
    projection: _Projection,
    *,
    now: int,
) -> DraftAction:
    patch = item.payload
    if not isinstance(patch, ProjectPatch):
        raise TypeError("project actions require a ProjectPatch payload")

    if item.action is ActionType.CREATE:
        project = normalize_project_input(patch, now=now)
        projection.projects[project.id] = project
        return DraftAction(
            id=action_id,
            entity_type=EntityType.PROJECT,
            action=ActionType.CREATE,
            entity_id=project.id,
            before=None,
            after=project.to_dict(),
        )

    entity_id = item.entity_id or ""
    existing = projection.projects.get(entity_id)
    if existing is None:
        message = (
            PROJECT_UPDATE_NOT_FOUND
            if item.action is ActionType.UPDATE
            else PROJECT_DELETE_NOT_FOUND
        )
        return _not_found(item, action_id, message)

    if item.action is ActionType.UPDATE:
        updated = dataclasses.replace(existing, **patch.changes(), updated_at=now)
        projection.projects[entity_id] = updated
        return DraftAction(
            id=action_id,
            entity_type=EntityType.PROJECT,
            action=ActionType.UPDATE,
            entity_id=entity_id,
            before=existing.to_dict(),
            after=updated.to_dict(),
        )

    projection.remove_project(entity_id)
    return DraftAction(
        id=action_id,
        entity_type=EntityType.PROJECT,
        action=ActionType.DELETE,
        entity_id=entity_id,
        before=existing.to_dict(),
        after=None,
    )


def _plan_task(
    item: ProposedAction,
    action_id: str,
    projection: _Projection,
    *,
    now: int,
    settings: PlannerSettings,
) -> DraftAction:
    patch = item.payload
    if not isinstance(patch, TaskPatch):
        raise TypeError("task actions require a TaskPatch payload")

    if item.action is ActionType.CREATE:
        task = normalize_task_input(patch, now=now)
        projection.tasks[task.id] = task
        resolved = _resolve(task, projection.task_list(), settings)
        projection.tasks[task.id] = resolved.task
        warnings = list(resolved.warnings)
        if not resolved.task.project_id:
            warnings.append(TASK_MISSING_PROJECT)
        return DraftAction(
            id=action_id,
            entity_type=EntityType.TASK,
            action=ActionType.CREATE,
            entity_id=resolved.task.id,
            before=None,
            after=resolved.task.to_dict(),
            warnings=tuple(warnings),
        )

    entity_id = item.entity_id or ""
    existing = projection.tasks.get(entity_id)
    if existing is None:
        return _not_found(item, action_id, TASK_NOT_FOUND)

    if item.action is ActionType.DELETE:
        del projection.tasks[entity_id]
        return DraftAction(
            id=action_id,
            entity_type=EntityType.TASK,
            action=ActionType.DELETE,
            entity_id=entity_id,
            before=existing.to_dict(),
            after=None,
        )

    changes = patch.changes()
    changes.pop("id", None)
    merged = dataclasses.replace(existing, **changes, updated_at=now)
    projection.tasks[entity_id] = merged
    population = projection.task_list()
    _guard_explicit_dates(patch, existing, merged, population)

    resolved = _resolve(merged, population, settings)
    projection.tasks[entity_id] = resolved.task
    return DraftAction(
        id=action_id,
        entity_type=EntityType.TASK,
        action=ActionType.UPDATE,
        entity_id=entity_id,
        before=existing.to_dict(),
        after=resolved.task.to_dict(),
        warnings=resolved.warnings,
    )


def _resolve(task: Task, population: Sequence[Task], settings: PlannerSettings) -> ConstraintResult:
    if settings.resolution_mode == "fixed_point":
        return resolve_to_fixed_point(task, population, max_passes=settings.max_passes)
    return apply_task_constraints(task, population)


def _guard_explicit_dates(
    patch: TaskPatch,
    existing: Task,
    merged: Task,
    population: Sequence[Task],
) -> None:
    """Reject explicit date changes that the dependency pass would move."""
    explicit_start = patch.start_date is not None and patch.start_date != existing.start_date
    explicit_due = patch.due_date is not None and patch.due_date != existing.due_date
    if not (explicit_start or explicit_due):
        return

    dependency = resolve_dependency_conflicts(merged, population)
    if not dependency.changed:
        return

    violated: list[str] = []
    if explicit_start and dependency.task.start_date != patch.start_date:
        violated.append("start_date")
    if explicit_due and dependency.task.due_date != patch.due_date:
        violated.append("due_date")
    if not violated:
        return

    raise ConstraintViolationError(
        task_id=merged.id,
        task_title=merged.title,
        violated_fields=violated,
        requested_start=patch.start_date,
        requested_due=patch.due_date,
        required_start=dependency.task.start_date,
        required_due=dependency.task.due_date,
        predecessors=[
            PredecessorEnd(task_id=item.id, title=item.title, effective_end=effective_end(item))
            for item in find_predecessors(merged, population)
        ],
    )


def _not_found(item: ProposedAction, action_id: str, message: str) -> DraftAction:
    return DraftAction(
        id=action_id,
        entity_type=item.entity_type,
        action=item.action,
        entity_id=item.entity_id,
        before=None,
        after=None,
        warnings=(message,),
    )


__all__ = [
    "PROJECT_DELETE_NOT_FOUND",
    "PROJECT_UPDATE_NOT_FOUND",
    "TASK_MISSING_PROJECT",
    "TASK_NOT_FOUND",
    "DraftPlanner",
    "PlannerSettings",
    "normalize_project_input",
    "normalize_task_input",
    "plan_actions",
]
