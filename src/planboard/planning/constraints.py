"""
planboard - module skeleton

File: src/planboard/planning/constraints.py
Last updated: 2026-10-19

Purpose
- Pure date repair for tasks: date ordering and predecessor dependencies.

What should be included in this file
- Effective start/end computation.
- Date-order enforcement and dependency shifting with human-readable warnings.
- A single-pass combinator and an opt-in fixed-point combinator.

Functional requirements
- Must never perform I/O.
- After any pass, effective end must be strictly after effective start.
- Unresolvable predecessor references contribute nothing.

Non-functional requirements
- Inputs are never mutated; adjusted tasks are new records.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Final

from planboard.constants import DAY_MS
from planboard.domain.models import Task

DATE_ORDER_WARNING: Final[str] = "Adjusted task dates to ensure due date is after start date."
DEPENDENCY_WARNING: Final[str] = "Adjusted task dates to satisfy predecessor dependencies."
NOT_CONVERGED_WARNING: Final[str] = (
    "Task dates did not settle within {passes} constraint passes; schedule may be inconsistent."
)


@dataclass(frozen=True, slots=True)
class ConstraintResult:
    task: Task
    warnings: tuple[str, ...] = ()
    changed: bool = False


def effective_start(task: Task) -> int:
    return task.start_date if task.start_date is not None else task.created_at


def effective_end(task: Task) -> int:
    start = effective_start(task)
    end = task.due_date if task.due_date is not None else start + DAY_MS
    return start + DAY_MS if end <= start else end


def find_predecessors(task: Task, all_tasks: Iterable[Task]) -> list[Task]:
    """Resolve ``task.predecessors`` by id or wbs within the task's project.

    Each reference resolves to the first matching task; unmatched references are dropped.
    """
    if not task.predecessors:
        return []
    candidates = [item for item in all_tasks if item.project_id == task.project_id]
    resolved: list[Task] = []
    for ref in task.predecessors:
        for candidate in candidates:
            if candidate.id == ref or (candidate.wbs is not None and candidate.wbs == ref):
                resolved.append(candidate)
                break
    return resolved


def enforce_date_order(task: Task) -> ConstraintResult:
    """Repair a stored due date that is not after the effective start.

    A missing due date already implies start + 1 day and is left alone.
    """
    start = effective_start(task)
    if task.due_date is None or task.due_date > start:
        return ConstraintResult(task=task)
    adjusted = dataclasses.replace(task, start_date=start, due_date=start + DAY_MS)
    return ConstraintResult(task=adjusted, warnings=(DATE_ORDER_WARNING,), changed=True)


def resolve_dependency_conflicts(task: Task, all_tasks: Sequence[Task]) -> ConstraintResult:
    if not task.predecessors:
        return ConstraintResult(task=task)

    start = effective_start(task)
    end = effective_end(task)
    max_end = start
    for predecessor in find_predecessors(task, all_tasks):
        max_end = max(max_end, effective_end(predecessor))

    if max_end <= start:
        return ConstraintResult(task=task)

    duration = max(DAY_MS, end - start)
    next_start = max_end
    next_end = max(next_start + DAY_MS, next_start + duration)
    adjusted = dataclasses.replace(task, start_date=next_start, due_date=next_end)
    return ConstraintResult(task=adjusted, warnings=(DEPENDENCY_WARNING,), changed=True)


def apply_task_constraints(task: Task, all_tasks: Sequence[Task]) -> ConstraintResult:
    """Dependency pass, then date-order pass on its result. Exactly one pass."""
    dependency = resolve_dependency_conflicts(task, all_tasks)
    ordered = enforce_date_order(dependency.task)
    return ConstraintResult(
        task=ordered.task,
        warnings=dependency.warnings + ordered.warnings,
        changed=dependency.changed or ordered.changed,
    )


def resolve_to_fixed_point(
    task: Task,
    all_tasks: Sequence[Task],
    *,
    max_passes: int,
) -> ConstraintResult:
    """Repeat :func:`apply_task_constraints` until the task stops moving.

    The population seen by each pass has ``task`` replaced by its latest version, so a
    self-referencing predecessor chain keeps shifting and ends with a non-convergence
    warning once ``max_passes`` is exhausted. Warnings are de-duplicated in order.
    """
    if max_passes < 1:
        raise ValueError("max_passes must be >= 1")

    current = task
    warnings: list[str] = []
    changed = False
    for _ in range(max_passes):
        population = [current if item.id == current.id else item for item in all_tasks]
        result = apply_task_constraints(current, population)
        if not result.changed:
            return ConstraintResult(task=current, warnings=tuple(warnings), changed=changed)
        changed = True
        current = result.task
        for warning in result.warnings:
            if warning not in warnings:
                warnings.append(warning)

    warnings.append(NOT_CONVERGED_WARNING.format(passes=max_passes))
    return ConstraintResult(task=current, warnings=tuple(warnings), changed=changed)


__all__ = [
    "DATE_ORDER_WARNING",
    "DEPENDENCY_WARNING",
    "NOT_CONVERGED_WARNING",
    "ConstraintResult",
    "apply_task_constraints",
    "effective_end",
    "effective_start",
    "enforce_date_order",
    "find_predecessors",
    "resolve_dependency_conflicts",
    "resolve_to_fixed_point",
]
