"""
planboard - module skeleton

File: src/planboard/planning/__init__.py
Last updated: 2026-10-19

Purpose
- Pure scheduling logic: the constraint resolver and the draft planner.

Functional requirements
- Planning never writes to persistent storage.
- Planning must be deterministic for a fixed clock and id source.
"""

from planboard.planning.constraints import (
    ConstraintResult,
    apply_task_constraints,
    enforce_date_order,
    resolve_dependency_conflicts,
    resolve_to_fixed_point,
)
from planboard.planning.planner import DraftPlanner, PlannerSettings, plan_actions

__all__ = [
    "ConstraintResult",
    "DraftPlanner",
    "PlannerSettings",
    "apply_task_constraints",
    "enforce_date_order",
    "plan_actions",
    "resolve_dependency_conflicts",
    "resolve_to_fixed_point",
]
