"""Unit tests for the domain error taxonomy."""

from __future__ import annotations

from planboard.domain.errors import (
    CONSTRAINT_VIOLATION,
    INVALID_ROLLBACK,
    NOT_FOUND,
    STALE_DRAFT,
    ConstraintViolationError,
    NotFoundError,
    PlanboardError,
    PredecessorEnd,
    RollbackError,
    StaleDraftError,
)

T0 = 1_767_225_600_000
DAY = 86_400_000


def test_constraint_violation_message_names_fields_dates_and_predecessors() -> None:
    exc = ConstraintViolationError(
        task_id="tsk-x",
        task_title="Build",
        violated_fields=["start_date"],
        requested_start=T0 - 10 * DAY,
        requested_due=None,
        required_start=T0 + 2 * DAY,
        required_due=T0 + 7 * DAY,
        predecessors=[PredecessorEnd(task_id="tsk-y", title="Design", effective_end=T0 + 2 * DAY)],
    )

    text = str(exc)
    assert exc.code == CONSTRAINT_VIOLATION
    assert "start_date" in text
    assert "2025-12-22 - N/A" in text
    assert "2026-01-03 - 2026-01-08" in text
    assert "'Design' (tsk-y) ends 2026-01-03" in text
    assert text.splitlines()[-1] == "update the predecessor tasks first or remove the dependency"


def test_error_codes_and_payloads() -> None:
    missing = NotFoundError("Draft", "drf-1", "Draft not found.")
    stale = StaleDraftError("gone", draft_id="drf-1", action_id="act-1", position=2)
    rollback = RollbackError("no snapshot")

    assert isinstance(missing, PlanboardError)
    assert missing.to_dict() == {"code": NOT_FOUND, "message": "Draft not found."}
    assert (stale.code, stale.position) == (STALE_DRAFT, 2)
    assert rollback.code == INVALID_ROLLBACK
    assert NotFoundError("Task", "tsk-9").message == "Task not found: tsk-9"
