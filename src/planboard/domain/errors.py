"""Error taxonomy for planning, applying, and rolling back drafts."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

NOT_FOUND: Final[str] = "NOT_FOUND"
CONSTRAINT_VIOLATION: Final[str] = "CONSTRAINT_VIOLATION"
STALE_DRAFT: Final[str] = "STALE_DRAFT"
INVALID_ROLLBACK: Final[str] = "INVALID_ROLLBACK"


class PlanboardError(RuntimeError):
    """Base class for domain failures surfaced to callers with a stable ``code``."""

    code: str = "PLANBOARD_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class NotFoundError(PlanboardError):
    """Raised when a referenced draft, audit entry, project, or task is absent."""

    code = NOT_FOUND

    def __init__(self, entity: str, entity_id: str, message: str | None = None) -> None:
        super().__init__(message or f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


@dataclass(frozen=True, slots=True)
class PredecessorEnd:
    task_id: str
    title: str
    effective_end: int


class ConstraintViolationError(PlanboardError):
    """Raised when an explicitly requested date conflicts with a dependency.

    Planning aborts as a whole; nothing is persisted.
    """

    code = CONSTRAINT_VIOLATION

    def __init__(
        self,
        *,
        task_id: str,
        task_title: str,
        violated_fields: Sequence[str],
        requested_start: int | None,
        requested_due: int | None,
        required_start: int | None,
        required_due: int | None,
        predecessors: Sequence[PredecessorEnd] = (),
    ) -> None:
        self.task_id = task_id
        self.task_title = task_title
        self.violated_fields = tuple(violated_fields)
        self.requested_start = requested_start
        self.requested_due = requested_due
        self.required_start = required_start
        self.required_due = required_due
        self.predecessors = tuple(predecessors)
        super().__init__(self._render())

    def _render(self) -> str:
        fields_text = " and ".join(self.violated_fields)
        lines = [
            f"cannot change {fields_text} of task {self.task_title!r} ({self.task_id}): "
            "the requested dates violate predecessor dependencies",
            f"requested: {_fmt_day(self.requested_start)} - {_fmt_day(self.requested_due)}",
            f"required by dependencies: {_fmt_day(self.required_start)} - "
            f"{_fmt_day(self.required_due)}",
        ]
        for item in self.predecessors:
            lines.append(
                f"predecessor {item.title!r} ({item.task_id}) ends {_fmt_day(item.effective_end)}"
            )
        lines.append("update the predecessor tasks first or remove the dependency")
        return "\n".join(lines)


class StaleDraftError(PlanboardError):
    """Raised when apply-time state no longer matches what the plan assumed.

    Steps committed before the failing one stay committed and journaled.
    """

    code = STALE_DRAFT

    def __init__(
        self,
        message: str,
        *,
        draft_id: str,
        action_id: str,
        position: int,
    ) -> None:
        super().__init__(message)
        self.draft_id = draft_id
        self.action_id = action_id
        self.position = position


class RollbackError(PlanboardError):
    """Raised when an audit entry cannot be turned into a corrective action."""

    code = INVALID_ROLLBACK

    def __init__(self, message: str, *, code: str = INVALID_ROLLBACK) -> None:
        super().__init__(message, code=code)


def _fmt_day(value: int | None) -> str:
    if value is None:
        return "N/A"
    return datetime.fromtimestamp(value / 1000, tz=UTC).date().isoformat()


__all__ = [
    "CONSTRAINT_VIOLATION",
    "INVALID_ROLLBACK",
    "NOT_FOUND",
    "STALE_DRAFT",
    "ConstraintViolationError",
    "NotFoundError",
    "PlanboardError",
    "PredecessorEnd",
    "RollbackError",
    "StaleDraftError",
]
