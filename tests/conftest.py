"""Shared deterministic fixtures and builders for planboard tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any, Final

import pytest

from planboard.constants import DAY_MS
from planboard.control_plane import PlanboardController
from planboard.domain.models import Project, Task
from planboard.observability.logging import shutdown_logging
from planboard.persistence.state_db import StateDB
from planboard.utils.clock import Clock

if TYPE_CHECKING:
    from pathlib import Path

# 2026-01-01T00:00:00Z
BASE_TS: Final[int] = 1_767_225_600_000


class TickingClock:
    """Manually advanced clock; each call also moves forward ``step`` ms."""

    def __init__(self, start: int = BASE_TS, *, step: int = 1) -> None:
        self.value = start
        self.step = step

    def __call__(self) -> int:
        current = self.value
        self.value += self.step
        return current

    def advance(self, ms: int) -> None:
        self.value += ms

    def advance_days(self, days: int) -> None:
        self.value += days * DAY_MS


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def db(tmp_path: Path) -> StateDB:
    state_db = StateDB(tmp_path / "state" / "planboard.sqlite")
    state_db.migrate()
    return state_db


@pytest.fixture
def controller(db: StateDB, clock: Clock) -> Iterator[PlanboardController]:
    with PlanboardController(db, clock=clock) as handle:
        yield handle


@pytest.fixture
def make_project() -> Callable[..., Project]:
    def _build(seed: int = 1, **overrides: Any) -> Project:
        fields: dict[str, Any] = {
            "id": f"prj-{seed:04d}",
            "name": f"Project {seed}",
            "created_at": BASE_TS,
            "updated_at": BASE_TS,
        }
        fields.update(overrides)
        return Project(**fields)

    return _build


@pytest.fixture
def make_task() -> Callable[..., Task]:
    def _build(seed: int = 1, **overrides: Any) -> Task:
        fields: dict[str, Any] = {
            "id": f"tsk-{seed:04d}",
            "project_id": "prj-0001",
            "title": f"Task {seed}",
            "created_at": BASE_TS,
            "updated_at": BASE_TS,
            "start_date": BASE_TS,
        }
        fields.update(overrides)
        return Task(**fields)

    return _build
