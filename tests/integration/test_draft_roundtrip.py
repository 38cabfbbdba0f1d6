"""
planboard - draft to audit roundtrip

File: tests/integration/test_draft_roundtrip.py
Last updated: 2026-10-19

Purpose
- Walk plan -> apply -> audit -> rollback against a real SQLite state DB.
- Cover dependency repair, rejected explicit dates, and project restore with children.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING

import pytest

from planboard.constants import DAY_MS
from planboard.control_plane import AuditFilters, PlanboardController
from planboard.domain.errors import ConstraintViolationError
from planboard.domain.models import DraftStatus, Project, Task
from planboard.planning.constraints import DEPENDENCY_WARNING
from planboard.utils.clock import fixed_clock

if TYPE_CHECKING:
    from pathlib import Path

T0 = 1_767_225_600_000


@pytest.fixture
def board(tmp_path: Path) -> Iterator[PlanboardController]:
    db_path = tmp_path / "board.sqlite"
    with PlanboardController.open(db_path=db_path, clock=fixed_clock(T0)) as controller:
        yield controller


def test_dependent_task_is_shifted_after_its_predecessor(board: PlanboardController) -> None:
    result = board.create_draft(
        [
            {"entity_type": "project", "action": "create", "after": {"id": "prj-p", "name": "P"}},
            {
                "entity_type": "task",
                "action": "create",
                "after": {"id": "tsk-a", "projectId": "prj-p", "title": "A"},
            },
            {
                "entity_type": "task",
                "action": "create",
                "after": {
                    "id": "tsk-b",
                    "projectId": "prj-p",
                    "title": "B",
                    "predecessors": ["tsk-a"],
                    "startDate": T0,
                },
            },
        ],
        reason="plan sprint",
    )

    task_b_action = result.draft.actions[2]
    assert task_b_action.warnings == (DEPENDENCY_WARNING,)
    assert result.warnings == (DEPENDENCY_WARNING,)

    applied = board.apply_draft(result.draft.id)

    assert applied.status is DraftStatus.APPLIED
    task_b = board.tasks.get("tsk-b")
    assert task_b is not None
    assert (task_b.start_date, task_b.due_date) == (T0 + DAY_MS, T0 + 2 * DAY_MS)
    assert board.list_audit_logs(AuditFilters(project_id="prj-p")).total == 3


def test_explicit_start_before_predecessor_end_fails_planning(board: PlanboardController) -> None:
    board.projects.insert(Project(id="prj-p", name="P", created_at=T0, updated_at=T0))
    board.tasks.insert(
        Task(
            id="tsk-pre",
            project_id="prj-p",
            title="Predecessor",
            created_at=T0,
            updated_at=T0,
            start_date=T0,
            due_date=T0 + 2 * DAY_MS,
        )
    )
    board.tasks.insert(
        Task(
            id="tsk-x",
            project_id="prj-p",
            title="X",
            created_at=T0,
            updated_at=T0,
            start_date=T0,
            due_date=T0 + 5 * DAY_MS,
            predecessors=("tsk-pre",),
        )
    )

    with pytest.raises(ConstraintViolationError) as excinfo:
        board.create_draft(
            [
                {
                    "entity_type": "task",
                    "action": "update",
                    "entity_id": "tsk-x",
                    "after": {"startDate": T0 - 10 * DAY_MS},
                }
            ]
        )

    assert excinfo.value.required_start == T0 + 2 * DAY_MS
    assert board.list_drafts() == []
    live = board.tasks.get("tsk-x")
    assert live is not None and live.start_date == T0


def test_project_delete_rollback_restores_children(board: PlanboardController) -> None:
    seeded = board.create_draft(
        [
            {"entity_type": "project", "action": "create", "after": {"id": "prj-p", "name": "P"}},
            {
                "entity_type": "task",
                "action": "create",
                "after": {"id": "tsk-a", "projectId": "prj-p", "title": "A", "assignee": "ana"},
            },
            {
                "entity_type": "task",
                "action": "create",
                "after": {"id": "tsk-b", "projectId": "prj-p", "title": "B", "priority": "HIGH"},
            },
        ]
    )
    board.apply_draft(seeded.draft.id)
    project_before = board.projects.get("prj-p")
    tasks_before = board.tasks.list_for_project("prj-p")

    deletion = board.create_draft(
        [{"entity_type": "project", "action": "delete", "entity_id": "prj-p"}], reason="cleanup"
    )
    board.apply_draft(deletion.draft.id)
    (entry,) = board.list_audit_logs(AuditFilters(action="delete")).data

    assert entry.before == {
        "project": project_before.to_dict() if project_before else None,
        "tasks": [task.to_dict() for task in tasks_before],
    }
    assert entry.reason == "cleanup"
    assert board.projects.get("prj-p") is None

    board.rollback_audit_log(entry.id)

    assert board.projects.get("prj-p") == project_before
    assert board.tasks.list_for_project("prj-p") == tasks_before
    rollbacks = board.list_audit_logs(AuditFilters(action="rollback"))
    assert rollbacks.total == 1
    assert rollbacks.data[0].rollback_of == entry.id

