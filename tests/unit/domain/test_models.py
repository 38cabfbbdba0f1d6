"""Unit tests for domain model validation, normalization, and serialization."""

from __future__ import annotations

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from planboard.domain.models import (
    ActionType,
    DraftAction,
    DraftStatus,
    EntityType,
    Priority,
    Project,
    ProjectDeleteSnapshot,
    ProjectPatch,
    ProposedAction,
    Task,
    TaskPatch,
    TaskStatus,
    clamp_completion,
    normalize_keys,
    parse_actions,
    parse_patch,
)

T0 = 1_767_225_600_000


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, 0),
        ("50", 0),
        (True, 0),
        (-5, 0),
        (150, 100),
        (42, 42),
        (42.6, 43),
        (math.nan, 0),
        (math.inf, 0),
    ],
)
def test_clamp_completion_bounds_and_coercion(raw: object, expected: int) -> None:
    assert clamp_completion(raw) == expected


@given(st.one_of(st.integers(), st.floats(allow_nan=True, allow_infinity=True), st.none()))
def test_clamp_completion_always_in_range(raw: object) -> None:
    assert 0 <= clamp_completion(raw) <= 100


def test_task_from_dict_accepts_camel_case_and_upper_cases_enums() -> None:
    task = Task.from_dict(
        {
            "id": "tsk-1",
            "projectId": "prj-1",
            "title": "Write docs",
            "createdAt": T0,
            "status": "in_progress",
            "priority": "high",
            "startDate": T0,
            "dueDate": float(T0 + 1000),
            "isMilestone": True,
            "predecessors": ["1.1"],
        }
    )

    assert task.project_id == "prj-1"
    assert task.status is TaskStatus.IN_PROGRESS
    assert task.priority is Priority.HIGH
    assert task.due_date == T0 + 1000
    assert task.updated_at == T0
    assert task.is_milestone is True
    assert task.predecessors == ("1.1",)


def test_task_from_dict_rejects_unknown_and_missing_fields() -> None:
    with pytest.raises(ValueError, match="unexpected fields"):
        Task.from_dict({"id": "t", "project_id": "p", "title": "x", "created_at": T0, "bogus": 1})
    with pytest.raises(ValueError, match="missing required fields"):
        Task.from_dict({"id": "t", "title": "x", "created_at": T0})


def test_task_clamps_completion_on_construction() -> None:
    task = Task(id="t", project_id="", title="orphan", created_at=T0, updated_at=T0, completion=250)
    assert task.completion == 100
    assert task.project_id == ""


def test_normalize_keys_rejects_conflicting_aliases() -> None:
    with pytest.raises(ValueError, match="conflicting values"):
        normalize_keys({"projectId": "a", "project_id": "b"}, "Task")
    assert normalize_keys({"projectId": "a", "project_id": "a"}, "Task") == {"project_id": "a"}


def test_project_roundtrip_through_dict() -> None:
    project = Project(id="prj-1", name="Alpha", created_at=T0, updated_at=T0 + 5, icon="rocket")
    assert Project.from_dict(project.to_dict()) == project
    assert Project.from_json(project.to_json()) == project


def test_task_patch_changes_only_reports_supplied_fields() -> None:
    patch = TaskPatch.from_dict({"title": "Renamed", "completion": 120, "updatedAt": T0})
    assert patch.changes() == {"title": "Renamed", "completion": 100}


def test_parse_patch_dispatches_by_entity_type() -> None:
    assert isinstance(parse_patch("project", {"name": "x"}), ProjectPatch)
    assert isinstance(parse_patch(EntityType.TASK, None), TaskPatch)
    with pytest.raises(ValueError, match="invalid value"):
        parse_patch("milestone", {})


def test_proposed_action_requires_entity_id_for_update_and_delete() -> None:
    with pytest.raises(ValueError, match="required for update actions"):
        ProposedAction.from_dict({"entity_type": "task", "action": "update", "after": {}})

    action = ProposedAction.from_dict(
        {"entityType": "project", "action": "delete", "entityId": "prj-1"}
    )
    assert action.action is ActionType.DELETE
    assert action.entity_id == "prj-1"


def test_parse_actions_prefixes_errors_with_index() -> None:
    with pytest.raises(ValueError, match=r"actions\[1\]"):
        parse_actions(
            [
                {"entity_type": "project", "action": "create", "after": {"name": "ok"}},
                {"entity_type": "task", "action": "rename"},
            ]
        )


def test_draft_action_flagged_not_found_only_for_snapshotless_deletes() -> None:
    missing = DraftAction(
        id="act-1", entity_type=EntityType.TASK, action=ActionType.DELETE, entity_id="tsk-x"
    )
    update = DraftAction(
        id="act-2", entity_type=EntityType.TASK, action=ActionType.UPDATE, entity_id="tsk-x"
    )
    create = DraftAction(id="act-3", entity_type=EntityType.TASK, action=ActionType.CREATE)

    assert missing.flagged_not_found is True
    assert update.flagged_not_found is False
    assert create.flagged_not_found is False
    assert DraftAction.from_dict(missing.to_dict()) == missing


def test_proposed_action_from_planned_drops_before_snapshot() -> None:
    planned = DraftAction(
        id="act-1",
        entity_type=EntityType.PROJECT,
        action=ActionType.UPDATE,
        entity_id="prj-1",
        before={"id": "prj-1", "name": "Old", "created_at": T0},
        after={"id": "prj-1", "name": "New", "created_at": T0, "updated_at": T0},
        warnings=("x",),
    )

    proposed = ProposedAction.from_planned(planned)

    assert proposed.id == "act-1"
    assert isinstance(proposed.payload, ProjectPatch)
    assert proposed.payload.changes() == {"name": "New"}


def test_project_delete_snapshot_nests_tasks() -> None:
    project = Project(id="prj-1", name="P", created_at=T0, updated_at=T0)
    task = Task(id="tsk-1", project_id="prj-1", title="A", created_at=T0, updated_at=T0)

    snapshot = ProjectDeleteSnapshot(project=project, tasks=(task,)).to_dict()

    assert snapshot["project"] == project.to_dict()
    assert snapshot["tasks"] == [task.to_dict()]


def test_draft_status_terminality() -> None:
    assert DraftStatus.PENDING.is_terminal is False
    assert DraftStatus.APPLIED.is_terminal is True
    assert DraftStatus.DISCARDED.is_terminal is True
