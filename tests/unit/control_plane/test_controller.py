"""Controller wiring: config-driven construction and shared repositories."""

from __future__ import annotations

from typing import TYPE_CHECKING

from planboard.config import default_config, merge_config
from planboard.control_plane import PlanboardController
from planboard.planning.constraints import NOT_CONVERGED_WARNING

if TYPE_CHECKING:
    from pathlib import Path

    from planboard.utils.clock import Clock


def test_open_honors_db_path_and_planning_config(tmp_path: Path, clock: Clock) -> None:
    config = merge_config(
        default_config(),
        {"planning": {"resolution_mode": "fixed_point", "max_resolution_passes": 2}},
    )
    db_path = tmp_path / "custom" / "board.sqlite"

    with PlanboardController.open(config, db_path=db_path, clock=clock) as controller:
        seeded = controller.create_draft(
            [
                {"entity_type": "project", "action": "create", "after": {"id": "prj-1"}},
                {
                    "entity_type": "task",
                    "action": "create",
                    "after": {"id": "tsk-1", "project_id": "prj-1", "predecessors": ["tsk-1"]},
                },
            ]
        )

    assert db_path.exists()
    assert seeded.warnings[-1] == NOT_CONVERGED_WARNING.format(passes=2)


def test_default_controller_reuses_one_database(controller: PlanboardController) -> None:
    result = controller.create_draft(
        [{"entity_type": "project", "action": "create", "after": {"id": "prj-1", "name": "One"}}]
    )
    controller.apply_draft(result.draft.id)

    reopened = PlanboardController(controller.db)

    project = reopened.projects.get("prj-1")
    assert project is not None and project.name == "One"
    assert reopened.list_audit_logs().total == 1
