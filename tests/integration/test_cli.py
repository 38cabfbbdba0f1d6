"""
planboard - CLI contracts

File: tests/integration/test_cli.py
Last updated: 2026-10-19

Purpose
- Drive the CLI in-process against a temporary state DB and check JSON output.
- Verify the exit-code contract for rejected, missing, and misconfigured input.
- Run ``python -m planboard`` once as a subprocess smoke check.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Any

import pytest

from planboard.constants import DAY_MS, STATE_DB_SCHEMA_VERSION
from planboard.config import ConfigLoadError
from planboard.domain.errors import NotFoundError
from planboard.main import ExitCode, cli_entrypoint, exit_code_for

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

T0 = 1_767_225_600_000

SEED_ACTIONS = f"""
actions:
  - entity_type: project
    action: create
    after: {{id: prj-web, name: Website}}
  - entity_type: task
    action: create
    after: {{id: tsk-design, projectId: prj-web, title: Design, wbs: "1",
            startDate: {T0}, dueDate: {T0 + 2 * DAY_MS}}}
  - entity_type: task
    action: create
    after: {{id: tsk-build, projectId: prj-web, title: Build, predecessors: ["1"],
            startDate: {T0 + 3 * DAY_MS}, dueDate: {T0 + 5 * DAY_MS}}}
"""


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("PLANBOARD_"):
            monkeypatch.delenv(name)
    return tmp_path


def _cli(
    capsys: pytest.CaptureFixture[str], db: Path, *args: str
) -> tuple[int, dict[str, Any] | None, str]:
    code = cli_entrypoint([*args, "--db", str(db)])
    captured = capsys.readouterr()
    payload = json.loads(captured.out) if captured.out.strip() else None
    return code, payload, captured.err


def _write(path: Path, contents: str) -> Path:
    path.write_text(contents, encoding="utf-8")
    return path


def _seed(capsys: pytest.CaptureFixture[str], workdir: Path, db: Path) -> str:
    actions = _write(workdir / "seed.yaml", SEED_ACTIONS)
    code, payload, _ = _cli(capsys, db, "draft", "create", str(actions), "--reason", "kickoff")
    assert code == ExitCode.SUCCESS
    assert payload is not None
    draft_id = payload["draft"]["id"]
    code, _, _ = _cli(capsys, db, "draft", "apply", draft_id)
    assert code == ExitCode.SUCCESS
    return str(draft_id)


def test_create_apply_list_and_rollback(
    capsys: pytest.CaptureFixture[str], workdir: Path
) -> None:
    db = workdir / "board.sqlite"
    actions = _write(workdir / "seed.yaml", SEED_ACTIONS)

    code, created, _ = _cli(capsys, db, "draft", "create", str(actions), "--created-by", "agent")
    assert code == ExitCode.SUCCESS
    assert created is not None
    assert created["command"] == "draft create"
    assert created["draft"]["status"] == "pending"
    assert created["draft"]["created_by"] == "agent"
    assert created["warnings"] == []
    draft_id = created["draft"]["id"]

    code, applied, _ = _cli(capsys, db, "draft", "apply", draft_id)
    assert code == ExitCode.SUCCESS
    assert applied is not None and applied["draft"]["status"] == "applied"

    code, steps, _ = _cli(capsys, db, "draft", "steps", draft_id)
    assert steps is not None
    assert [step["status"] for step in steps["steps"]] == ["applied"] * 3

    code, listing, _ = _cli(capsys, db, "audit", "list", "--task-id", "tsk-build")
    assert code == ExitCode.SUCCESS
    assert listing is not None
    assert listing["total"] == 1
    audit_id = listing["data"][0]["id"]

    code, rolled, _ = _cli(capsys, db, "audit", "rollback", audit_id, "--reason", "not yet")
    assert code == ExitCode.SUCCESS
    assert rolled is not None
    assert rolled["audit"]["action"] == "rollback"
    assert rolled["audit"]["rollback_of"] == audit_id
    assert rolled["audit"]["reason"] == "not yet"

    code, shown, _ = _cli(capsys, db, "audit", "show", audit_id)
    assert shown is not None and shown["audit"]["id"] == audit_id


def test_system_actor_is_accepted_everywhere(
    capsys: pytest.CaptureFixture[str], workdir: Path
) -> None:
    db = workdir / "board.sqlite"
    actions = _write(workdir / "seed.yaml", SEED_ACTIONS)

    code, created, _ = _cli(capsys, db, "draft", "create", str(actions), "--created-by", "system")
    assert code == ExitCode.SUCCESS
    assert created is not None and created["draft"]["created_by"] == "system"
    code, _, _ = _cli(capsys, db, "draft", "apply", created["draft"]["id"], "--actor", "system")
    assert code == ExitCode.SUCCESS

    code, listing, _ = _cli(capsys, db, "audit", "list", "--actor", "system")
    assert listing is not None and listing["total"] == 3
    audit_id = listing["data"][0]["id"]

    code, rolled, _ = _cli(capsys, db, "audit", "rollback", audit_id, "--actor", "system")
    assert code == ExitCode.SUCCESS
    assert rolled is not None and rolled["audit"]["actor"] == "system"

    code, _, err = _cli(capsys, db, "audit", "list", "--actor", "robot")
    assert code == ExitCode.CONFIG_ERROR
    assert "--actor" in err


def test_audit_list_accepts_iso_bounds_and_pages(
    capsys: pytest.CaptureFixture[str], workdir: Path
) -> None:
    db = workdir / "board.sqlite"
    _seed(capsys, workdir, db)

    code, page, _ = _cli(
        capsys, db, "audit", "list", "--from", "2000-01-01", "--page", "2", "--page-size", "2"
    )
    assert code == ExitCode.SUCCESS
    assert page is not None
    assert (page["total"], page["page"], page["page_size"], len(page["data"])) == (3, 2, 2, 1)

    code, _, err = _cli(capsys, db, "audit", "list", "--to", "yesterday")
    assert code == ExitCode.CONFIG_ERROR
    assert "--to" in err


def test_explicit_date_conflict_is_rejected(
    capsys: pytest.CaptureFixture[str], workdir: Path
) -> None:
    db = workdir / "board.sqlite"
    _seed(capsys, workdir, db)
    update = _write(
        workdir / "update.json",
        json.dumps(
            [
                {
                    "entity_type": "task",
                    "action": "update",
                    "entity_id": "tsk-build",
                    "after": {"startDate": T0 - 10 * DAY_MS},
                }
            ]
        ),
    )

    code, payload, err = _cli(capsys, db, "draft", "create", str(update))

    assert code == ExitCode.REJECTED
    assert payload is None
    assert "tsk-build" in err
    code, drafts, _ = _cli(capsys, db, "draft", "list", "--status", "pending")
    assert drafts is not None and drafts["drafts"] == []


def test_stale_apply_is_rejected(capsys: pytest.CaptureFixture[str], workdir: Path) -> None:
    db = workdir / "board.sqlite"
    _seed(capsys, workdir, db)
    rename = _write(
        workdir / "rename.yaml",
        "- {entity_type: task, action: update, entity_id: tsk-design, after: {title: UX}}\n",
    )
    drop = _write(
        workdir / "drop.yaml", "- {entity_type: task, action: delete, entity_id: tsk-design}\n"
    )
    _, pending, _ = _cli(capsys, db, "draft", "create", str(rename))
    _, dropped, _ = _cli(capsys, db, "draft", "create", str(drop))
    assert pending is not None and dropped is not None
    _cli(capsys, db, "draft", "apply", dropped["draft"]["id"])

    code, _, err = _cli(capsys, db, "draft", "apply", pending["draft"]["id"])

    assert code == ExitCode.REJECTED
    assert "no longer exists" in err


def test_missing_entities_exit_not_found(
    capsys: pytest.CaptureFixture[str], workdir: Path
) -> None:
    db = workdir / "board.sqlite"

    assert _cli(capsys, db, "draft", "apply", "drf-missing")[0] == ExitCode.NOT_FOUND
    assert _cli(capsys, db, "audit", "rollback", "aud-missing")[0] == ExitCode.NOT_FOUND


@pytest.mark.parametrize(
    ("contents", "message"),
    [
        (None, "actions file not found"),
        ("[]\n", "non-empty list"),
        ("- 1\n- 2\n", "actions[0] must be an object"),
        ("{unbalanced: [\n", "not valid JSON/YAML"),
    ],
)
def test_bad_actions_file_is_a_usage_error(
    capsys: pytest.CaptureFixture[str], workdir: Path, contents: str | None, message: str
) -> None:
    path = workdir / "actions.yaml"
    if contents is not None:
        _write(path, contents)

    code, payload, err = _cli(capsys, workdir / "board.sqlite", "draft", "create", str(path))

    assert code == ExitCode.CONFIG_ERROR
    assert payload is None
    assert message in err


def test_invalid_action_payload_exits_config_error(
    capsys: pytest.CaptureFixture[str], workdir: Path
) -> None:
    path = _write(workdir / "bad.yaml", "- {entity_type: sprint, action: create}\n")

    code, _, err = _cli(capsys, workdir / "board.sqlite", "draft", "create", str(path))

    assert code == ExitCode.CONFIG_ERROR
    assert "actions[0]" in err


def test_config_command_reports_effective_values(
    capsys: pytest.CaptureFixture[str], workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write(workdir / "planboard.toml", '[planning]\nresolution_mode = "fixed_point"\n')
    monkeypatch.setenv("PLANBOARD_AUDIT_DEFAULT_PAGE_SIZE", "7")

    code, payload, _ = _cli(capsys, workdir / "board.sqlite", "config")

    assert code == ExitCode.SUCCESS
    assert payload is not None
    assert payload["config"]["planning"]["resolution_mode"] == "fixed_point"
    assert payload["config"]["audit"]["default_page_size"] == 7


def test_invalid_config_file_exits_config_error(
    capsys: pytest.CaptureFixture[str], workdir: Path
) -> None:
    _write(workdir / "planboard.toml", "[planning]\nmax_resolution_passes = 0\n")

    code, _, err = _cli(capsys, workdir / "board.sqlite", "config")

    assert code == ExitCode.CONFIG_ERROR
    assert "planning.max_resolution_passes" in err


def test_db_migrate_dry_run_then_apply(
    capsys: pytest.CaptureFixture[str], workdir: Path
) -> None:
    db = workdir / "fresh" / "board.sqlite"

    code, dry, _ = _cli(capsys, db, "db", "migrate", "--dry-run")
    assert code == ExitCode.SUCCESS
    assert dry is not None
    assert dry["up_to_date"] is False
    assert {row["status"] for row in dry["migrations"]} == {"pending"}
    assert not db.exists()

    code, applied, _ = _cli(capsys, db, "db", "migrate")
    assert code == ExitCode.SUCCESS
    assert applied is not None
    assert applied["up_to_date"] is True
    assert applied["schema_version"] == STATE_DB_SCHEMA_VERSION
    assert applied["db_existed"] is False


def test_logging_flag_writes_json_lines(
    capsys: pytest.CaptureFixture[str], workdir: Path
) -> None:
    db = workdir / "board.sqlite"
    actions = _write(workdir / "seed.yaml", SEED_ACTIONS)

    code, _, _ = _cli(capsys, db, "draft", "create", str(actions), "--log")

    assert code == ExitCode.SUCCESS
    (log_file,) = (workdir / "logs").glob("*/planboard.jsonl")
    events = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert "draft_created" in [event["message"] for event in events]


def test_unknown_command_is_a_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["sprint"]) == ExitCode.CONFIG_ERROR
    assert "invalid choice" in capsys.readouterr().err


def test_module_entrypoint_runs_as_subprocess(workdir: Path) -> None:
    env = os.environ.copy()
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = str(SRC_PATH) if not existing else f"{SRC_PATH}{os.pathsep}{existing}"

    completed = subprocess.run(
        [sys.executable, "-m", "planboard", "config"],
        cwd=workdir,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )

    assert completed.returncode == 0, completed.stderr
    assert json.loads(completed.stdout)["command"] == "config"


def test_exit_code_follows_the_cause_chain() -> None:
    try:
        try:
            raise NotFoundError("task", "tsk-ghost")
        except NotFoundError as exc:
            raise RuntimeError("wrapped") from exc
    except RuntimeError as outer:
        assert exit_code_for(outer) is ExitCode.NOT_FOUND

    assert exit_code_for(KeyError("x")) is ExitCode.INTERNAL_ERROR
    assert exit_code_for(ConfigLoadError("bad")) is ExitCode.CONFIG_ERROR
