"""Command-line interface router for planboard."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml

from planboard.config import (
    ConfigLoadError,
    ConfigValidationError,
    load_config,
    redact_config,
)
from planboard.constants import STATE_DB_SCHEMA_VERSION
from planboard.control_plane import AuditFilters, PlanboardController
from planboard.domain.ids import generate_ulid
from planboard.domain.models import Actor, DraftStatus, EntityType
from planboard.observability import configure_structlog, correlation_scope, setup_logging
from planboard.persistence.state_db import StateDB

_ACTOR_CHOICES = tuple(actor.value for actor in Actor)
_ENTITY_CHOICES = tuple(kind.value for kind in EntityType)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for draft, audit, and config workflows."""

    parser = argparse.ArgumentParser(
        prog="planboard",
        description=(
            "planboard - plan, review, apply, and roll back project/task changes.\n\n"
            "Common workflows:\n"
            "  planboard draft create actions.yaml   Plan a batch of proposed actions\n"
            "  planboard draft apply DRAFT_ID        Apply a pending draft\n"
            "  planboard audit list --project-id ID  Browse the audit trail\n"
            "  planboard audit rollback AUDIT_ID     Undo one recorded mutation\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to planboard TOML config (default: ./planboard.toml if present).",
    )
    common.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Override the state DB path from config.",
    )
    common.add_argument(
        "--log",
        action="store_true",
        default=False,
        help="Write structured JSON-lines logs under paths.log_dir.",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>", required=True)

    # draft ---------------------------------------------------------------
    draft_parser = subparsers.add_parser(
        "draft",
        help="Create, inspect, apply, or discard drafts",
        description=(
            "Drafts hold planned actions for review before they touch live data.\n\n"
            "Examples:\n"
            "  planboard draft create actions.json --reason 'shift sprint'\n"
            "  planboard draft list --status pending\n"
            "  planboard draft apply DRAFT_ID\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    draft_sub = draft_parser.add_subparsers(dest="draft_command", metavar="<action>", required=True)

    create_parser = draft_sub.add_parser(
        "create",
        parents=[common],
        help="Plan proposed actions from a JSON or YAML file ('-' reads stdin)",
    )
    create_parser.add_argument("actions_file", help="File holding a list of proposed actions")
    create_parser.add_argument("--created-by", default="user", choices=_ACTOR_CHOICES)
    create_parser.add_argument("--reason", default=None)
    create_parser.add_argument("--project-id", default=None)
    create_parser.set_defaults(handler=_cmd_draft_create)

    apply_parser = draft_sub.add_parser("apply", parents=[common], help="Apply a pending draft")
    apply_parser.add_argument("draft_id")
    apply_parser.add_argument("--actor", default="user", choices=_ACTOR_CHOICES)
    apply_parser.set_defaults(handler=_cmd_draft_apply)

    discard_parser = draft_sub.add_parser(
        "discard", parents=[common], help="Mark a pending draft as discarded"
    )
    discard_parser.add_argument("draft_id")
    discard_parser.set_defaults(handler=_cmd_draft_discard)

    refresh_parser = draft_sub.add_parser(
        "refresh", parents=[common], help="Re-plan a pending draft against live data"
    )
    refresh_parser.add_argument("draft_id")
    refresh_parser.set_defaults(handler=_cmd_draft_refresh)

    show_parser = draft_sub.add_parser("show", parents=[common], help="Show a draft")
    show_parser.add_argument("draft_id")
    show_parser.set_defaults(handler=_cmd_draft_show)

    list_parser = draft_sub.add_parser("list", parents=[common], help="List drafts")
    list_parser.add_argument(
        "--status", default=None, choices=tuple(status.value for status in DraftStatus)
    )
    list_parser.set_defaults(handler=_cmd_draft_list)

    steps_parser = draft_sub.add_parser(
        "steps", parents=[common], help="Show the apply journal of a draft"
    )
    steps_parser.add_argument("draft_id")
    steps_parser.set_defaults(handler=_cmd_draft_steps)

    # audit ---------------------------------------------------------------
    audit_parser = subparsers.add_parser(
        "audit",
        help="Browse audit entries and roll them back",
        description=(
            "Every applied mutation is recorded with before/after snapshots.\n\n"
            "Examples:\n"
            "  planboard audit list --task-id TASK_ID --page-size 50\n"
            "  planboard audit list --from 2026-01-01 --to 2026-02-01 --q sprint\n"
            "  planboard audit rollback AUDIT_ID --reason 'wrong estimate'\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    audit_sub = audit_parser.add_subparsers(dest="audit_command", metavar="<action>", required=True)

    audit_list = audit_sub.add_parser("list", parents=[common], help="List audit entries")
    audit_list.add_argument("--project-id", default=None)
    audit_list.add_argument("--task-id", default=None)
    audit_list.add_argument("--actor", default=None, choices=_ACTOR_CHOICES)
    audit_list.add_argument("--action", default=None)
    audit_list.add_argument("--entity-type", default=None, choices=_ENTITY_CHOICES)
    audit_list.add_argument("--q", default=None, help="Substring match on entity id or reason")
    audit_list.add_argument(
        "--from", dest="from_ts", default=None, help="Epoch ms or ISO-8601 lower bound"
    )
    audit_list.add_argument(
        "--to", dest="to_ts", default=None, help="Epoch ms or ISO-8601 upper bound"
    )
    audit_list.add_argument("--page", type=int, default=1)
    audit_list.add_argument("--page-size", type=int, default=None)
    audit_list.set_defaults(handler=_cmd_audit_list)

    audit_show = audit_sub.add_parser("show", parents=[common], help="Show one audit entry")
    audit_show.add_argument("audit_id")
    audit_show.set_defaults(handler=_cmd_audit_show)

    audit_rollback = audit_sub.add_parser(
        "rollback", parents=[common], help="Undo the mutation recorded by an audit entry"
    )
    audit_rollback.add_argument("audit_id")
    audit_rollback.add_argument("--actor", default="user", choices=_ACTOR_CHOICES)
    audit_rollback.add_argument("--reason", default=None)
    audit_rollback.set_defaults(handler=_cmd_audit_rollback)

    # db ------------------------------------------------------------------
    db_parser = subparsers.add_parser(
        "db",
        help="Inspect or apply state DB migrations",
        description=(
            "Apply pending schema migrations or report their status.\n\n"
            "Examples:\n"
            "  planboard db migrate\n"
            "  planboard db migrate --dry-run --db state/planboard.sqlite\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    db_sub = db_parser.add_subparsers(dest="db_command", metavar="<action>", required=True)
    migrate_parser = db_sub.add_parser(
        "migrate", parents=[common], help="Apply migrations and print their status"
    )
    migrate_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show migration status without mutating the target database.",
    )
    migrate_parser.set_defaults(handler=_cmd_db_migrate)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file, and env.\n\n"
            "Examples:\n"
            "  planboard config\n"
            "  planboard config --config ./planboard.toml\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    # stdout carries command JSON only; log events go through stdlib handlers.
    configure_structlog()
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_draft_create(args: argparse.Namespace) -> int:
    actions = _read_actions(_require_str(args.actions_file, "actions_file"))
    with _controller(args) as controller:
        result = controller.create_draft(
            actions,
            created_by=args.created_by,
            reason=_optional_str(args.reason),
            project_id=_optional_str(args.project_id),
        )
    _emit_json({"command": "draft create", **result.to_dict()})
    return 0


def _cmd_draft_apply(args: argparse.Namespace) -> int:
    draft_id = _require_str(args.draft_id, "draft_id")
    with _controller(args) as controller, correlation_scope(draft_id=draft_id):
        draft = controller.apply_draft(draft_id, actor=args.actor)
    _emit_json({"command": "draft apply", "draft": draft.to_dict()})
    return 0


def _cmd_draft_discard(args: argparse.Namespace) -> int:
    with _controller(args) as controller:
        draft = controller.discard_draft(_require_str(args.draft_id, "draft_id"))
    _emit_json({"command": "draft discard", "draft": draft.to_dict()})
    return 0


def _cmd_draft_refresh(args: argparse.Namespace) -> int:
    with _controller(args) as controller:
        result = controller.refresh_draft_actions(_require_str(args.draft_id, "draft_id"))
    _emit_json({"command": "draft refresh", **result.to_dict()})
    return 0


def _cmd_draft_show(args: argparse.Namespace) -> int:
    with _controller(args) as controller:
        draft = controller.get_draft(_require_str(args.draft_id, "draft_id"))
    _emit_json({"command": "draft show", "draft": draft.to_dict()})
    return 0


def _cmd_draft_list(args: argparse.Namespace) -> int:
    with _controller(args) as controller:
        drafts = controller.list_drafts(args.status)
    _emit_json({"command": "draft list", "drafts": [draft.to_dict() for draft in drafts]})
    return 0


def _cmd_draft_steps(args: argparse.Namespace) -> int:
    draft_id = _require_str(args.draft_id, "draft_id")
    with _controller(args) as controller:
        steps = controller.draft_steps(draft_id)
    _emit_json(
        {"command": "draft steps", "draft_id": draft_id, "steps": [s.to_dict() for s in steps]}
    )
    return 0


def _cmd_audit_list(args: argparse.Namespace) -> int:
    filters = AuditFilters(
        project_id=_optional_str(args.project_id),
        task_id=_optional_str(args.task_id),
        actor=args.actor,
        action=_optional_str(args.action),
        entity_type=args.entity_type,
        q=_optional_str(args.q),
        from_ts=_parse_timestamp(args.from_ts, "--from"),
        to_ts=_parse_timestamp(args.to_ts, "--to"),
        page=args.page,
        page_size=args.page_size,
    )
    with _controller(args) as controller:
        page = controller.list_audit_logs(filters)
    _emit_json({"command": "audit list", **page.to_dict()})
    return 0


def _cmd_audit_show(args: argparse.Namespace) -> int:
    with _controller(args) as controller:
        entry = controller.get_audit_log(_require_str(args.audit_id, "audit_id"))
    _emit_json({"command": "audit show", "audit": entry.to_dict()})
    return 0


def _cmd_audit_rollback(args: argparse.Namespace) -> int:
    with _controller(args) as controller:
        entry = controller.rollback_audit_log(
            _require_str(args.audit_id, "audit_id"),
            actor=args.actor,
            reason=_optional_str(args.reason),
        )
    _emit_json({"command": "audit rollback", "audit": entry.to_dict()})
    return 0


def _cmd_db_migrate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    raw_path = _optional_str(getattr(args, "db_path", None)) or config["paths"]["state_db"]
    db_path = Path(raw_path).expanduser().resolve()
    existed_before = db_path.exists()

    target = StateDB(db_path)
    if not _flag(args, "dry_run"):
        target.migrate()
    statuses = target.migration_status()
    applied = [status.version for status in statuses if status.status == "applied"]
    mismatches = sum(1 for status in statuses if status.status == "checksum_mismatch")
    _emit_json(
        {
            "command": "db migrate",
            "db_path": db_path.as_posix(),
            "dry_run": _flag(args, "dry_run"),
            "db_existed": existed_before,
            "schema_version": max(applied, default=0),
            "target_schema_version": STATE_DB_SCHEMA_VERSION,
            "up_to_date": all(status.status == "applied" for status in statuses),
            "migrations": [status.to_dict() for status in statuses],
        }
    )
    return 0 if mismatches == 0 else 1


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _emit_json({"command": "config", "config": redact_config(config)})
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


# ---------------------------------------------------------------------------
# Helpers - config, controller, input parsing
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    try:
        return load_config(config_path)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


@contextmanager
def _controller(args: argparse.Namespace) -> Iterator[PlanboardController]:
    config = _load_effective_config(args)
    session = None
    if _flag(args, "log"):
        session = setup_logging(config, session_id=generate_ulid())
    try:
        with PlanboardController.open(
            config, db_path=_optional_str(getattr(args, "db_path", None))
        ) as controller:
            yield controller
    finally:
        if session is not None:
            session.shutdown()


def _read_actions(source: str) -> list[Mapping[str, object]]:
    """Load proposed actions from a JSON/YAML document.

    The document is either a list of actions or a mapping with an ``actions`` list.
    """

    if source == "-":
        text = sys.stdin.read()
    else:
        path = Path(source).expanduser()
        if not path.is_file():
            raise CLIError(f"actions file not found: {path}", exit_code=2)
        text = path.read_text(encoding="utf-8")

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise CLIError(f"actions file is not valid JSON/YAML: {exc}", exit_code=2) from exc

    if isinstance(document, Mapping):
        document = document.get("actions")
    if not isinstance(document, list) or not document:
        raise CLIError("actions file must hold a non-empty list of actions", exit_code=2)
    for index, item in enumerate(document):
        if not isinstance(item, Mapping):
            raise CLIError(f"actions[{index}] must be an object", exit_code=2)
    return document


def _parse_timestamp(value: object, flag: str) -> int | None:
    text = _optional_str(value)
    if text is None:
        return None
    if text.lstrip("-").isdigit():
        return int(text)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise CLIError(f"{flag} must be epoch ms or ISO-8601: {text!r}", exit_code=2) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string", exit_code=2)
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty", exit_code=2)
    return cleaned


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=2)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    value = getattr(args, name, False)
    return bool(value)


__all__ = ["CLIError", "build_parser", "run_cli"]
