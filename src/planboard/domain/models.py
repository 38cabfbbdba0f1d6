"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

from planboard.constants import (
    COMPLETION_MAX,
    COMPLETION_MIN,
)

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject = dict[str, JSONValue]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 8192
_MAX_JSON_DEPTH = 16

# Inbound payloads may use the camelCase spelling of a field.
_CAMEL_TO_SNAKE: dict[str, str] = {
    "projectId": "project_id",
    "taskId": "task_id",
    "draftId": "draft_id",
    "startDate": "start_date",
    "dueDate": "due_date",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "createdBy": "created_by",
    "isMilestone": "is_milestone",
    "entityType": "entity_type",
    "entityId": "entity_id",
    "rollbackOf": "rollback_of",
}

ROLLBACK_ACTION = "rollback"


class EntityType(StrEnum):
    TASK = "task"
    PROJECT = "project"


class ActionType(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class TaskStatus(StrEnum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class Priority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DraftStatus(StrEnum):
    PENDING = "pending"
    APPLIED = "applied"
    DISCARDED = "discarded"

    @property
    def is_terminal(self) -> bool:
        return self is not DraftStatus.PENDING


class Actor(StrEnum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class StepStatus(StrEnum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> JSONObject:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


def canonical_json(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def clamp_completion(value: object) -> int:
    """Coerce any completion input into an integer percentage in ``[0, 100]``.

    Absent, non-numeric and non-finite values collapse to 0.
    """
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return COMPLETION_MIN
    if isinstance(value, float):
        if not math.isfinite(value):
            return COMPLETION_MIN
        value = round(value)
    return max(COMPLETION_MIN, min(COMPLETION_MAX, int(value)))


def normalize_keys(data: Mapping[str, object], path: str) -> dict[str, object]:
    """Map camelCase aliases onto their snake_case field names."""
    if not isinstance(data, Mapping):
        _fail(path, f"expected object, got {type(data).__name__}")
    out: dict[str, object] = {}
    for key, item in data.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        target = _CAMEL_TO_SNAKE.get(key, key)
        if target in out and out[target] != item:
            _fail(path, f"conflicting values for {key!r} and {target!r}")
        out[target] = item
    return out


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
    ignored: set[str] | None = None,
) -> dict[str, object]:
    parsed = normalize_keys(cast("Mapping[str, object]", value), path)

    for key in ignored or set():
        parsed.pop(key, None)

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT,
    strip: bool = True,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip() if strip else value
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, min_len=0, max_len=max_len, strip=False)


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_timestamp(value: object, path: str) -> int:
    """Epoch milliseconds. Integral floats from JSON round-trips are accepted."""
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        value = int(value)
    return _as_int(value, path, minimum=0)


def _as_optional_timestamp(value: object, path: str) -> int | None:
    if value is None:
        return None
    return _as_timestamp(value, path)


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_upper_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, str):
        value = value.strip().upper()
    return _as_enum(enum_type, value, path)


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        _fail(path, f"expected array, got {type(value).__name__}")
    return tuple(_as_str(item, f"{path}[{index}]") for index, item in enumerate(value))


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"JSON nesting exceeds max depth {_MAX_JSON_DEPTH}")

    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        parsed: JSONObject = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, f"object key must be string, got {type(key).__name__}")
            parsed[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return parsed

    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


def _as_optional_json_object(value: object, path: str) -> JSONObject | None:
    if value is None:
        return None
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        _fail(path, "expected JSON object")
    return parsed


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return cast("JSONValue", value)
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, (tuple, list)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: JSONObject = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: JSONObject = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


# --------------
# Stored records
# --------------


@dataclass(slots=True)
class Project(CanonicalModel):
    id: str
    name: str
    created_at: int
    updated_at: int
    description: str | None = None
    icon: str | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Project.id")
        self.name = _as_str(self.name, "Project.name", min_len=0, strip=False)
        self.created_at = _as_timestamp(self.created_at, "Project.created_at")
        self.updated_at = _as_timestamp(self.updated_at, "Project.updated_at")
        self.description = _as_optional_str(self.description, "Project.description")
        self.icon = _as_optional_str(self.icon, "Project.icon", max_len=256)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Project:
        parsed = _expect_object(
            data,
            "Project",
            required={"id", "name", "created_at"},
            optional={"updated_at", "description", "icon"},
        )
        created_at = _as_timestamp(parsed["created_at"], "Project.created_at")
        return cls(
            id=_as_str(parsed["id"], "Project.id"),
            name=_as_str(parsed["name"], "Project.name", min_len=0, strip=False),
            created_at=created_at,
            updated_at=_as_timestamp(parsed.get("updated_at", created_at), "Project.updated_at"),
            description=_as_optional_str(parsed.get("description"), "Project.description"),
            icon=_as_optional_str(parsed.get("icon"), "Project.icon", max_len=256),
        )


@dataclass(slots=True)
class Task(CanonicalModel):
    id: str
    project_id: str
    title: str
    created_at: int
    updated_at: int
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    description: str | None = None
    wbs: str | None = None
    start_date: int | None = None
    due_date: int | None = None
    completion: int = 0
    assignee: str | None = None
    is_milestone: bool = False
    predecessors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Task.id")
        # Orphan tasks carry an empty project id.
        self.project_id = _as_str(self.project_id, "Task.project_id", min_len=0)
        self.title = _as_str(self.title, "Task.title", min_len=0, strip=False)
        self.created_at = _as_timestamp(self.created_at, "Task.created_at")
        self.updated_at = _as_timestamp(self.updated_at, "Task.updated_at")
        self.status = _as_upper_enum(TaskStatus, self.status, "Task.status")
        self.priority = _as_upper_enum(Priority, self.priority, "Task.priority")
        self.description = _as_optional_str(self.description, "Task.description")
        self.wbs = _as_optional_str(self.wbs, "Task.wbs", max_len=128)
        self.start_date = _as_optional_timestamp(self.start_date, "Task.start_date")
        self.due_date = _as_optional_timestamp(self.due_date, "Task.due_date")
        self.completion = clamp_completion(self.completion)
        self.assignee = _as_optional_str(self.assignee, "Task.assignee", max_len=256)
        self.is_milestone = _as_bool(self.is_milestone, "Task.is_milestone")
        self.predecessors = _as_str_tuple(self.predecessors, "Task.predecessors")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Task:
        parsed = _expect_object(
            data,
            "Task",
            required={"id", "project_id", "title", "created_at"},
            optional={
                "updated_at",
                "status",
                "priority",
                "description",
                "wbs",
                "start_date",
                "due_date",
                "completion",
                "assignee",
                "is_milestone",
                "predecessors",
            },
        )
        created_at = _as_timestamp(parsed["created_at"], "Task.created_at")
        predecessors = parsed.get("predecessors")
        return cls(
            id=_as_str(parsed["id"], "Task.id"),
            project_id=_as_str(parsed["project_id"], "Task.project_id", min_len=0),
            title=_as_str(parsed["title"], "Task.title", min_len=0, strip=False),
            created_at=created_at,
            updated_at=_as_timestamp(parsed.get("updated_at", created_at), "Task.updated_at"),
            status=_as_upper_enum(TaskStatus, parsed.get("status", TaskStatus.TODO), "Task.status"),
            priority=_as_upper_enum(
                Priority, parsed.get("priority", Priority.MEDIUM), "Task.priority"
            ),
            description=_as_optional_str(parsed.get("description"), "Task.description"),
            wbs=_as_optional_str(parsed.get("wbs"), "Task.wbs", max_len=128),
            start_date=_as_optional_timestamp(parsed.get("start_date"), "Task.start_date"),
            due_date=_as_optional_timestamp(parsed.get("due_date"), "Task.due_date"),
            completion=clamp_completion(parsed.get("completion")),
            assignee=_as_optional_str(parsed.get("assignee"), "Task.assignee", max_len=256),
            is_milestone=_as_bool(parsed.get("is_milestone", False), "Task.is_milestone"),
            predecessors=(
                () if predecessors is None else _as_str_tuple(predecessors, "Task.predecessors")
            ),
        )


# ---------------------
# Partial-update schema
# ---------------------


@dataclass(frozen=True, slots=True)
class ProjectPatch:
    """Caller-supplied project fields. ``None`` keeps the existing value."""

    id: str | None = None
    name: str | None = None
    description: str | None = None
    icon: str | None = None

    def changes(self) -> dict[str, object]:
        return {
            name: getattr(self, name)
            for name in ("name", "description", "icon")
            if getattr(self, name) is not None
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ProjectPatch:
        parsed = _expect_object(
            data,
            "ProjectPatch",
            required=set(),
            optional={"id", "name", "description", "icon"},
            ignored={"created_at", "updated_at"},
        )
        return cls(
            id=_as_optional_str(parsed.get("id"), "ProjectPatch.id"),
            name=_as_optional_str(parsed.get("name"), "ProjectPatch.name"),
            description=_as_optional_str(parsed.get("description"), "ProjectPatch.description"),
            icon=_as_optional_str(parsed.get("icon"), "ProjectPatch.icon", max_len=256),
        )


@dataclass(frozen=True, slots=True)
class TaskPatch:
    """Caller-supplied task fields. ``None`` keeps the existing value."""

    id: str | None = None
    project_id: str | None = None
    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: Priority | None = None
    wbs: str | None = None
    created_at: int | None = None
    start_date: int | None = None
    due_date: int | None = None
    completion: int | None = None
    assignee: str | None = None
    is_milestone: bool | None = None
    predecessors: tuple[str, ...] | None = None

    def changes(self) -> dict[str, object]:
        return {
            name: getattr(self, name)
            for name in _TASK_PATCH_FIELDS
            if name != "id" and getattr(self, name) is not None
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> TaskPatch:
        parsed = _expect_object(
            data,
            "TaskPatch",
            required=set(),
            optional=set(_TASK_PATCH_FIELDS),
            ignored={"updated_at"},
        )
        status = parsed.get("status")
        priority = parsed.get("priority")
        is_milestone = parsed.get("is_milestone")
        predecessors = parsed.get("predecessors")
        completion = parsed.get("completion")
        return cls(
            id=_as_optional_str(parsed.get("id"), "TaskPatch.id"),
            project_id=_as_optional_str(parsed.get("project_id"), "TaskPatch.project_id"),
            title=_as_optional_str(parsed.get("title"), "TaskPatch.title"),
            description=_as_optional_str(parsed.get("description"), "TaskPatch.description"),
            status=(
                None
                if status is None
                else _as_upper_enum(TaskStatus, status, "TaskPatch.status")
            ),
            priority=(
                None
                if priority is None
                else _as_upper_enum(Priority, priority, "TaskPatch.priority")
            ),
            wbs=_as_optional_str(parsed.get("wbs"), "TaskPatch.wbs", max_len=128),
            created_at=_as_optional_timestamp(parsed.get("created_at"), "TaskPatch.created_at"),
            start_date=_as_optional_timestamp(parsed.get("start_date"), "TaskPatch.start_date"),
            due_date=_as_optional_timestamp(parsed.get("due_date"), "TaskPatch.due_date"),
            completion=None if completion is None else clamp_completion(completion),
            assignee=_as_optional_str(parsed.get("assignee"), "TaskPatch.assignee", max_len=256),
            is_milestone=(
                None if is_milestone is None else _as_bool(is_milestone, "TaskPatch.is_milestone")
            ),
            predecessors=(
                None
                if predecessors is None
                else _as_str_tuple(predecessors, "TaskPatch.predecessors")
            ),
        )


_TASK_PATCH_FIELDS: tuple[str, ...] = (
    "id",
    "project_id",
    "title",
    "description",
    "status",
    "priority",
    "wbs",
    "created_at",
    "start_date",
    "due_date",
    "completion",
    "assignee",
    "is_milestone",
    "predecessors",
)

Patch = ProjectPatch | TaskPatch


def parse_patch(entity_type: EntityType | str, payload: Mapping[str, object] | None) -> Patch:
    """Validate a caller payload against the partial-update schema of ``entity_type``."""
    kind = _as_enum(EntityType, entity_type, "entity_type")
    data: Mapping[str, object] = {} if payload is None else payload
    if kind is EntityType.PROJECT:
        return ProjectPatch.from_dict(data)
    return TaskPatch.from_dict(data)


# ------------------
# Drafts and actions
# ------------------


@dataclass(frozen=True, slots=True)
class ProposedAction:
    """One caller-authored change handed to the planner."""

    entity_type: EntityType
    action: ActionType
    payload: Patch
    entity_id: str | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ProposedAction:
        parsed = _expect_object(
            data,
            "ProposedAction",
            required={"entity_type", "action"},
            optional={"entity_id", "id", "after", "payload"},
            ignored={"before", "warnings"},
        )
        entity_type = _as_enum(EntityType, parsed["entity_type"], "ProposedAction.entity_type")
        action = _as_enum(ActionType, parsed["action"], "ProposedAction.action")
        raw_payload = parsed.get("after", parsed.get("payload"))
        if raw_payload is not None and not isinstance(raw_payload, Mapping):
            _fail("ProposedAction.after", f"expected object, got {type(raw_payload).__name__}")
        entity_id = _as_optional_str(parsed.get("entity_id"), "ProposedAction.entity_id")
        if action is not ActionType.CREATE and not entity_id:
            _fail("ProposedAction.entity_id", f"required for {action.value} actions")
        return cls(
            entity_type=entity_type,
            action=action,
            payload=parse_patch(entity_type, raw_payload),
            entity_id=entity_id,
            id=_as_optional_str(parsed.get("id"), "ProposedAction.id"),
        )

    @classmethod
    def from_planned(cls, planned: DraftAction) -> ProposedAction:
        """Rebuild the caller intent of a planned action, dropping derived snapshots."""
        return cls(
            entity_type=planned.entity_type,
            action=planned.action,
            payload=parse_patch(planned.entity_type, planned.after),
            entity_id=planned.entity_id,
            id=planned.id,
        )


@dataclass(slots=True)
class DraftAction(CanonicalModel):
    id: str
    entity_type: EntityType
    action: ActionType
    entity_id: str | None = None
    before: JSONObject | None = None
    after: JSONObject | None = None
    warnings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "DraftAction.id")
        self.entity_type = _as_enum(EntityType, self.entity_type, "DraftAction.entity_type")
        self.action = _as_enum(ActionType, self.action, "DraftAction.action")
        self.entity_id = _as_optional_str(self.entity_id, "DraftAction.entity_id")
        self.before = _as_optional_json_object(self.before, "DraftAction.before")
        self.after = _as_optional_json_object(self.after, "DraftAction.after")
        self.warnings = _as_str_tuple(self.warnings, "DraftAction.warnings")

    @property
    def flagged_not_found(self) -> bool:
        """True for a delete whose target planning could not find."""
        return self.action is ActionType.DELETE and self.before is None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> DraftAction:
        parsed = _expect_object(
            data,
            "DraftAction",
            required={"id", "entity_type", "action"},
            optional={"entity_id", "before", "after", "warnings"},
        )
        warnings = parsed.get("warnings")
        return cls(
            id=_as_str(parsed["id"], "DraftAction.id"),
            entity_type=_as_enum(EntityType, parsed["entity_type"], "DraftAction.entity_type"),
            action=_as_enum(ActionType, parsed["action"], "DraftAction.action"),
            entity_id=_as_optional_str(parsed.get("entity_id"), "DraftAction.entity_id"),
            before=_as_optional_json_object(parsed.get("before"), "DraftAction.before"),
            after=_as_optional_json_object(parsed.get("after"), "DraftAction.after"),
            warnings=() if warnings is None else _as_str_tuple(warnings, "DraftAction.warnings"),
        )


@dataclass(slots=True)
class Draft(CanonicalModel):
    id: str
    status: DraftStatus
    actions: tuple[DraftAction, ...]
    created_at: int
    created_by: Actor
    reason: str | None = None
    project_id: str | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Draft.id")
        self.status = _as_enum(DraftStatus, self.status, "Draft.status")
        self.actions = tuple(self.actions)
        for index, action in enumerate(self.actions):
            if not isinstance(action, DraftAction):
                _fail(f"Draft.actions[{index}]", "expected DraftAction")
        self.created_at = _as_timestamp(self.created_at, "Draft.created_at")
        self.created_by = _as_enum(Actor, self.created_by, "Draft.created_by")
        self.reason = _as_optional_str(self.reason, "Draft.reason")
        self.project_id = _as_optional_str(self.project_id, "Draft.project_id")


@dataclass(slots=True)
class AuditRecord(CanonicalModel):
    id: str
    entity_type: EntityType
    entity_id: str
    action: str
    actor: Actor
    timestamp: int
    before: JSONObject | None = None
    after: JSONObject | None = None
    reason: str | None = None
    project_id: str | None = None
    task_id: str | None = None
    draft_id: str | None = None
    rollback_of: str | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "AuditRecord.id")
        self.entity_type = _as_enum(EntityType, self.entity_type, "AuditRecord.entity_type")
        self.entity_id = _as_str(self.entity_id, "AuditRecord.entity_id")
        self.action = _as_str(self.action, "AuditRecord.action", max_len=64)
        self.actor = _as_enum(Actor, self.actor, "AuditRecord.actor")
        self.timestamp = _as_timestamp(self.timestamp, "AuditRecord.timestamp")
        self.before = _as_optional_json_object(self.before, "AuditRecord.before")
        self.after = _as_optional_json_object(self.after, "AuditRecord.after")
        self.reason = _as_optional_str(self.reason, "AuditRecord.reason")
        self.project_id = _as_optional_str(self.project_id, "AuditRecord.project_id")
        self.task_id = _as_optional_str(self.task_id, "AuditRecord.task_id")
        self.draft_id = _as_optional_str(self.draft_id, "AuditRecord.draft_id")
        self.rollback_of = _as_optional_str(self.rollback_of, "AuditRecord.rollback_of")


@dataclass(slots=True)
class DraftStep(CanonicalModel):
    """Journal row recording the outcome of one applied draft action."""

    draft_id: str
    action_id: str
    position: int
    status: StepStatus
    recorded_at: int
    audit_id: str | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        self.draft_id = _as_str(self.draft_id, "DraftStep.draft_id")
        self.action_id = _as_str(self.action_id, "DraftStep.action_id")
        self.position = _as_int(self.position, "DraftStep.position", minimum=0)
        self.status = _as_enum(StepStatus, self.status, "DraftStep.status")
        self.recorded_at = _as_timestamp(self.recorded_at, "DraftStep.recorded_at")
        self.audit_id = _as_optional_str(self.audit_id, "DraftStep.audit_id")
        self.error = _as_optional_str(self.error, "DraftStep.error")


@dataclass(frozen=True, slots=True)
class PlanResult:
    actions: tuple[DraftAction, ...]
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ProjectDeleteSnapshot:
    """Audit ``before`` payload of a project delete: the project and its cascaded tasks."""

    project: Project
    tasks: tuple[Task, ...] = field(default_factory=tuple)

    def to_dict(self) -> JSONObject:
        return {
            "project": self.project.to_dict(),
            "tasks": [task.to_dict() for task in self.tasks],
        }


def parse_actions(raw: Sequence[object]) -> list[ProposedAction]:
    out: list[ProposedAction] = []
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            _fail(f"actions[{index}]", f"expected object, got {type(item).__name__}")
        try:
            out.append(ProposedAction.from_dict(item))
        except ValueError as exc:
            raise ValueError(f"actions[{index}]: {exc}") from exc
    return out


__all__ = [
    "ROLLBACK_ACTION",
    "ActionType",
    "Actor",
    "AuditRecord",
    "CanonicalModel",
    "Draft",
    "DraftAction",
    "DraftStatus",
    "DraftStep",
    "EntityType",
    "JSONObject",
    "JSONValue",
    "Patch",
    "PlanResult",
    "Priority",
    "Project",
    "ProjectDeleteSnapshot",
    "ProjectPatch",
    "ProposedAction",
    "StepStatus",
    "Task",
    "TaskPatch",
    "TaskStatus",
    "canonical_json",
    "clamp_completion",
    "normalize_keys",
    "parse_actions",
    "parse_patch",
]
