"""
planboard - configuration schema.

File: src/planboard/config/schema.py
Last updated: 2026-10-19

Purpose
- Declare every setting once in ``FIELDS``. Defaults, environment bindings, path
  normalization and validation are all read from that table.

Behavior
- Validation is strict: unknown keys, missing keys and wrong types are all reported,
  each with a dotted field path.
- Keys that look like credentials are rejected outright; planboard config never holds
  secrets.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal

from planboard.constants import (
    CONFIG_FILENAME,
    CONFIG_SCHEMA_VERSION,
    DEFAULT_MAX_RESOLUTION_PASSES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_RESOLUTION_MODE,
    LOG_DIR,
    MAX_PAGE_SIZE,
    RESOLUTION_MODES,
    STATE_DB_FILENAME,
    STATE_DIR,
)
from planboard.persistence.state_db import (
    DEFAULT_BUSY_RETRY_BACKOFF_MS,
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
)

FieldKind = Literal["path", "int", "bool", "choice"]

_SENSITIVE_KEY = re.compile(
    r"(^|_)(secret|token|password|passwd|credentials?|api_?key|private_key|access_token)(_|$)"
)
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")

REDACTED_VALUE: Final[str] = "<redacted>"


@dataclass(frozen=True, slots=True)
class ConfigField:
    kind: FieldKind
    default: str | int | bool
    minimum: int | None = None
    maximum: int | None = None
    choices: tuple[str, ...] = ()
    fold_case: bool = False


FIELDS: Final[Mapping[str, Mapping[str, ConfigField]]] = {
    "meta": {
        "schema_version": ConfigField("int", CONFIG_SCHEMA_VERSION, minimum=1),
    },
    "paths": {
        "state_db": ConfigField("path", (STATE_DIR / STATE_DB_FILENAME).as_posix()),
        "log_dir": ConfigField("path", f"{LOG_DIR.as_posix()}/"),
    },
    "database": {
        "busy_timeout_ms": ConfigField("int", DEFAULT_BUSY_TIMEOUT_MS, minimum=0),
        "busy_retry_limit": ConfigField("int", DEFAULT_BUSY_RETRY_LIMIT, minimum=0),
        "busy_retry_backoff_ms": ConfigField("int", DEFAULT_BUSY_RETRY_BACKOFF_MS, minimum=0),
    },
    "planning": {
        "resolution_mode": ConfigField(
            "choice", DEFAULT_RESOLUTION_MODE, choices=RESOLUTION_MODES
        ),
        "max_resolution_passes": ConfigField(
            "int", DEFAULT_MAX_RESOLUTION_PASSES, minimum=1
        ),
    },
    "audit": {
        "default_page_size": ConfigField(
            "int", DEFAULT_PAGE_SIZE, minimum=1, maximum=MAX_PAGE_SIZE
        ),
        "max_page_size": ConfigField("int", MAX_PAGE_SIZE, minimum=1, maximum=MAX_PAGE_SIZE),
    },
    "observability": {
        "log_level": ConfigField(
            "choice", "INFO", choices=("DEBUG", "INFO", "WARNING", "ERROR"), fold_case=True
        ),
        "log_format": ConfigField("choice", "json", choices=("json", "text")),
        "log_to_stdout": ConfigField("bool", False),
        "redact_secrets": ConfigField("bool", True),
    },
}

PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = tuple(
    (section, key)
    for section, fields in FIELDS.items()
    for key, spec in fields.items()
    if spec.kind == "path"
)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Normalized config, or ``None`` plus the issues that blocked it."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered or '- <root>: unknown failure'}")


def default_config() -> dict[str, Any]:
    """Fresh copy of the built-in defaults."""
    return {
        section: {key: spec.default for key, spec in fields.items()}
        for section, fields in FIELDS.items()
    }


def migration_guidance(found_version: int) -> str:
    if found_version < CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is older than supported {CONFIG_SCHEMA_VERSION}; "
            f"upgrade {CONFIG_FILENAME} to the current schema"
        )
    if found_version > CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is newer than supported {CONFIG_SCHEMA_VERSION}; "
            "upgrade the planboard runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; nested mappings merge key by key."""
    merged = {key: copy.deepcopy(value) for key, value in base.items()}
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: object) -> ConfigValidationResult:
    issues: list[ConfigValidationIssue] = []
    if not isinstance(config, Mapping):
        issues.append(ConfigValidationIssue("<root>", _type_error("object", config)))
        return ConfigValidationResult(config=None, issues=tuple(issues))

    _check_keys(config, FIELDS, "", issues)
    normalized: dict[str, Any] = {}
    for section, fields in FIELDS.items():
        raw = config.get(section)
        if raw is None:
            continue
        if not isinstance(raw, Mapping):
            issues.append(ConfigValidationIssue(section, _type_error("object", raw)))
            continue
        _check_keys(raw, fields, section, issues)
        values = normalized.setdefault(section, {})
        for key, spec in fields.items():
            if key not in raw:
                continue
            try:
                values[key] = coerce_field(spec, raw[key])
            except ValueError as exc:
                issues.append(ConfigValidationIssue(f"{section}.{key}", str(exc)))

    version = normalized.get("meta", {}).get("schema_version")
    if version is not None and version != CONFIG_SCHEMA_VERSION:
        issues.append(ConfigValidationIssue("meta.schema_version", migration_guidance(version)))
    audit = normalized.get("audit", {})
    if audit.get("default_page_size", 0) > audit.get("max_page_size", MAX_PAGE_SIZE):
        issues.append(
            ConfigValidationIssue("audit.default_page_size", "must be <= audit.max_page_size")
        )

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def coerce_field(spec: ConfigField, value: object) -> str | int | bool:
    """Check one value against its field; raises ``ValueError`` with a short reason."""
    if spec.kind == "bool":
        if not isinstance(value, bool):
            raise ValueError(_type_error("boolean", value))
        return value
    if spec.kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(_type_error("integer", value))
        if spec.minimum is not None and value < spec.minimum:
            raise ValueError(f"must be >= {spec.minimum}")
        if spec.maximum is not None and value > spec.maximum:
            raise ValueError(f"must be <= {spec.maximum}")
        return value

    if not isinstance(value, str):
        raise ValueError(_type_error("string", value))
    text = value.strip()
    if not text:
        raise ValueError("must not be empty")
    if spec.kind == "path":
        if "\x00" in text:
            raise ValueError("must not contain NUL bytes")
        return text
    if spec.fold_case:
        text = text.upper()
    if text not in spec.choices:
        raise ValueError(f"invalid value {text!r}; expected one of: {', '.join(spec.choices)}")
    return text


def redact_config(config: object) -> dict[str, Any]:
    """Copy of ``config`` with credential-looking keys masked, for printing."""
    if not isinstance(config, Mapping):
        return {}
    return _redact(config)


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            key: REDACTED_VALUE if looks_sensitive(str(key)) else _redact(item)
            for key, item in sorted(value.items(), key=lambda pair: str(pair[0]))
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


def looks_sensitive(key: str) -> bool:
    snake = _CAMEL_BOUNDARY.sub(r"\1_\2", key.strip()).lower().replace("-", "_")
    return _SENSITIVE_KEY.search(snake) is not None


def _check_keys(
    payload: Mapping[Any, Any],
    allowed: Mapping[str, Any],
    prefix: str,
    issues: list[ConfigValidationIssue],
) -> None:
    def at(key: str) -> str:
        return f"{prefix}.{key}" if prefix else key

    for key in sorted(payload, key=str):
        if key in allowed:
            continue
        if looks_sensitive(str(key)):
            issues.append(
                ConfigValidationIssue(at(str(key)), "secret values do not belong in config")
            )
        else:
            issues.append(ConfigValidationIssue(at(str(key)), "unknown field"))
    for key in allowed:
        if key not in payload:
            issues.append(ConfigValidationIssue(at(key), "missing required field"))


def _type_error(expected: str, value: object) -> str:
    return f"expected {expected}, got {type(value).__name__}"


__all__ = [
    "FIELDS",
    "PATH_FIELDS",
    "REDACTED_VALUE",
    "ConfigField",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "assert_valid_config",
    "coerce_field",
    "default_config",
    "looks_sensitive",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
