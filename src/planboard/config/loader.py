"""
planboard - runtime config loader.

File: src/planboard/config/loader.py
Last updated: 2026-10-19

Purpose
- Build the effective config from, highest precedence first: CLI overrides,
  ``PLANBOARD_<SECTION>_<KEY>`` environment variables, ``planboard.toml`` and the
  built-in defaults.

Behavior
- A missing default ``planboard.toml`` is fine; a missing explicit ``--config`` is not.
- Relative paths resolve against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from planboard.config.schema import (
    FIELDS,
    PATH_FIELDS,
    ConfigField,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from planboard.constants import CONFIG_FILENAME, ENV_PREFIX

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """The config file or an override value could not be read."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    explicit = config_path is not None
    path = (
        Path(config_path).expanduser().resolve()
        if config_path is not None
        else (Path.cwd() / CONFIG_FILENAME).resolve()
    )

    config = assert_valid_config(merge_config(default_config(), _read_toml(path, explicit)))
    config = merge_config(config, env_overrides(os.environ if environ is None else environ))
    config = merge_config(config, _nest_dotted(cli_overrides or {}))
    return normalize_paths(assert_valid_config(config), base_dir=path.parent)


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``PLANBOARD_<SECTION>_<KEY>`` values coerced to each field's type."""
    overrides: dict[str, Any] = {}
    for section, fields in FIELDS.items():
        for key, spec in fields.items():
            name = f"{ENV_PREFIX}{section}_{key}".upper()
            if name in environ:
                overrides.setdefault(section, {})[key] = _from_env(name, environ[name], spec)
    return overrides


def normalize_paths(config: Mapping[str, Any], *, base_dir: Path) -> dict[str, Any]:
    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        raw = normalized.get(section, {}).get(key)
        if not isinstance(raw, str):
            continue
        candidate = Path(os.path.expandvars(raw)).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        normalized[section][key] = Path(os.path.normpath(candidate)).as_posix()
    return normalized


def dump_effective_config(config: Mapping[str, Any]) -> str:
    """Redacted config as compact, key-sorted JSON."""
    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _from_env(name: str, raw: str, spec: ConfigField) -> object:
    value = raw.strip()
    if spec.kind == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} must be an integer, got {raw!r}") from exc
    if spec.kind == "bool":
        if value.lower() in _TRUTHY:
            return True
        if value.lower() in _FALSY:
            return False
        raise ConfigLoadError(f"{name} must be a boolean (true/false/1/0/yes/no/on/off)")
    return value


def _nest_dotted(overrides: Mapping[str, object]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for dotted, value in overrides.items():
        parts = [part for part in dotted.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        cursor = nested
        for part in parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[parts[-1]] = value
    return nested


__all__ = [
    "ConfigLoadError",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "normalize_paths",
]
