"""
planboard - unit tests for runtime config loading

File: tests/unit/config/test_loader.py
Last updated: 2026-10-19

Purpose
- Validate precedence CLI > env > file > defaults and path normalization.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from planboard.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    env_overrides,
    load_config,
)

if TYPE_CHECKING:
    from pathlib import Path


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_apply_when_no_file_exists(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config["planning"]["resolution_mode"] == "single_pass"
    assert config["audit"]["default_page_size"] == 20
    expected = tmp_path.resolve() / "state" / "planboard.sqlite"
    assert config["paths"]["state_db"] == expected.as_posix()


def test_precedence_cli_over_env_over_file(tmp_path: Path) -> None:
    config_file = _write(
        tmp_path / "planboard.toml",
        """
[planning]
resolution_mode = "fixed_point"
max_resolution_passes = 3

[audit]
default_page_size = 10
""",
    )

    config = load_config(
        config_file,
        environ={
            "PLANBOARD_PLANNING_MAX_RESOLUTION_PASSES": "5",
            "PLANBOARD_AUDIT_DEFAULT_PAGE_SIZE": "15",
            "PLANBOARD_OBSERVABILITY_LOG_TO_STDOUT": "yes",
        },
        cli_overrides={"audit.default_page_size": 30},
    )

    assert config["planning"]["resolution_mode"] == "fixed_point"
    assert config["planning"]["max_resolution_passes"] == 5
    assert config["audit"]["default_page_size"] == 30
    assert config["observability"]["log_to_stdout"] is True


def test_relative_paths_resolve_against_config_directory(tmp_path: Path) -> None:
    nested = tmp_path / "conf"
    nested.mkdir()
    config_file = _write(nested / "board.toml", '[paths]\nstate_db = "../data/board.sqlite"\n')

    config = load_config(config_file, environ={})

    assert config["paths"]["state_db"] == (tmp_path.resolve() / "data" / "board.sqlite").as_posix()
    assert config["paths"]["log_dir"] == (nested.resolve() / "logs").as_posix()


def test_missing_explicit_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_a_load_error(tmp_path: Path) -> None:
    config_file = _write(tmp_path / "planboard.toml", "[planning\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_file, environ={})


@pytest.mark.parametrize(
    ("name", "raw", "message"),
    [
        ("PLANBOARD_AUDIT_MAX_PAGE_SIZE", "many", "must be an integer"),
        ("PLANBOARD_OBSERVABILITY_REDACT_SECRETS", "maybe", "must be a boolean"),
    ],
)
def test_env_values_are_coerced_strictly(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, name: str, raw: str, message: str
) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigLoadError, match=message):
        load_config(environ={name: raw})


def test_env_override_is_validated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigValidationError, match="planning.resolution_mode"):
        load_config(environ={"PLANBOARD_PLANNING_RESOLUTION_MODE": "iterative"})


def test_dump_is_deterministic_json(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_config(environ={})

    first = dump_effective_config(config)

    assert first == dump_effective_config(dict(reversed(list(config.items()))))
    assert first.startswith('{"audit":')


def test_env_bindings_follow_section_and_key_names() -> None:
    overrides = env_overrides(
        {
            "PLANBOARD_DATABASE_BUSY_RETRY_LIMIT": " 7 ",
            "PLANBOARD_PATHS_LOG_DIR": "var/log",
            "PLANBOARD_UNKNOWN_SETTING": "ignored",
        }
    )

    assert overrides == {"database": {"busy_retry_limit": 7}, "paths": {"log_dir": "var/log"}}
