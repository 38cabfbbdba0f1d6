"""Stable constants shared across planboard layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Calendar arithmetic. All timestamps are integer epoch milliseconds.
DAY_MS: Final[int] = 86_400_000

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 2

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
STATE_DB_FILENAME: Final[str] = "planboard.sqlite"
LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")
CONFIG_FILENAME: Final[str] = "planboard.toml"
ENV_PREFIX: Final[str] = "PLANBOARD_"

# Audit listing pagination.
DEFAULT_PAGE_SIZE: Final[int] = 20
MAX_PAGE_SIZE: Final[int] = 100

# Constraint resolution.
RESOLUTION_MODES: Final[tuple[str, ...]] = ("single_pass", "fixed_point")
DEFAULT_RESOLUTION_MODE: Final[str] = "single_pass"
DEFAULT_MAX_RESOLUTION_PASSES: Final[int] = 8

# Normalization defaults for caller-supplied records.
DEFAULT_PROJECT_NAME: Final[str] = "Untitled Project"
DEFAULT_TASK_TITLE: Final[str] = "Untitled Task"
COMPLETION_MIN: Final[int] = 0
COMPLETION_MAX: Final[int] = 100

__all__ = [
    "COMPLETION_MAX",
    "COMPLETION_MIN",
    "CONFIG_FILENAME",
    "CONFIG_SCHEMA_VERSION",
    "DAY_MS",
    "DEFAULT_MAX_RESOLUTION_PASSES",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_PROJECT_NAME",
    "DEFAULT_RESOLUTION_MODE",
    "DEFAULT_TASK_TITLE",
    "ENV_PREFIX",
    "LOG_DIR",
    "MAX_PAGE_SIZE",
    "RESOLUTION_MODES",
    "STATE_DB_FILENAME",
    "STATE_DB_SCHEMA_VERSION",
    "STATE_DIR",
]
