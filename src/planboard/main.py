"""Process entrypoint for ``planboard``: maps failures onto stable exit codes."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    REJECTED = 1
    CONFIG_ERROR = 2
    NOT_FOUND = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run one CLI command; used by ``python -m planboard`` and the console script."""
    try:
        from planboard.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _as_exit_code(exc.code)
    except Exception as exc:  # noqa: BLE001 - every failure leaves through an exit code.
        code = exit_code_for(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return int(code)


def exit_code_for(exc: BaseException) -> ExitCode:
    """First match along the cause chain wins; unknown failures are internal errors."""
    import yaml

    from planboard.config import ConfigLoadError, ConfigValidationError
    from planboard.domain.errors import (
        ConstraintViolationError,
        NotFoundError,
        RollbackError,
        StaleDraftError,
    )

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        ((NotFoundError,), ExitCode.NOT_FOUND),
        ((ConstraintViolationError, StaleDraftError, RollbackError), ExitCode.REJECTED),
        (
            (
                ConfigLoadError,
                ConfigValidationError,
                yaml.YAMLError,
                ValueError,
                FileNotFoundError,
                IsADirectoryError,
                PermissionError,
            ),
            ExitCode.CONFIG_ERROR,
        ),
    )
    for link in _causes(exc):
        for kinds, code in routes:
            if isinstance(link, kinds):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None or current.__suppress_context__:
            current = current.__cause__
        else:
            current = current.__context__


def _as_exit_code(raw: object) -> int:
    if raw is None:
        return ExitCode.SUCCESS
    if isinstance(raw, int) and raw in set(ExitCode):
        return raw
    if isinstance(raw, str) and raw.strip():
        print(raw.strip(), file=sys.stderr)
    return ExitCode.INTERNAL_ERROR


__all__ = ["ExitCode", "cli_entrypoint", "exit_code_for"]
