"""Millisecond wall clock used for record timestamps; injectable for tests."""

from __future__ import annotations

import time
from collections.abc import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def fixed_clock(value: int, *, step: int = 0) -> Clock:
    """Return a clock starting at ``value`` that advances ``step`` ms per call."""
    if value < 0 or step < 0:
        raise ValueError("value and step must be >= 0")
    state = [value - step]

    def _tick() -> int:
        state[0] += step
        return state[0]

    return _tick


__all__ = ["Clock", "fixed_clock", "now_ms"]
