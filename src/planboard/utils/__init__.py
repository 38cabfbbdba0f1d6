"""Utility exports for clocks."""

from planboard.utils.clock import Clock, fixed_clock, now_ms

__all__ = ["Clock", "fixed_clock", "now_ms"]
