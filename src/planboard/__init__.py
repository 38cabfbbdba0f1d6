"""
planboard - module skeleton

File: src/planboard/__init__.py
Last updated: 2026-10-19

Purpose
- Package root. Defines public package-level metadata and import boundaries.

What should be included in this file
- Package docstring describing planboard at a high level: a project/task tracker whose
  write path is compiled into reviewable drafts and recorded in an undoable audit log.
- Version export and minimal public API surface (keep small).

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
