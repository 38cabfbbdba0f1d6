"""
planboard - module skeleton

File: src/planboard/persistence/__init__.py
Last updated: 2026-10-19

Purpose
- SQLite-backed state DB and typed repositories for projects, tasks, drafts, audit logs,
  and the draft step journal.

Non-functional requirements
- Connections are short-lived; the caller owns the StateDB handle.
"""

from planboard.persistence.repositories import (
    AuditRepo,
    DraftRepo,
    DraftStepRepo,
    ProjectRepo,
    TaskRepo,
)
from planboard.persistence.state_db import (
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
)

__all__ = [
    "AuditRepo",
    "DraftRepo",
    "DraftStepRepo",
    "ProjectRepo",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "TaskRepo",
]
