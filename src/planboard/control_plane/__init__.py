"""
planboard - module skeleton

File: src/planboard/control_plane/__init__.py
Last updated: 2026-10-19

Purpose
- Draft lifecycle (create, apply, discard, refresh), audit log and rollback, and the
  boundary facade consumed by transports such as the CLI.
"""

from planboard.control_plane.audit import AuditFilters, AuditLog, AuditPage
from planboard.control_plane.controller import PlanboardController
from planboard.control_plane.drafts import DraftCreateResult, DraftLifecycle

__all__ = [
    "AuditFilters",
    "AuditLog",
    "AuditPage",
    "DraftCreateResult",
    "DraftLifecycle",
    "PlanboardController",
]
