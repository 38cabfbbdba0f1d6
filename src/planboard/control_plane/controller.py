"""
planboard - module skeleton

File: src/planboard/control_plane/controller.py
Last updated: 2026-10-19

Purpose
- Boundary facade exposing the draft and audit operations over one state DB handle.

What should be included in this file
- Wiring of repositories, planner, audit log, and draft lifecycle from effective config.
- ``open`` constructor that builds the persistence handle from config.

Functional requirements
- Every boundary operation is a thin delegation; no business rules live here.

Non-functional requirements
- The caller owns the lifecycle of the handle (context manager).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from planboard.config.schema import default_config
from planboard.control_plane.audit import AuditFilters, AuditLog, AuditPage
from planboard.control_plane.drafts import DraftCreateResult, DraftLifecycle
from planboard.domain.models import (
    Actor,
    AuditRecord,
    Draft,
    DraftStatus,
    DraftStep,
    ProposedAction,
)
from planboard.persistence.repositories import (
    AuditRepo,
    DraftRepo,
    DraftStepRepo,
    ProjectRepo,
    TaskRepo,
)
from planboard.persistence.state_db import StateDB
from planboard.planning.planner import DraftPlanner, PlannerSettings
from planboard.utils.clock import Clock, now_ms


class PlanboardController:
    """Single entry point for creating, applying, and rolling back changes."""

    def __init__(
        self,
        db: StateDB,
        config: Mapping[str, Any] | None = None,
        *,
        clock: Clock = now_ms,
        logger: Any | None = None,
    ) -> None:
        cfg = dict(config) if config is not None else dict(default_config())
        planning = cfg.get("planning", {})
        audit_cfg = cfg.get("audit", {})

        self._db = db
        self._db.ensure_migrated()
        self.projects = ProjectRepo(db, logger=logger)
        self.tasks = TaskRepo(db, logger=logger)
        self._drafts = DraftRepo(db, logger=logger)
        self._steps = DraftStepRepo(db, logger=logger)
        self._audits = AuditRepo(db, logger=logger)

        self._planner = DraftPlanner(
            self.projects,
            self.tasks,
            settings=PlannerSettings(
                resolution_mode=planning.get("resolution_mode", "single_pass"),
                max_passes=planning.get("max_resolution_passes", PlannerSettings().max_passes),
            ),
            clock=clock,
            logger=logger,
        )
        self._audit = AuditLog(
            db,
            projects=self.projects,
            tasks=self.tasks,
            audits=self._audits,
            clock=clock,
            default_page_size=audit_cfg.get("default_page_size", 20),
            max_page_size=audit_cfg.get("max_page_size", 100),
            logger=logger,
        )
        self._lifecycle = DraftLifecycle(
            db,
            planner=self._planner,
            audit=self._audit,
            drafts=self._drafts,
            steps=self._steps,
            projects=self.projects,
            tasks=self.tasks,
            clock=clock,
            logger=logger,
        )

    @classmethod
    def open(
        cls,
        config: Mapping[str, Any] | None = None,
        *,
        db_path: str | Path | None = None,
        clock: Clock = now_ms,
    ) -> PlanboardController:
        """Build the state DB handle from ``config`` (``db_path`` wins when given)."""
        cfg = dict(config) if config is not None else dict(default_config())
        database = cfg.get("database", {})
        path = db_path if db_path is not None else cfg["paths"]["state_db"]
        db = StateDB(
            path,
            busy_timeout_ms=database.get("busy_timeout_ms", 5_000),
            busy_retry_limit=database.get("busy_retry_limit", 4),
            busy_retry_backoff_ms=database.get("busy_retry_backoff_ms", 25),
        )
        return cls(db, cfg, clock=clock)

    @property
    def db(self) -> StateDB:
        return self._db

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> PlanboardController:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    # ------
    # Drafts
    # ------

    def create_draft(
        self,
        actions: Sequence[ProposedAction | Mapping[str, object]],
        *,
        created_by: Actor | str = Actor.USER,
        reason: str | None = None,
        project_id: str | None = None,
    ) -> DraftCreateResult:
        return self._lifecycle.create_draft(
            actions, created_by=created_by, reason=reason, project_id=project_id
        )

    def apply_draft(self, draft_id: str, *, actor: Actor | str = Actor.USER) -> Draft:
        return self._lifecycle.apply_draft(draft_id, actor=actor)

    def discard_draft(self, draft_id: str) -> Draft:
        return self._lifecycle.discard_draft(draft_id)

    def refresh_draft_actions(self, draft_id: str) -> DraftCreateResult:
        return self._lifecycle.refresh_draft_actions(draft_id)

    def get_draft(self, draft_id: str) -> Draft:
        return self._lifecycle.get_draft(draft_id)

    def list_drafts(self, status: DraftStatus | str | None = None) -> list[Draft]:
        return self._lifecycle.list_drafts(status)

    def draft_steps(self, draft_id: str) -> list[DraftStep]:
        return self._lifecycle.draft_steps(draft_id)

    # -----
    # Audit
    # -----

    def list_audit_logs(self, filters: AuditFilters | None = None) -> AuditPage:
        return self._audit.list(filters)

    def get_audit_log(self, audit_id: str) -> AuditRecord:
        return self._audit.get(audit_id)

    def rollback_audit_log(
        self,
        audit_id: str,
        *,
        actor: Actor | str = Actor.USER,
        reason: str | None = None,
    ) -> AuditRecord:
        return self._audit.rollback(audit_id, actor=actor, reason=reason)


__all__ = ["PlanboardController"]
