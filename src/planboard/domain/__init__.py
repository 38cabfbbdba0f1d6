"""
planboard - module skeleton

File: src/planboard/domain/__init__.py
Last updated: 2026-10-19

Purpose
- Domain types shared across layers: Project, Task, Draft, DraftAction, AuditRecord, DraftStep.

What should be included in this file
- Keep domain layer free of IO side effects.

Functional requirements
- Domain objects must be serializable to plain JSON snapshots.
"""
