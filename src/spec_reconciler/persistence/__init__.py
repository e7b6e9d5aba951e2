"""
spec-reconciler — persistence layer

File: src/spec_reconciler/persistence/__init__.py
Last updated: 2026-10-17

Purpose
- Durable record of committed sessions used as the next session's baseline.

Non-functional requirements
- SQLite-first; avoid heavy DB dependencies.
"""

from spec_reconciler.persistence.state_store import (
    CommitRecord,
    MigrationRecord,
    StateStore,
    StateStoreBusyError,
    StateStoreError,
    StateStoreMigrationError,
)

__all__ = [
    "CommitRecord",
    "MigrationRecord",
    "StateStore",
    "StateStoreBusyError",
    "StateStoreError",
    "StateStoreMigrationError",
]
