"""
Records module for the waste ledger - state machine and persistence.

This module handles:
- Record types (entries, versions, categories, grants, statuses, notes)
- The canonical SQLite store
- Access control decisions
- The WasteLedger state machine that ties them together

Invariants:
    - Every mutating call is one SQLite transaction
    - Access checks run before any field validation or write
    - Entries, versions and notes are never deleted

How to change safely:
    - Route new operations through WasteLedger, never the store directly
    - Use transactions for all multi-statement operations
"""

from .acl import ADD_NOTE_PERMISSION, AccessController, Action
from .canonical_store import CanonicalStore, LedgerSession, StoreNotInitializedError
from .ledger import WasteLedger
from .models import (
    CategoryInfo,
    CollaboratorGrant,
    ComplianceNote,
    LedgerState,
    StatusInfo,
    VersionRecord,
    WasteEntry,
)

__all__ = [
    "ADD_NOTE_PERMISSION",
    "AccessController",
    "Action",
    "CanonicalStore",
    "LedgerSession",
    "StoreNotInitializedError",
    "WasteLedger",
    "CategoryInfo",
    "CollaboratorGrant",
    "ComplianceNote",
    "LedgerState",
    "StatusInfo",
    "VersionRecord",
    "WasteEntry",
]
