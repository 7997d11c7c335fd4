"""
CLI tools for waste ledger administration.

This module provides command-line tools for:
- inspect: Read entries, verify digests and show ledger state offline

Invariants:
    - Tools work offline (no running server required)
    - Tools never modify the ledger database
"""

from .inspect_cli import InspectCLI

__all__ = ["InspectCLI"]
