"""
Waste Ledger Server - tamper-evident record store for waste lifecycle tracking.

This package implements an ownership-gated record store built on:
- Waste entries as the root aggregate, with satellite collections
  (versions, category, collaborators, status, compliance notes)
- A single SQLite database as the durable store, one transaction per call
- An access controller that gates every mutation
- A process-wide pause switch held by the ledger administrator

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│    HTTP     │────▶│   WasteLedger   │
    │             │     │   Server    │     │ (state machine) │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                              ┌──────────────────────┼──────────────┐
                              │                      │              │
                              ▼                      ▼              ▼
                        ┌───────────┐         ┌───────────┐   ┌──────────┐
                        │   Pause   │         │  Access   │   │  SQLite  │
                        │  Switch   │         │Controller │   │  Store   │
                        └───────────┘         └───────────┘   └──────────┘

Invariants:
    - Entries are never deleted; entry ids are dense from 1 and never reused
    - Versions and compliance notes are append-only
    - All mutations require an authenticated actor
    - A rejected mutation leaves no trace

How to change safely:
    - Keep the pause -> access -> validation -> commit order for new operations
    - Record limits can be raised freely; lowering them only blocks new appends

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
