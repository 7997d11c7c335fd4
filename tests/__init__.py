"""
Waste Ledger Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies beyond SQLite)
- integration/: Integration tests (HTTP API, inspection CLI)
"""
