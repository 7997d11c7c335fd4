"""
API module for the waste ledger.

This module provides the HTTP/REST interface over WasteLedger:
- Entry registration, versioning, categories, collaborators, status, notes
- Administrator pause switch
- Health and ledger state

Invariants:
    - Every WasteLedger operation has exactly one route
    - Caller identity comes from the X-Actor header
"""

from .http_server import create_http_app, run_http_server, status_for_error

__all__ = [
    "create_http_app",
    "run_http_server",
    "status_for_error",
]
