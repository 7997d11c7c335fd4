"""
Shared fixtures for the waste ledger tests.
"""

import tempfile

import pytest

from services.wasteledger_server.records.canonical_store import CanonicalStore
from services.wasteledger_server.records.ledger import WasteLedger

ADMIN = "deployer"


class Clock:
    """Deterministic ordering counter, advancing by one per call."""

    def __init__(self, start: int = 1000) -> None:
        self.value = start

    def __call__(self) -> int:
        self.value += 1
        return self.value


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def store(data_dir):
    """Create an initialized store."""
    store = CanonicalStore(data_dir, wal_mode=False)
    store.initialize(admin=ADMIN)
    return store


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def ledger(store, clock):
    """Create a ledger with default limits and a deterministic clock."""
    return WasteLedger(store, clock=clock)
