"""
conftest.py — Shared fixtures for the advisors test suite.

Modules live flat in advisors/ and import each other by bare name, so the
module directory is put on sys.path before collection.
"""

from __future__ import annotations

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from memory_ledger import InMemoryTradeLedger  # noqa: E402
from trade_ledger import SQLiteTradeLedger  # noqa: E402


class FakeClock:
    """Manually advanced time source for cache/limiter tests."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["sqlite", "memory"])
def ledger(request):
    """Every store test runs against both ledger implementations."""
    if request.param == "sqlite":
        store = SQLiteTradeLedger(":memory:")
    else:
        store = InMemoryTradeLedger()
    yield store
    store.close()
