"""
Shared fixtures for the ledger tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ocr_quota_ledger.core.ledger import QuotaLedger
from ocr_quota_ledger.storage.repository import MemoryStore


class FakeClock:
    """Controllable clock returning a fixed aware datetime."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(store, clock):
    return QuotaLedger(store=store, session_store=MemoryStore(), clock=clock)
