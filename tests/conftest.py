"""
Shared fixtures: a controllable clock and an in-memory ledger.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from ai_quota_gate.core.ledger import UsageLedger
from ai_quota_gate.storage.repository import InMemoryUsageStore

# 11:00 in Los Angeles (PDT), 13 hours before the provider's daily reset
START = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock whose sleep advances time instantly and records the duration."""

    def __init__(self, start: datetime = START):
        self.current = start
        self.sleeps = []

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


class StalledClock(FakeClock):
    """Clock whose sleep never finishes on its own."""

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.Event().wait()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryUsageStore()


@pytest.fixture
def ledger(store, clock):
    return UsageLedger(store, daily_limit=25, clock=clock)
