"""Shared fixtures for the ledger core tests."""

from datetime import datetime, timedelta, timezone

import pytest

from taskledger.models import Platform
from taskledger.service import LedgerService
from taskledger.storage import InMemoryStorage


START = datetime(2024, 5, 14, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def service(clock):
    return LedgerService(storage=InMemoryStorage(lock_timeout=1.0), clock=clock)


@pytest.fixture
def task(service, clock):
    return service.tasks.create_task(
        title="Like and comment on Business Post",
        platform=Platform.FACEBOOK,
        reward=200,
        expires_at=clock.now + timedelta(days=2),
    )
