import itertools
from datetime import datetime, timedelta, timezone

import pytest

from registry import SessionRegistry
from scheduler import ExpirationScheduler
from storage import MemoryBlobStore

TTL = timedelta(seconds=3600)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def cycling_keys(*codes):
    """Key generator that hands out ``codes`` in order, forever."""
    it = itertools.cycle(codes)
    return lambda: next(it)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryBlobStore()


@pytest.fixture
def registry(store, clock):
    return SessionRegistry(
        store,
        ttl=TTL,
        scheduler=ExpirationScheduler(clock=clock),
        clock=clock,
    )
