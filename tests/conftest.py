"""Shared fixtures: in-memory stores with a controllable clock."""
import pytest

from src.collector import MetricsCollector
from src.store import InMemoryBatch, InMemorySnapshotStore, StoreError


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FailingBatch(InMemoryBatch):
    def execute(self):
        raise StoreError("connection refused")


class FlakyStore(InMemorySnapshotStore):
    """In-memory store whose batch writes fail while ``failing`` is set."""

    def __init__(self, clock=None):
        super().__init__(clock=clock or FakeClock())
        self.failing = False

    def batch(self):
        if self.failing:
            return FailingBatch(self)
        return super().batch()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemorySnapshotStore(clock=clock)


@pytest.fixture
def flaky_store(clock):
    return FlakyStore(clock=clock)


@pytest.fixture
def collector():
    return MetricsCollector()
