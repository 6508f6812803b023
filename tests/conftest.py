from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from kcal.data.store import LocalFallbackStore, load_default_store


class FakeClock:
    """Wall clock for caches and the health monitor."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeMonotonic:
    """Monotonic clock whose sleep() only advances time."""

    def __init__(self) -> None:
        self.t = 1000.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.t

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mono() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture(scope="session")
def store() -> LocalFallbackStore:
    return load_default_store()
