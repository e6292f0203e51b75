from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from focus_tracker.config import TrackerSettings
from focus_tracker.models import Interval, IntervalKind
from focus_tracker.store import IntervalStore


class FakeClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def t0() -> datetime:
    return datetime(2024, 3, 6, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(t0: datetime) -> FakeClock:
    return FakeClock(t0)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "intervals.json"


@pytest.fixture
def store(db_path, clock: FakeClock) -> IntervalStore:
    return IntervalStore(db_path, lock_timeout=0.2, stale_after=5.0, clock=clock)


@pytest.fixture
def settings() -> TrackerSettings:
    return TrackerSettings.from_minutes(5)


def make_interval(start: datetime, minutes: float, kind: IntervalKind = IntervalKind.FOCUS) -> Interval:
    return Interval(start=start, end=start + timedelta(minutes=minutes), kind=kind)
