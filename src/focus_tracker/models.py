"""Domain models for recorded focus and idle time."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Iterator, Mapping


RETENTION = timedelta(days=30)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"timestamp must be a string, got {type(value).__name__}")
    # fromisoformat() only learned the "Z" suffix in Python 3.11.
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


class IntervalKind(str, enum.Enum):
    FOCUS = "focus"
    IDLE = "idle"


@dataclass(slots=True)
class Interval:
    """A contiguous span of time spent in a single state."""

    start: datetime
    end: datetime
    kind: IntervalKind

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_seconds(self) -> float:
        return self.duration.total_seconds()

    def copy(self) -> "Interval":
        return replace(self)

    def overlap(self, start: datetime, end: datetime) -> timedelta:
        """Return how much of ``[start, end)`` this interval covers."""
        lo = max(self.start, start)
        hi = min(self.end, end)
        if hi <= lo:
            return timedelta(0)
        return hi - lo

    def to_record(self) -> dict[str, str]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "kind": self.kind.value,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Interval":
        """Build an interval from a JSON record.

        Raises ``KeyError``, ``TypeError`` or ``ValueError`` for records that
        do not have the ``{start, end, kind}`` shape.
        """
        start = parse_timestamp(record["start"])
        end = parse_timestamp(record["end"])
        kind = IntervalKind(str(record["kind"]).lower())
        return cls(start=start, end=end, kind=kind)


@dataclass(slots=True)
class Database:
    """Ordered collection of intervals."""

    intervals: list[Interval] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.intervals)

    def __iter__(self) -> Iterator[Interval]:
        return iter(self.intervals)

    def copy(self) -> "Database":
        return Database([interval.copy() for interval in self.intervals])

    def sorted(self) -> "Database":
        return Database(sorted(self.intervals, key=lambda item: item.start))

    def to_records(self) -> list[dict[str, str]]:
        return [interval.to_record() for interval in self.intervals]

    @classmethod
    def from_intervals(cls, intervals: Iterable[Interval]) -> "Database":
        return cls(sorted(intervals, key=lambda item: item.start))
