"""Daily and weekly aggregates over recorded intervals.

Every function here is pure: the same intervals, dates and timezone always
produce the same result, so the report command and the dashboard agree.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Optional, Union

from .models import Database, Interval, IntervalKind

Intervals = Union[Database, Iterable[Interval]]

ZERO = timedelta(0)


@dataclass(frozen=True, slots=True)
class DaySummary:
    day: date
    focus_total: timedelta
    idle_total: timedelta
    interruption_count: int
    focus_sessions: int
    avg_focus_session: timedelta
    avg_idle_session: timedelta

    @property
    def total(self) -> timedelta:
        return self.focus_total + self.idle_total


@dataclass(frozen=True, slots=True)
class DayBreakdown:
    day: date
    focus_total: timedelta
    idle_total: timedelta


@dataclass(frozen=True, slots=True)
class WeekSummary:
    week_start: date
    focus_total: timedelta
    idle_total: timedelta
    interruption_count: int
    focus_sessions: int
    avg_focus_session: timedelta
    avg_idle_session: timedelta
    days: tuple[DayBreakdown, ...]

    @property
    def total(self) -> timedelta:
        return self.focus_total + self.idle_total


@dataclass(frozen=True, slots=True)
class SessionSummary:
    focus_total: timedelta = ZERO
    idle_total: timedelta = ZERO
    focus_count: int = 0
    idle_count: int = 0
    max_focus: Optional[timedelta] = None
    min_focus: Optional[timedelta] = None
    max_idle: Optional[timedelta] = None
    min_idle: Optional[timedelta] = None


def local_now(tz: Optional[tzinfo] = None) -> datetime:
    """Current time in ``tz``, or in the system zone when ``tz`` is None."""
    if tz is not None:
        return datetime.now(tz)
    return datetime.now().astimezone()


def _midnight(day: date, tz: Optional[tzinfo]) -> datetime:
    if tz is None:
        # Resolved with the UTC offset in force on that date.
        return datetime.combine(day, time.min).astimezone()
    return datetime.combine(day, time.min, tzinfo=tz)


def day_bounds(day: date, tz: Optional[tzinfo] = None) -> tuple[datetime, datetime]:
    """Return ``[midnight, next midnight)`` of ``day`` in ``tz`` (system zone by default)."""
    return _midnight(day, tz), _midnight(day + timedelta(days=1), tz)


def week_start_for(now: datetime, tz: Optional[tzinfo] = None) -> date:
    """Monday on or before ``now`` in the local calendar."""
    today = now.astimezone(tz).date()
    return monday_of(today)


def monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _as_list(db: Intervals) -> list[Interval]:
    if isinstance(db, Database):
        return list(db.intervals)
    return list(db)


def _average(total: timedelta, count: int) -> timedelta:
    if count == 0:
        return ZERO
    return total / count


def intervals_for_day(db: Intervals, day: date, tz: Optional[tzinfo] = None) -> list[Interval]:
    """Intervals touching ``day``, clipped to its bounds, ordered by start."""
    start, end = day_bounds(day, tz)
    clipped = [
        Interval(start=max(item.start, start), end=min(item.end, end), kind=item.kind)
        for item in _as_list(db)
        if item.overlap(start, end) > ZERO
    ]
    return sorted(clipped, key=lambda item: item.start)


def daily_summary(db: Intervals, day: date, tz: Optional[tzinfo] = None) -> DaySummary:
    """Aggregate the intervals that intersect one local calendar day.

    Intervals crossing midnight contribute only their overlap with ``day``
    and count as a session on each day they touch.
    """
    start, end = day_bounds(day, tz)
    focus = idle = ZERO
    focus_count = idle_count = 0
    for interval in _as_list(db):
        overlap = interval.overlap(start, end)
        if overlap <= ZERO:
            continue
        if interval.kind is IntervalKind.FOCUS:
            focus += overlap
            focus_count += 1
        else:
            idle += overlap
            idle_count += 1
    return DaySummary(
        day=day,
        focus_total=focus,
        idle_total=idle,
        interruption_count=idle_count,
        focus_sessions=focus_count,
        avg_focus_session=_average(focus, focus_count),
        avg_idle_session=_average(idle, idle_count),
    )


def weekly_summary(
    db: Intervals, week_start: Union[date, datetime], tz: Optional[tzinfo] = None
) -> WeekSummary:
    """Aggregate Monday..Sunday of the ISO week containing ``week_start``.

    Totals are the sum of the seven clipped day totals. Session counts
    count each interval once even if it crosses midnight. The per-day
    breakdown is empty when nothing was recorded that week.
    """
    if isinstance(week_start, datetime):
        week_start = week_start.astimezone(tz).date()
    monday = monday_of(week_start)
    intervals = _as_list(db)

    days = [daily_summary(intervals, monday + timedelta(days=offset), tz) for offset in range(7)]
    focus = sum((item.focus_total for item in days), ZERO)
    idle = sum((item.idle_total for item in days), ZERO)

    week_begin = day_bounds(monday, tz)[0]
    week_end = day_bounds(monday + timedelta(days=6), tz)[1]
    touching = [item for item in intervals if item.overlap(week_begin, week_end) > ZERO]
    focus_count = sum(1 for item in touching if item.kind is IntervalKind.FOCUS)
    idle_count = len(touching) - focus_count

    breakdown: tuple[DayBreakdown, ...] = ()
    if touching:
        breakdown = tuple(
            DayBreakdown(day=item.day, focus_total=item.focus_total, idle_total=item.idle_total)
            for item in days
        )
    return WeekSummary(
        week_start=monday,
        focus_total=focus,
        idle_total=idle,
        interruption_count=idle_count,
        focus_sessions=focus_count,
        avg_focus_session=_average(focus, focus_count),
        avg_idle_session=_average(idle, idle_count),
        days=breakdown,
    )


def session_summary(db: Intervals, since: Optional[datetime] = None) -> SessionSummary:
    """Totals and shortest/longest sessions for intervals starting at ``since`` or later."""
    focus = [
        item.duration
        for item in _as_list(db)
        if item.kind is IntervalKind.FOCUS and (since is None or item.start >= since)
    ]
    idle = [
        item.duration
        for item in _as_list(db)
        if item.kind is IntervalKind.IDLE and (since is None or item.start >= since)
    ]
    return SessionSummary(
        focus_total=sum(focus, ZERO),
        idle_total=sum(idle, ZERO),
        focus_count=len(focus),
        idle_count=len(idle),
        max_focus=max(focus) if focus else None,
        min_focus=min(focus) if focus else None,
        max_idle=max(idle) if idle else None,
        min_idle=min(idle) if idle else None,
    )
