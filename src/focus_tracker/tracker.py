"""Focus/idle state machine fed by idle-time samples."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from typing import Callable, Optional

from .config import TrackerSettings, parse_duration, parse_time_of_day
from .errors import StorageWriteError
from .models import Database, Interval, IntervalKind, utc_now
from .sampler import IdleSampler, SafeSampler, default_sampler
from .store import IntervalStore

logger = logging.getLogger(__name__)


class TrackerState(str, enum.Enum):
    WAITING = "waiting"
    FOCUS = "focus"
    IDLE = "idle"
    ENDED = "ended"


_KIND_FOR_STATE = {
    TrackerState.FOCUS: IntervalKind.FOCUS,
    TrackerState.IDLE: IntervalKind.IDLE,
}


@dataclass(frozen=True, slots=True)
class Sample:
    now: datetime
    idle_seconds: float


@dataclass(frozen=True, slots=True)
class ResolvedWindow:
    """Absolute bounds of one session; ``None`` means unbounded."""

    begin: Optional[datetime] = None
    deadline: Optional[datetime] = None

    def begin_reached(self, now: datetime) -> bool:
        return self.begin is None or now >= self.begin

    def deadline_reached(self, now: datetime) -> bool:
        return self.deadline is not None and now >= self.deadline


@dataclass(frozen=True, slots=True)
class SessionWindow:
    """Optional time-of-day/duration limits for a tracking session.

    ``duration`` wins over ``begin_at``/``end_at``: with a duration the
    session starts right away and ends that long after it started.
    """

    begin_at: Optional[time] = None
    end_at: Optional[time] = None
    duration: Optional[timedelta] = None

    @classmethod
    def from_strings(
        cls,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        timeout: Optional[str] = None,
    ) -> "SessionWindow":
        return cls(
            begin_at=parse_time_of_day(start_time) if start_time else None,
            end_at=parse_time_of_day(end_time) if end_time else None,
            duration=parse_duration(timeout) if timeout else None,
        )

    def resolve(self, started_at: datetime, tz: Optional[tzinfo] = None) -> ResolvedWindow:
        if self.duration is not None:
            return ResolvedWindow(begin=None, deadline=started_at + self.duration)

        local_start = started_at.astimezone(tz)
        local_tz = local_start.tzinfo
        today = local_start.date()
        begin = (
            datetime.combine(today, self.begin_at, tzinfo=local_tz)
            if self.begin_at is not None
            else None
        )
        deadline = None
        if self.end_at is not None:
            anchor = begin or local_start
            deadline = datetime.combine(anchor.date(), self.end_at, tzinfo=local_tz)
            if deadline <= anchor:
                deadline += timedelta(days=1)
            if begin is not None and deadline <= local_start:
                # Today's window is already over; track tomorrow's.
                begin += timedelta(days=1)
                deadline += timedelta(days=1)
        return ResolvedWindow(
            begin=begin.astimezone(started_at.tzinfo) if begin else None,
            deadline=deadline.astimezone(started_at.tzinfo) if deadline else None,
        )


def transition(
    state: TrackerState,
    idle_seconds: float,
    threshold_seconds: float,
    *,
    begin_reached: bool = True,
    deadline_reached: bool = False,
) -> TrackerState:
    """Return the state that follows ``state`` for one sample."""
    if state is TrackerState.ENDED or deadline_reached:
        return TrackerState.ENDED
    if state is TrackerState.WAITING and not begin_reached:
        return TrackerState.WAITING
    if idle_seconds >= threshold_seconds:
        return TrackerState.IDLE
    return TrackerState.FOCUS


@dataclass(frozen=True, slots=True)
class TrackerStatus:
    state: TrackerState
    threshold_seconds: float
    started_at: datetime
    begin: Optional[datetime]
    deadline: Optional[datetime]
    current: Optional[Interval]
    last_save_at: Optional[datetime]
    last_error: Optional[str]


class Tracker:
    """Turns idle samples into focus/idle intervals held by an ``IntervalStore``.

    The tracker owns the single open interval. Closed intervals are handed
    to the store, which is saved on every transition and at least every
    ``settings.save_interval`` while ticking.
    """

    def __init__(
        self,
        store: IntervalStore,
        settings: Optional[TrackerSettings] = None,
        *,
        window: Optional[SessionWindow] = None,
        sampler: Optional[IdleSampler] = None,
        clock: Callable[[], datetime] = utc_now,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self.store = store
        self.settings = settings or TrackerSettings()
        self.window = window or SessionWindow()
        self.sampler = SafeSampler(sampler or default_sampler())
        self.clock = clock
        self.started_at: datetime = clock()
        self.bounds = self.window.resolve(self.started_at, tz)
        self.state = TrackerState.WAITING
        self.last_save_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self._open: Optional[Interval] = None
        self._last_input_at: Optional[datetime] = None
        self._last_save_attempt: datetime = self.started_at
        self._lock = threading.Lock()

    @property
    def threshold_seconds(self) -> float:
        return self.settings.threshold_seconds

    def tick(
        self, now: Optional[datetime] = None, idle_seconds: Optional[float] = None
    ) -> Optional[Interval]:
        """Apply one sample; return the interval it closed, if any."""
        with self._lock:
            now = now or self.clock()
            if idle_seconds is None:
                idle_seconds = self.sampler()
            return self._apply(Sample(now=now, idle_seconds=max(float(idle_seconds), 0.0)))

    def stop(self, now: Optional[datetime] = None) -> Optional[Interval]:
        """End the session, closing the open interval at ``now``."""
        with self._lock:
            now = now or self.clock()
            if self.state is TrackerState.ENDED:
                return None
            closed = self._close_open(now)
            self.state = TrackerState.ENDED
            logger.info("Tracking session stopped.")
            return closed

    def shutdown(self, now: Optional[datetime] = None) -> bool:
        """Stop and attempt one final save within the grace period."""
        now = now or self.clock()
        self.stop(now)
        saved = threading.Event()

        def _final_save() -> None:
            with self._lock:
                if self._save(now):
                    saved.set()

        worker = threading.Thread(target=_final_save, name="final-save", daemon=True)
        worker.start()
        worker.join(self.settings.shutdown_grace.total_seconds())
        if worker.is_alive():
            logger.warning(
                "Final save did not finish within %s; last periodic save is the recovery point.",
                self.settings.shutdown_grace,
            )
        return saved.is_set()

    def reset(self, now: Optional[datetime] = None) -> None:
        """Discard all recorded history, keeping the current state running."""
        with self._lock:
            now = now or self.clock()
            if self._open is not None:
                self._open = Interval(start=now, end=now, kind=self._open.kind)
                self._last_input_at = now
            try:
                self.store.reset()
            except StorageWriteError as exc:
                self._record_save_failure(exc)
            else:
                self.last_save_at = now
                self.last_error = None
            self._last_save_attempt = now

    def snapshot(self) -> Database:
        """Closed history plus the open interval, safe to hand to readers."""
        with self._lock:
            return self._snapshot_locked()

    def status(self) -> TrackerStatus:
        with self._lock:
            return TrackerStatus(
                state=self.state,
                threshold_seconds=self.threshold_seconds,
                started_at=self.started_at,
                begin=self.bounds.begin,
                deadline=self.bounds.deadline,
                current=self._open.copy() if self._open else None,
                last_save_at=self.last_save_at,
                last_error=self.last_error or self.sampler.last_error,
            )

    def run_forever(self) -> None:
        stop_event = threading.Event()
        try:
            self._run_loop(stop_event)
        except KeyboardInterrupt:
            logger.info("Tracker interrupted; saving session.")
        finally:
            self.shutdown()

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Run the sampling loop until the provided event is set."""
        try:
            self._run_loop(stop_event)
        finally:
            self.shutdown()

    def _run_loop(self, stop_event: threading.Event) -> None:
        logger.info("Starting tracker; writing to %s", self.store.path)
        if self.bounds.begin and self.bounds.begin > self.started_at:
            logger.info("Waiting until %s to start tracking.", self.bounds.begin)
        interval = self.settings.sample_interval.total_seconds()
        while not stop_event.is_set():
            self.tick()
            if self.state is TrackerState.ENDED:
                logger.info("Session window finished.")
                break
            # Sleep in an interruptible manner.
            stop_event.wait(interval)

    def _apply(self, sample: Sample) -> Optional[Interval]:
        now, idle = sample.now, sample.idle_seconds
        previous = self.state
        current = transition(
            previous,
            idle,
            self.threshold_seconds,
            begin_reached=self.bounds.begin_reached(now),
            deadline_reached=self.bounds.deadline_reached(now),
        )

        resumed = self._gap_exceeded(previous, now)
        gap_closed: Optional[Interval] = None
        if resumed and self._open is not None:
            logger.info(
                "No samples since %s; splitting the interval at the suspend gap.",
                self._open.end,
            )
            gap_closed = self._close_open(self._open.end)

        if current is TrackerState.ENDED:
            if previous is TrackerState.ENDED:
                return None
            closed = self._close_open(now)
            self.state = current
            logger.info("Session window reached its end at %s.", now)
            self._save(now)
            return closed or gap_closed

        if previous is TrackerState.WAITING or resumed:
            if current is not TrackerState.WAITING:
                self._open = Interval(start=now, end=now, kind=_KIND_FOR_STATE[current])
                self._last_input_at = now - timedelta(seconds=idle)
                self.state = current
                logger.info(
                    "Tracking %s in %s state.", "resumed" if resumed else "started", current.value
                )
            if resumed:
                self._save(now)
            return gap_closed

        closed: Optional[Interval] = None
        if previous is TrackerState.FOCUS and current is TrackerState.IDLE:
            closed = self._begin_idle(now, idle)
        elif previous is TrackerState.IDLE and current is TrackerState.FOCUS:
            closed = self._close_open(now)
            self._open = Interval(start=now, end=now, kind=IntervalKind.FOCUS)
            self._last_input_at = now - timedelta(seconds=idle)
        elif self._open is None:
            self._open = Interval(start=now, end=now, kind=_KIND_FOR_STATE[current])
        else:
            self._open.end = now
            if current is TrackerState.FOCUS:
                self._note_input(now, idle)

        if current is not previous:
            self.state = current
            logger.debug("Transition %s -> %s at %s", previous.value, current.value, now)
            self._save(now)
        elif now - self._last_save_attempt >= self.settings.save_interval:
            self._save(now)
        return closed

    def _gap_exceeded(self, previous: TrackerState, now: datetime) -> bool:
        if previous not in _KIND_FOR_STATE or self._open is None:
            return False
        return now - self._open.end > self.settings.sleep_gap

    def _begin_idle(self, now: datetime, idle: float) -> Optional[Interval]:
        # Idle time counts from when input stopped, not from when it was
        # detected. A reading that contradicts input seen by an earlier
        # tick is attributed from this tick instead.
        focus = self._open
        if focus is None:
            self._open = Interval(start=now, end=now, kind=IntervalKind.IDLE)
            return None
        ceased = now - timedelta(seconds=idle)
        if self._last_input_at is not None and ceased < self._last_input_at:
            ceased = now
        ceased = min(ceased, now)
        if ceased <= focus.start:
            focus.kind = IntervalKind.IDLE
            focus.end = now
            return None
        closed = self._close_open(ceased)
        self._open = Interval(start=ceased, end=now, kind=IntervalKind.IDLE)
        return closed

    def _note_input(self, now: datetime, idle: float) -> None:
        seen = now - timedelta(seconds=idle)
        if self._last_input_at is None or seen > self._last_input_at:
            self._last_input_at = seen

    def _close_open(self, end: datetime) -> Optional[Interval]:
        interval, self._open = self._open, None
        if interval is None:
            return None
        interval.end = max(end, interval.start)
        if interval.end <= interval.start:
            return None
        self.store.append(interval)
        return interval.copy()

    def _snapshot_locked(self) -> Database:
        intervals = [interval.copy() for interval in self.store.database.intervals]
        if self._open is not None and self._open.end > self._open.start:
            intervals.append(self._open.copy())
        return Database(intervals)

    def _save(self, now: datetime) -> bool:
        self._last_save_attempt = now
        try:
            self.store.save(self._snapshot_locked())
        except StorageWriteError as exc:
            self._record_save_failure(exc)
            return False
        self.last_save_at = now
        self.last_error = None
        return True

    def _record_save_failure(self, exc: StorageWriteError) -> None:
        self.last_error = str(exc)
        logger.warning("Save failed; will retry on the next cadence: %s", exc)
