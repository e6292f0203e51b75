"""FastAPI application exposing focus statistics and tracker status as JSON."""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import TrackerSettings
from .errors import FocusTrackerError, StorageReadError, StorageWriteError
from .locking import InstanceLock
from .models import Database
from .paths import get_db_path, pid_path_for
from .sampler import IdleSampler
from .stats import daily_summary, intervals_for_day, local_now, week_start_for, weekly_summary
from .store import IntervalStore
from .tracker import SessionWindow, Tracker

logger = logging.getLogger(__name__)


class TrackerRunner:
    """Manage the tracker in a background thread."""

    def __init__(
        self,
        db_path: Path,
        settings: TrackerSettings,
        *,
        pid_path: Optional[Path] = None,
        window: Optional[SessionWindow] = None,
        sampler_factory: Optional[Callable[[], IdleSampler]] = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._settings = settings
        self._pid_path = Path(pid_path or pid_path_for(self._db_path))
        self._window = window
        self._sampler_factory = sampler_factory
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._tracker: Optional[Tracker] = None
        self._instance_lock: Optional[InstanceLock] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            instance_lock = InstanceLock(self._pid_path)
            instance_lock.acquire()
            try:
                store = self._make_store()
                store.load()
            except StorageReadError:
                instance_lock.release()
                raise
            tracker = Tracker(
                store,
                self._settings,
                window=self._window,
                sampler=self._sampler_factory() if self._sampler_factory else None,
            )
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_tracker,
                args=(tracker, stop_event, instance_lock),
                daemon=True,
            )
            self._thread = thread
            self._stop_event = stop_event
            self._tracker = tracker
            self._instance_lock = instance_lock
            thread.start()
            logger.info("Tracker background thread started.")

    def stop(self) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive() or not self._stop_event:
                return
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        if thread:
            thread.join(timeout=10)
            logger.info("Tracker background thread stopped.")

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    @property
    def tracker(self) -> Optional[Tracker]:
        return self._tracker

    def snapshot(self) -> Database:
        """Live history when tracking, otherwise whatever is on disk."""
        tracker = self._tracker
        if tracker is not None:
            return tracker.snapshot()
        store = self._make_store()
        return store.load()

    def reset(self) -> None:
        tracker = self._tracker
        if tracker is not None:
            tracker.reset()
            if tracker.last_error:
                raise StorageWriteError(self._db_path, tracker.last_error)
            return
        store = self._make_store()
        store.reset()

    def _make_store(self) -> IntervalStore:
        return IntervalStore(
            self._db_path,
            lock_timeout=self._settings.lock_timeout.total_seconds(),
            stale_after=self._settings.stale_lock_after.total_seconds(),
        )

    @staticmethod
    def _run_tracker(
        tracker: Tracker, stop_event: threading.Event, instance_lock: InstanceLock
    ) -> None:
        try:
            tracker.run_until_stopped(stop_event)
        finally:
            instance_lock.release()


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    runner: Optional[TrackerRunner] = None,
    start_tracker: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_db_path())
    resolved_settings = settings or TrackerSettings()
    runner = runner or TrackerRunner(resolved_db_path, resolved_settings)

    app = FastAPI(title="Focus Tracker", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.tracker_runner = runner

    @app.on_event("startup")
    async def _startup() -> None:
        if start_tracker:
            runner.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        runner.stop()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        active: TrackerRunner = request.app.state.tracker_runner
        payload: Dict[str, Any] = {
            "tracker_running": active.is_running(),
            "database_path": str(request.app.state.db_path),
            "sample_seconds": resolved_settings.sample_interval.total_seconds(),
            "idle_minutes": resolved_settings.idle_threshold.total_seconds() / 60.0,
        }
        tracker = active.tracker
        if tracker is not None:
            current = tracker.status()
            payload.update(
                {
                    "state": current.state.value,
                    "started_at": current.started_at.isoformat(),
                    "begin": _iso(current.begin),
                    "deadline": _iso(current.deadline),
                    "current": current.current.to_record() if current.current else None,
                    "last_save_at": _iso(current.last_save_at),
                    "last_error": current.last_error,
                }
            )
        return payload

    @app.get("/api/daily")
    def daily(
        request: Request,
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        target_day = _parse_date(date)
        db = _load(request)
        summary = daily_summary(db, target_day)
        return {
            "date": target_day.isoformat(),
            "focus_seconds": _seconds(summary.focus_total),
            "idle_seconds": _seconds(summary.idle_total),
            "interruption_count": summary.interruption_count,
            "focus_sessions": summary.focus_sessions,
            "avg_focus_seconds": _seconds(summary.avg_focus_session),
            "avg_idle_seconds": _seconds(summary.avg_idle_session),
        }

    @app.get("/api/weekly")
    def weekly(
        request: Request,
        week: Optional[str] = Query(
            default=None,
            description="Any date in the target week (YYYY-MM-DD); defaults to this week.",
        ),
    ) -> Dict[str, Any]:
        week_day = _parse_date(week) if week else week_start_for(local_now())
        db = _load(request)
        summary = weekly_summary(db, week_day)
        return {
            "week_start": summary.week_start.isoformat(),
            "focus_seconds": _seconds(summary.focus_total),
            "idle_seconds": _seconds(summary.idle_total),
            "interruption_count": summary.interruption_count,
            "focus_sessions": summary.focus_sessions,
            "avg_focus_seconds": _seconds(summary.avg_focus_session),
            "avg_idle_seconds": _seconds(summary.avg_idle_session),
            "days": [
                {
                    "date": day.day.isoformat(),
                    "focus_seconds": _seconds(day.focus_total),
                    "idle_seconds": _seconds(day.idle_total),
                }
                for day in summary.days
            ],
        }

    @app.get("/api/intervals")
    def intervals(
        request: Request,
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        target_day = _parse_date(date)
        db = _load(request)
        return {
            "date": target_day.isoformat(),
            "intervals": [
                {**item.to_record(), "duration_seconds": item.duration_seconds}
                for item in intervals_for_day(db, target_day)
            ],
        }

    @app.post("/api/reset")
    def reset(request: Request) -> Dict[str, Any]:
        try:
            request.app.state.tracker_runner.reset()
        except FocusTrackerError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"reset": True}

    return app


def _load(request: Request) -> Database:
    try:
        return request.app.state.tracker_runner.snapshot()
    except StorageReadError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _parse_date(value: Optional[str]) -> date:
    if not value:
        return local_now().date()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc


def _seconds(value: timedelta) -> float:
    return value.total_seconds()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
