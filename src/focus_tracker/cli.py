"""Command-line interface for the focus tracker."""

from __future__ import annotations

import logging
import signal
import threading
from datetime import datetime
from pathlib import Path
from typing import NoReturn, Optional

import typer

from .config import TrackerSettings, load_config, validate_threshold_minutes
from .errors import AlreadyRunningError, ConfigError, FocusTrackerError
from .locking import InstanceLock
from .paths import get_config_path, get_db_path, get_log_path, pid_path_for
from .reporting import SummaryPrinter
from .stats import session_summary
from .store import IntervalStore
from .tracker import SessionWindow, Tracker

logger = logging.getLogger(__name__)

app = typer.Typer(help="Local-first focus and idle time tracker.")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def _fail(exc: Exception) -> NoReturn:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _open_store(db_path: Optional[Path], settings: TrackerSettings) -> IntervalStore:
    return IntervalStore(
        db_path or get_db_path(),
        lock_timeout=settings.lock_timeout.total_seconds(),
        stale_after=settings.stale_lock_after.total_seconds(),
    )


def _resolve(
    config_path: Optional[Path],
    threshold: Optional[int],
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    timeout: Optional[str] = None,
) -> tuple[TrackerSettings, SessionWindow]:
    config = load_config(config_path or get_config_path())
    if threshold is not None:
        validate_threshold_minutes(threshold)
    settings = TrackerSettings.from_config(config, threshold_mins=threshold)
    window = SessionWindow.from_strings(
        start_time=start_time or config.start_time,
        end_time=end_time or config.end_time,
        timeout=timeout or config.timeout,
    )
    return settings, window


_DB_OPTION = typer.Option(
    None, "--db", path_type=Path, help="Location of the interval database (JSON)."
)
_CONFIG_OPTION = typer.Option(
    None, "--config", path_type=Path, help="Location of config.json."
)


@app.command()
def start(
    threshold: Optional[int] = typer.Option(
        None,
        "--threshold",
        "-t",
        help="Minutes of inactivity before time counts as idle (default from config, 5).",
    ),
    start_time: Optional[str] = typer.Option(None, "--start-time", help="Start tracking at HH:MM."),
    end_time: Optional[str] = typer.Option(None, "--end-time", help="Stop tracking at HH:MM."),
    timeout: Optional[str] = typer.Option(
        None, "--timeout", help="Stop after a duration such as 8h or 1h30m."
    ),
    db_path: Optional[Path] = _DB_OPTION,
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Track focus and idle time until interrupted or the session ends."""
    try:
        settings, window = _resolve(config_path, threshold, start_time, end_time, timeout)
        store = _open_store(db_path, settings)
        instance_lock = InstanceLock(pid_path_for(store.path))
        instance_lock.acquire()
    except FocusTrackerError as exc:
        _fail(exc)

    file_handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)

    try:
        try:
            store.load()
        except FocusTrackerError as exc:
            _fail(exc)
        tracker = Tracker(store, settings, window=window)
        stop_event = threading.Event()
        _install_signal_handlers(stop_event)
        typer.echo(
            f"Tracking with a {int(settings.threshold_seconds // 60)} minute idle threshold; "
            "press Ctrl+C to stop."
        )
        tracker.run_until_stopped(stop_event)
        typer.echo("\nSession ended.")
        snapshot = tracker.snapshot()
        printer = SummaryPrinter(snapshot)
        printer.print_session(session_summary(snapshot, since=tracker.started_at))
        typer.echo()
        printer.print_report()
    finally:
        instance_lock.release()
        logging.getLogger().removeHandler(file_handler)
        file_handler.close()


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum: int, _frame: object) -> None:
        logger.info("Received signal %s; stopping.", signum)
        stop_event.set()

    for name in ("SIGINT", "SIGTERM"):
        sig = getattr(signal, name, None)
        if sig is not None:
            signal.signal(sig, _handle)


@app.command()
def report(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Report the week containing this date (YYYY-MM-DD). Defaults to today.",
    ),
    db_path: Optional[Path] = _DB_OPTION,
) -> None:
    """Print daily and weekly focus summaries."""
    try:
        target = datetime.strptime(date, "%Y-%m-%d").date() if date else None
    except ValueError:
        _fail(ConfigError(f"Invalid date {date!r}; expected YYYY-MM-DD."))
    try:
        db = _open_store(db_path, TrackerSettings()).load()
    except FocusTrackerError as exc:
        _fail(exc)
    SummaryPrinter(db).print_report(target)


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    db_path: Optional[Path] = _DB_OPTION,
) -> None:
    """Delete all recorded history."""
    if not yes:
        typer.confirm("Delete all recorded focus history?", abort=True)
    store = _open_store(db_path, TrackerSettings())
    try:
        # A running session would write its history straight back.
        with InstanceLock(pid_path_for(store.path)):
            store.load()
            store.reset()
    except AlreadyRunningError as exc:
        typer.echo("Use the dashboard reset (POST /api/reset) while a session is running.", err=True)
        _fail(exc)
    except FocusTrackerError as exc:
        _fail(exc)
    typer.echo("History cleared.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the dashboard."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the dashboard."
    ),
    threshold: Optional[int] = typer.Option(
        None, "--threshold", "-t", help="Minutes of inactivity before time counts as idle."
    ),
    db_path: Optional[Path] = _DB_OPTION,
    config_path: Optional[Path] = _CONFIG_OPTION,
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the status endpoint in your default browser.",
    ),
) -> None:
    """Serve the JSON dashboard API with a background tracker."""
    from .server_runner import run_dashboard

    try:
        settings, window = _resolve(config_path, threshold)
        run_dashboard(
            host=host,
            port=port,
            db_path=db_path or get_db_path(),
            settings=settings,
            window=window,
            open_browser=open_browser,
        )
    except FocusTrackerError as exc:
        _fail(exc)
