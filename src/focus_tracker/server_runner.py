"""Helpers to launch the local dashboard API."""

from __future__ import annotations

import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn

from .config import TrackerSettings
from .paths import get_db_path
from .tracker import SessionWindow
from .webapp import TrackerRunner, create_app


def run_dashboard(
    *,
    host: str = "127.0.0.1",
    port: int = 8765,
    db_path: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    window: Optional[SessionWindow] = None,
    open_browser: bool = False,
    log_level: str = "info",
) -> None:
    """Start the FastAPI dashboard with a background tracker."""
    resolved_db_path = db_path or get_db_path()
    resolved_settings = settings or TrackerSettings()
    runner = TrackerRunner(resolved_db_path, resolved_settings, window=window)
    # Fail fast on a locked session or unreadable history before binding.
    runner.start()
    app = create_app(
        db_path=resolved_db_path,
        settings=resolved_settings,
        runner=runner,
    )

    if open_browser:
        url = f"http://{host}:{port}/api/status"
        threading.Thread(
            target=_launch_browser_after_delay, args=(url,), daemon=True
        ).start()

    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def _launch_browser_after_delay(url: str) -> None:
    time.sleep(1.0)
    try:
        webbrowser.open(url)
    except Exception:
        logging.getLogger(__name__).exception("Failed to launch browser for %s", url)
