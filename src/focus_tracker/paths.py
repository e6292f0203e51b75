"""Helpers for locating application directories."""

from __future__ import annotations

from pathlib import Path

from platformdirs import PlatformDirs


APP_NAME = "FocusTracker"
APP_AUTHOR = "FocusTracker"


def get_data_dir() -> Path:
    """Return the base directory for persistent data."""
    dirs = PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=True)
    path = Path(dirs.user_data_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_db_path() -> Path:
    return get_data_dir() / "intervals.json"


def get_config_path() -> Path:
    return get_data_dir() / "config.json"


def get_log_path() -> Path:
    return get_data_dir() / "tracker.log"


def lock_path_for(db_path: Path) -> Path:
    """Return the sibling lock file guarding writes to ``db_path``."""
    db_path = Path(db_path)
    return db_path.with_name(db_path.name + ".lock")


def pid_path_for(db_path: Path) -> Path:
    """Return the session pid file kept next to ``db_path``."""
    return Path(db_path).with_name("tracker.pid")
