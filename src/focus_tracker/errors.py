"""Exception types raised by the tracker core."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class FocusTrackerError(Exception):
    """Base class for all tracker errors."""


class ConfigError(FocusTrackerError):
    """Invalid configuration value or unreadable configuration file."""


class StorageReadError(FocusTrackerError):
    """The interval database exists but could not be read or parsed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot read interval database {path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class StorageWriteError(FocusTrackerError):
    """A save attempt failed; the in-memory history is still authoritative."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot write interval database {path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class SamplerError(FocusTrackerError):
    """The idle-time source could not produce a reading."""


class AlreadyRunningError(FocusTrackerError):
    """Another tracking session already holds the instance lock."""

    def __init__(self, pid_path: Path, pid: Optional[int]) -> None:
        owner = f"PID {pid}" if pid is not None else "another process"
        super().__init__(
            f"Another tracking session ({owner}) is already running; "
            f"see {pid_path}. Stop it before starting a new one."
        )
        self.pid_path = Path(pid_path)
        self.pid = pid
