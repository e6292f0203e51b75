"""Configuration models and helpers for the focus tracker."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import time, timedelta
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator

from .errors import ConfigError


DEFAULT_THRESHOLD_MINS = 5

_DURATION_PATTERN = re.compile(
    r"^\s*(?:(?P<hours>\d+)\s*h)?\s*(?:(?P<minutes>\d+)\s*m)?\s*(?:(?P<seconds>\d+)\s*s)?\s*$",
    re.IGNORECASE,
)


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` (24h clock)."""
    try:
        hours, minutes = value.strip().split(":")
        return time(hour=int(hours), minute=int(minutes))
    except (AttributeError, ValueError) as exc:
        raise ConfigError(f"Invalid time of day {value!r}; expected HH:MM.") from exc


def parse_duration(value: str) -> timedelta:
    """Parse spans such as ``8h``, ``1h30m``, ``45m`` or ``90s``.

    A bare number is read as minutes.
    """
    text = value.strip() if isinstance(value, str) else ""
    if text.isdigit():
        span = timedelta(minutes=int(text))
    else:
        match = _DURATION_PATTERN.match(text)
        if not text or not match or not any(match.groupdict().values()):
            raise ConfigError(f"Invalid duration {value!r}; use e.g. 8h, 1h30m, 45m.")
        parts = {name: int(amount) for name, amount in match.groupdict().items() if amount}
        span = timedelta(**parts)
    if span <= timedelta(0):
        raise ConfigError(f"Duration {value!r} must be positive.")
    return span


def validate_threshold_minutes(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(
            f"Idle threshold must be a positive whole number of minutes, got {value!r}."
        )
    return value


class ConfigFile(BaseModel):
    """Shape of ``config.json``."""

    default_threshold_mins: StrictInt = Field(default=DEFAULT_THRESHOLD_MINS, gt=0)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    timeout: Optional[str] = None
    sample_interval_secs: Optional[float] = Field(default=None, gt=0)
    save_interval_secs: Optional[float] = Field(default=None, gt=0)
    sleep_gap_secs: Optional[float] = Field(default=None, gt=0)

    model_config = ConfigDict(extra="ignore")

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time_of_day(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                parse_time_of_day(value)
            except ConfigError as exc:
                raise ValueError(str(exc)) from exc
        return value

    @field_validator("timeout")
    @classmethod
    def _check_timeout(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                parse_duration(value)
            except ConfigError as exc:
                raise ValueError(str(exc)) from exc
        return value


def load_config(path: Path) -> ConfigFile:
    """Read ``config.json``; a missing file yields the defaults."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ConfigFile()
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object.")

    try:
        return ConfigFile.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigError(f"Invalid config file {path}: {problems}") from exc


@dataclass(slots=True)
class TrackerSettings:
    """Runtime configuration for the tracker and its store."""

    sample_interval: timedelta = timedelta(seconds=1)
    idle_threshold: timedelta = timedelta(minutes=DEFAULT_THRESHOLD_MINS)
    save_interval: timedelta = timedelta(seconds=30)
    lock_timeout: timedelta = timedelta(seconds=2)
    stale_lock_after: timedelta = timedelta(seconds=10)
    shutdown_grace: timedelta = timedelta(seconds=5)
    sleep_gap: timedelta = timedelta(minutes=2)

    def __post_init__(self) -> None:
        if self.idle_threshold <= timedelta(0):
            raise ConfigError("Idle threshold must be positive.")
        if self.sample_interval <= timedelta(0) or self.save_interval <= timedelta(0):
            raise ConfigError("Sample and save intervals must be positive.")
        if self.sleep_gap <= self.sample_interval:
            raise ConfigError(
                f"Sleep gap must exceed the sample interval ({self.sleep_gap} <= {self.sample_interval})."
            )
        if self.stale_lock_after > self.save_interval:
            raise ConfigError(
                "Stale lock age must not exceed the save interval "
                f"({self.stale_lock_after} > {self.save_interval})."
            )

    @property
    def threshold_seconds(self) -> float:
        return self.idle_threshold.total_seconds()

    @classmethod
    def from_minutes(
        cls,
        threshold_mins: int = DEFAULT_THRESHOLD_MINS,
        sample_seconds: Optional[float] = None,
        save_seconds: Optional[float] = None,
        sleep_gap_seconds: Optional[float] = None,
    ) -> "TrackerSettings":
        validate_threshold_minutes(threshold_mins)
        defaults = cls()
        return cls(
            sample_interval=(
                timedelta(seconds=sample_seconds)
                if sample_seconds is not None
                else defaults.sample_interval
            ),
            idle_threshold=timedelta(minutes=threshold_mins),
            save_interval=(
                timedelta(seconds=save_seconds)
                if save_seconds is not None
                else defaults.save_interval
            ),
            stale_lock_after=min(
                defaults.stale_lock_after,
                timedelta(seconds=save_seconds) if save_seconds else defaults.save_interval,
            ),
            sleep_gap=(
                timedelta(seconds=sleep_gap_seconds)
                if sleep_gap_seconds is not None
                else defaults.sleep_gap
            ),
        )

    @classmethod
    def from_config(
        cls,
        config: ConfigFile,
        threshold_mins: Optional[int] = None,
        sample_seconds: Optional[float] = None,
    ) -> "TrackerSettings":
        """Merge command-line overrides over values from ``config.json``."""
        return cls.from_minutes(
            threshold_mins=(
                threshold_mins if threshold_mins is not None else config.default_threshold_mins
            ),
            sample_seconds=(
                sample_seconds if sample_seconds is not None else config.sample_interval_secs
            ),
            save_seconds=config.save_interval_secs,
            sleep_gap_seconds=config.sleep_gap_secs,
        )
