"""Idle-time sources: seconds elapsed since the last user input event."""

from __future__ import annotations

import ctypes
import logging
import math
import sys
from typing import Callable, Iterable, Iterator

from .errors import SamplerError

logger = logging.getLogger(__name__)

IdleSampler = Callable[[], float]


class WindowsIdleSampler:
    """Reads the last input tick using Win32 APIs."""

    class LASTINPUTINFO(ctypes.Structure):
        _fields_ = [("cbSize", ctypes.c_uint), ("dwTime", ctypes.c_uint32)]

    def __init__(self) -> None:
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        self._kernel32.GetTickCount64.restype = ctypes.c_ulonglong

    def __call__(self) -> float:
        last_input = self.LASTINPUTINFO()
        last_input.cbSize = ctypes.sizeof(last_input)
        if not self._user32.GetLastInputInfo(ctypes.byref(last_input)):
            raise SamplerError(f"GetLastInputInfo failed: {ctypes.WinError()}")
        # dwTime wraps every ~49.7 days; compare in 32-bit space.
        elapsed_ms = (self._kernel32.GetTickCount64() - last_input.dwTime) & 0xFFFFFFFF
        return elapsed_ms / 1000.0


class MacIdleSampler:
    """Asks CoreGraphics for the seconds since any input event."""

    _COMBINED_SESSION_STATE = 0
    _ANY_INPUT_EVENT = 0xFFFFFFFF

    def __init__(self) -> None:
        try:
            graphics = ctypes.CDLL(
                "/System/Library/Frameworks/CoreGraphics.framework/CoreGraphics"
            )
        except OSError as exc:
            raise SamplerError(f"CoreGraphics unavailable: {exc}") from exc
        self._seconds_since = graphics.CGEventSourceSecondsSinceLastEventType
        self._seconds_since.argtypes = [ctypes.c_int32, ctypes.c_uint32]
        self._seconds_since.restype = ctypes.c_double

    def __call__(self) -> float:
        return float(
            self._seconds_since(self._COMBINED_SESSION_STATE, self._ANY_INPUT_EVENT)
        )


class NullSampler:
    """Reports constant activity; used where no input source exists."""

    def __call__(self) -> float:
        return 0.0


class SequenceSampler:
    """Replays a fixed sequence of readings, then repeats the last one."""

    def __init__(self, readings: Iterable[float]) -> None:
        self._readings: Iterator[float] = iter(readings)
        self._last = 0.0

    def __call__(self) -> float:
        try:
            self._last = float(next(self._readings))
        except StopIteration:
            pass
        return self._last


class SafeSampler:
    """Wraps a sampler so a failed reading counts as "not idle"."""

    def __init__(self, sampler: IdleSampler) -> None:
        self._sampler = sampler
        self.last_error: str | None = None

    def __call__(self) -> float:
        try:
            value = float(self._sampler())
        except (SamplerError, OSError, ValueError, TypeError) as exc:
            self._record_failure(str(exc))
            return 0.0
        if not math.isfinite(value) or value < 0:
            self._record_failure(f"implausible idle reading {value!r}")
            return 0.0
        self.last_error = None
        return value

    def _record_failure(self, reason: str) -> None:
        if self.last_error != reason:
            logger.warning("Idle sampler failed (%s); assuming not idle.", reason)
        self.last_error = reason


def default_sampler() -> IdleSampler:
    """Pick the idle source for the running platform."""
    try:
        if sys.platform == "win32":
            return WindowsIdleSampler()
        if sys.platform == "darwin":
            return MacIdleSampler()
    except SamplerError:
        logger.exception("Failed to initialise the idle sampler; assuming always active.")
        return NullSampler()
    logger.warning("No idle source for %s; time will be counted as focus.", sys.platform)
    return NullSampler()
