"""JSON file persistence for recorded intervals."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, Optional

from .errors import StorageReadError, StorageWriteError
from .locking import LockFile
from .models import RETENTION, Database, Interval, utc_now
from .paths import lock_path_for

logger = logging.getLogger(__name__)


def prune_intervals(
    intervals: Iterable[Interval],
    now: datetime,
    retention: timedelta = RETENTION,
) -> list[Interval]:
    """Drop every interval that started before the retention horizon."""
    cutoff = now - retention
    return [interval for interval in intervals if interval.start >= cutoff]


def parse_database(path: Path, payload: object) -> Database:
    """Validate decoded JSON and turn it into a sorted ``Database``."""
    if isinstance(payload, dict) and "intervals" in payload:
        payload = payload["intervals"]
    if not isinstance(payload, list):
        raise StorageReadError(path, "expected a JSON array of interval records")

    intervals: list[Interval] = []
    for index, record in enumerate(payload):
        if not isinstance(record, dict):
            raise StorageReadError(path, f"record {index} is not an object")
        try:
            interval = Interval.from_record(record)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageReadError(path, f"record {index} is invalid: {exc!r}") from exc
        if interval.end < interval.start:
            raise StorageReadError(path, f"record {index} ends before it starts")
        if interval.end == interval.start:
            logger.debug("Dropping zero-length record %d from %s", index, path)
            continue
        intervals.append(interval)
    return Database.from_intervals(intervals)


class IntervalStore:
    """Owns the interval history and its on-disk representation."""

    def __init__(
        self,
        path: Path,
        *,
        lock_timeout: float = 2.0,
        stale_after: float = 10.0,
        retention: timedelta = RETENTION,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.path = Path(path)
        self.lock_timeout = lock_timeout
        self.retention = retention
        self.clock = clock
        self.database = Database()
        self._lock = LockFile(lock_path_for(self.path), stale_after=stale_after)

    @property
    def lock_path(self) -> Path:
        return self._lock.path

    def load(self) -> Database:
        """Read the durable file, replacing the in-memory history.

        A missing file is an empty history. Anything unreadable raises
        ``StorageReadError`` and leaves both the file and memory untouched.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No interval database at %s; starting empty.", self.path)
            self.database = Database()
            return self.database.copy()
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageReadError(self.path, str(exc)) from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageReadError(self.path, f"malformed JSON: {exc}") from exc

        self.database = parse_database(self.path, payload)
        removed = self.prune()
        logger.info(
            "Loaded %d intervals from %s (%d pruned).",
            len(self.database),
            self.path,
            removed,
        )
        return self.database.copy()

    def append(self, interval: Interval) -> None:
        if interval.end <= interval.start:
            return
        self.database.intervals.append(interval.copy())

    def prune(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        before = len(self.database)
        self.database = Database(
            prune_intervals(self.database.intervals, now, self.retention)
        )
        return before - len(self.database)

    def save(self, db: Optional[Database] = None) -> None:
        """Atomically replace the durable file with ``db`` (default: history).

        Raises ``StorageWriteError`` when the write lock cannot be taken in
        time or the filesystem refuses the write. The durable file is either
        the previous version or the new one, never a partial write.
        """
        now = self.clock()
        self.prune(now)
        if db is None:
            db = self.database
        records = Database(
            [
                interval
                for interval in prune_intervals(db.intervals, now, self.retention)
                if interval.end > interval.start
            ]
        ).sorted().to_records()
        data = json.dumps(records, indent=2)

        try:
            acquired = self._lock.acquire(self.lock_timeout)
        except OSError as exc:
            raise StorageWriteError(self.path, f"lock failed: {exc}") from exc
        if not acquired:
            raise StorageWriteError(
                self.path,
                f"lock {self.lock_path} held by PID {self._lock.owner_pid()}",
            )
        try:
            self._write_atomic(data)
        finally:
            self._lock.release()
        logger.debug("Saved %d intervals to %s", len(records), self.path)

    def reset(self) -> None:
        """Forget all history and persist the empty database immediately."""
        self.database = Database()
        self.save()
        logger.info("Interval history reset.")

    def _write_atomic(self, data: str) -> None:
        tmp_name: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=self.path.name + ".",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise StorageWriteError(self.path, str(exc)) from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("Could not remove temporary file %s", tmp_name)
