"""Advisory lock files shared between tracker processes.

Two locks are used:

* ``LockFile`` guards a single database write. It is held for the
  duration of one save and is considered stale once it is older than
  ``stale_after`` seconds or once the process that created it is gone.
* ``InstanceLock`` marks the single active tracking session. It lives for
  the whole session and is only stale when its owner process has exited.

Both rely on ``O_CREAT | O_EXCL`` so creation is atomic on local
filesystems. They are advisory: every writer must go through them.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional

import psutil

from .errors import AlreadyRunningError

logger = logging.getLogger(__name__)

# A lock file with no pid yet is being written by its creator.
_EMPTY_LOCK_GRACE = 1.0


def read_lock_pid(path: Path) -> Optional[int]:
    try:
        content = Path(path).read_text(encoding="ascii").strip()
        return int(content)
    except (FileNotFoundError, ValueError, UnicodeDecodeError):
        return None


def pid_alive(pid: int) -> bool:
    if pid == os.getpid():
        return True
    try:
        return psutil.pid_exists(pid)
    except psutil.Error:
        return True


class LockFile:
    """Sibling lock file created exclusively and removed on release."""

    def __init__(
        self,
        path: Path,
        *,
        stale_after: Optional[float] = None,
        poll_interval: float = 0.05,
    ) -> None:
        self.path = Path(path)
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self, timeout: float = 0.0) -> bool:
        """Try to create the lock file, waiting at most ``timeout`` seconds."""
        if self._held:
            return True
        deadline = time.monotonic() + max(timeout, 0.0)
        while True:
            if self._try_create():
                self._held = True
                logger.debug("Acquired lock %s", self.path)
                return True
            stale = self._stale_identity()
            if stale is not None:
                self._break_stale(stale)
                continue
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.poll_interval)

    def release(self) -> None:
        """Remove the lock file if this object created it."""
        if not self._held:
            return
        self._held = False
        try:
            if read_lock_pid(self.path) in (os.getpid(), None):
                self.path.unlink()
                logger.debug("Released lock %s", self.path)
        except FileNotFoundError:
            logger.warning("Lock %s vanished while held.", self.path)

    def owner_pid(self) -> Optional[int]:
        return read_lock_pid(self.path)

    def is_stale(self) -> bool:
        return self._stale_identity() is not None

    def _stale_identity(self) -> Optional[tuple[int, int]]:
        """Inode and mtime of the lock file if it is stale, else ``None``."""
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        age = time.time() - stat.st_mtime
        identity = (stat.st_ino, stat.st_mtime_ns)
        if self.stale_after is not None and age > self.stale_after:
            return identity
        pid = read_lock_pid(self.path)
        if pid is None:
            return identity if age > _EMPTY_LOCK_GRACE else None
        return None if pid_alive(pid) else identity

    def _try_create(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="ascii") as handle:
            handle.write(str(os.getpid()))
        return True

    def _break_stale(self, identity: tuple[int, int]) -> None:
        """Remove the lock file judged stale, but only if it is still that file.

        The file is first moved aside under a unique name so that two
        waiters cannot both remove it; a lock re-created in the meantime is
        put back untouched.
        """
        owner = self.owner_pid()
        aside = self.path.with_name(f"{self.path.name}.{os.getpid()}.{uuid.uuid4().hex}.stale")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return
        try:
            stat = aside.stat()
            if (stat.st_ino, stat.st_mtime_ns) != identity:
                try:
                    os.link(aside, self.path)
                except FileExistsError:
                    logger.warning("Lock %s was replaced while it was being checked.", self.path)
                return
            logger.info("Removing stale lock %s (owner PID %s)", self.path, owner)
        finally:
            aside.unlink(missing_ok=True)

    def __enter__(self) -> "LockFile":
        if not self.acquire():
            raise TimeoutError(f"Could not acquire {self.path}")
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class InstanceLock(LockFile):
    """PID file that rejects a second concurrent tracking session."""

    def __init__(self, path: Path) -> None:
        super().__init__(path, stale_after=None)

    def acquire(self, timeout: float = 0.0) -> bool:
        if super().acquire(timeout):
            return True
        raise AlreadyRunningError(self.path, self.owner_pid())

    def __enter__(self) -> "InstanceLock":
        self.acquire()
        return self
