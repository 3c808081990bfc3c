"""Commit-time lock serialising writes to the shared working tree.

Every request has its own committer, but all of them write into the same
working tree and history.  ``CommitLock`` is an exclusive ``flock`` on a
lock file; each acquisition opens its own file description, so the lock
excludes other threads in this process as well as other processes.

Acquisition polls a non-blocking ``flock`` until ``timeout`` and then
raises ``LockContentionError`` instead of waiting forever.
"""

from __future__ import annotations

import fcntl
import logging
import time
from pathlib import Path
from types import TracebackType
from typing import IO

from gitpress.errors import LockContentionError

logger = logging.getLogger(__name__)


class CommitLock:
    """Exclusive, bounded-wait lock around one commit.

    Args:
        lock_path: Lock file path (created if missing).
        timeout: Seconds to wait before giving up.
        poll_interval: Seconds between acquisition attempts.
    """

    def __init__(
        self,
        lock_path: Path,
        timeout: float = 10.0,
        poll_interval: float = 0.05,
    ) -> None:
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        """Take the lock or raise ``LockContentionError`` after ``timeout``."""
        if self._handle is not None:
            raise RuntimeError(f"Lock already held: {self.lock_path}")

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "a", encoding="utf-8")
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.close()
                    raise LockContentionError(
                        f"Could not acquire commit lock {self.lock_path} "
                        f"within {self.timeout:.1f}s"
                    ) from None
                time.sleep(self.poll_interval)
            except OSError:
                handle.close()
                raise
        self._handle = handle
        logger.debug("Acquired commit lock %s", self.lock_path)

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        logger.debug("Released commit lock %s", self.lock_path)

    def __enter__(self) -> CommitLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class LockFactory:
    """Create a fresh ``CommitLock`` per critical section.

    Instances are shared by the engine; each committer asks for its own
    lock object so concurrent requests never share a file handle.
    """

    def __init__(
        self, lock_path: Path, timeout: float, poll_interval: float
    ) -> None:
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self.poll_interval = poll_interval

    def __call__(self) -> CommitLock:
        return CommitLock(self.lock_path, self.timeout, self.poll_interval)
