"""Exclusive, re-entrant lock scoped to a store's on-disk root.

A thin wrapper over :class:`filelock.FileLock`.  The lock is
thread-local and re-entrant: nested acquisitions by the owning thread
only bump a counter, while other threads and other processes wait on
the OS lock.  Any failure to obtain it -- a timeout, an unwritable lock
directory, a lock file that cannot be opened -- surfaces as
:class:`LockUnavailable` instead of hanging.

Usage::

    lock = StoreLock(ssldir / "ca" / ".lock", timeout=10)
    with lock:
        with lock:      # re-entrant for the same thread
            ...
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Self

from filelock import FileLock, Timeout

from hostca.ca.errors import LockUnavailable

log = logging.getLogger(__name__)


class StoreLock:
    """Process-visible exclusive lock.

    Parameters
    ----------
    path:
        Lock file location.  Parent directories are created on demand.
    timeout:
        Seconds to wait for the lock before raising
        :class:`LockUnavailable`.

    """

    def __init__(self, path: str | Path, *, timeout: float = 10.0) -> None:
        self._path = Path(path)
        self._timeout = timeout
        self._lock = FileLock(str(self._path), timeout=timeout, thread_local=True)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def locked(self) -> bool:
        """Whether the calling thread currently holds the lock."""
        return self._lock.is_locked

    # -- context manager -----------------------------------------------------

    def __enter__(self) -> Self:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # -- acquire / release ---------------------------------------------------

    def acquire(self) -> None:
        if not self._lock.is_locked:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                msg = f"cannot create lock directory {self._path.parent}: {exc}"
                raise LockUnavailable(msg) from exc

        try:
            self._lock.acquire()
        except Timeout as exc:
            msg = f"timed out after {self._timeout}s waiting for {self._path}"
            raise LockUnavailable(msg) from exc
        except OSError as exc:
            msg = f"cannot lock {self._path}: {exc}"
            raise LockUnavailable(msg) from exc

        if self._lock.lock_counter == 1:
            log.debug("Acquired store lock %s", self._path)

    def release(self) -> None:
        if not self._lock.is_locked:
            msg = "release() called on an unlocked StoreLock"
            raise RuntimeError(msg)
        self._lock.release()
        if not self._lock.is_locked:
            log.debug("Released store lock %s", self._path)
