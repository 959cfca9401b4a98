"""Store transaction -- atomic multi-file writes.

Every store mutation goes through a :class:`StoreTransaction`.  Before a
file is first touched its previous content (or absence) is journalled;
on a clean exit the journal is discarded, on an exception every touched
file is restored, so a failed sign or bootstrap never leaves a
half-written certificate or an orphaned request behind.

Individual files are always replaced atomically (temp file +
:func:`os.replace`), so lock-free readers never see a partial write.

Usage::

    with store.lock, store.transaction() as tx:
        tx.write(path_a, data_a)
        tx.delete(path_b)
        # committed on clean exit; rolled back on exception

The caller must hold the store lock for the whole transaction.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Self

log = logging.getLogger(__name__)

_DEFAULT_MODE = 0o644


@dataclass(frozen=True)
class _PreImage:
    content: bytes | None
    mode: int = _DEFAULT_MODE


def _write_temp(path: Path, data: bytes, mode: int) -> str:
    """Write *data* to a temp file next to *path* and return its name."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp, mode)  # noqa: PTH101
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    return tmp


def atomic_write(path: Path, data: bytes, *, mode: int = _DEFAULT_MODE) -> None:
    """Replace *path* with *data* in a single rename."""
    tmp = _write_temp(path, data, mode)
    try:
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def exclusive_create(path: Path, data: bytes, *, mode: int = _DEFAULT_MODE) -> bool:
    """Create *path* with *data* unless it already exists.

    Returns ``False`` (and leaves the existing file untouched) if another
    writer got there first.
    """
    tmp = _write_temp(path, data, mode)
    try:
        os.link(tmp, path)
    except FileExistsError:
        return False
    finally:
        Path(tmp).unlink(missing_ok=True)
    return True


class StoreTransaction:
    """Journal of file pre-images with all-or-nothing semantics."""

    def __init__(self) -> None:
        self._journal: dict[Path, _PreImage] = {}
        self._active = False

    # -- context manager -----------------------------------------------------

    def __enter__(self) -> Self:
        if self._active:
            msg = "StoreTransaction is not re-entrant"
            raise RuntimeError(msg)
        self._active = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            self._journal.clear()
            self._active = False

    @property
    def touched(self) -> tuple[Path, ...]:
        return tuple(self._journal)

    # -- operations ----------------------------------------------------------

    def write(self, path: Path, data: bytes, *, mode: int = _DEFAULT_MODE) -> None:
        """Atomically replace (or create) *path*."""
        self._remember(path)
        atomic_write(path, data, mode=mode)

    def create(self, path: Path, data: bytes, *, mode: int = _DEFAULT_MODE) -> bool:
        """Create *path* only if absent; see :func:`exclusive_create`."""
        existed = path.exists()
        if existed:
            return False
        created = exclusive_create(path, data, mode=mode)
        if created:
            self._journal.setdefault(path, _PreImage(content=None))
        return created

    def delete(self, path: Path) -> bool:
        """Remove *path*; returns whether anything was removed."""
        if not path.exists():
            return False
        self._remember(path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def rollback(self) -> None:
        """Restore every journalled file to its pre-transaction state."""
        for path, before in reversed(list(self._journal.items())):
            try:
                if before.content is None:
                    path.unlink(missing_ok=True)
                else:
                    atomic_write(path, before.content, mode=before.mode)
            except OSError:
                log.exception("Failed to restore %s during rollback", path)
        if self._journal:
            log.warning("Rolled back store transaction (%d file(s))", len(self._journal))

    # -- helpers -------------------------------------------------------------

    def _remember(self, path: Path) -> None:
        if path in self._journal:
            return
        try:
            content = path.read_bytes()
            mode = stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            self._journal[path] = _PreImage(content=None)
        else:
            self._journal[path] = _PreImage(content=content, mode=mode)
