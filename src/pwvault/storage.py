#!/usr/bin/env python3
"""Atomic persistence - Crash-safe commits, snapshot reads and the vault lock.

A commit writes the complete new image to a temporary file next to the
target, fsyncs it, restricts its permissions and renames it over the target.
The rename is the only commit point: a failure before it leaves the old file
untouched, and a crash after it leaves the new file fully in place.
"""

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional, Union

from .errors import Busy, IOFailure

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)

# Constants
FILE_MODE = 0o600
DIR_MODE = 0o700
LOCK_SUFFIX = ".lock"
TEMP_PREFIX_FMT = ".{name}.tmp-"

PathLike = Union[str, os.PathLike]


def _temp_prefix(path: Path) -> str:
    return TEMP_PREFIX_FMT.format(name=path.name)


def _fsync_directory(directory: Path) -> None:
    """Flush a rename to disk. Not available on Windows."""
    if sys.platform == "win32":
        return
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write(path: PathLike, data: bytes, mode: int = FILE_MODE) -> None:
    """Atomically replace ``path`` with ``data``.

    Args:
        path: Target file
        data: Complete file contents
        mode: Permissions applied before the file becomes visible

    Raises:
        IOFailure: If any step up to the rename fails; the target is then
            left untouched

    """
    path = Path(path)
    directory = path.parent
    tmp_path: Optional[str] = None

    try:
        fd, tmp_path = tempfile.mkstemp(prefix=_temp_prefix(path), dir=str(directory))
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
            if hasattr(os, "fchmod"):
                os.fchmod(f.fileno(), mode)
        if not hasattr(os, "fchmod"):
            os.chmod(tmp_path, mode)

        os.replace(tmp_path, str(path))
        tmp_path = None
    except OSError as e:
        raise IOFailure(f"could not write {path}: {e}") from e
    finally:
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                logger.warning("Could not remove temporary file %s", tmp_path)

    # The rename above is the commit; a failed flush cannot undo it
    try:
        _fsync_directory(directory)
    except OSError as e:
        logger.warning("Could not flush directory %s after committing %s: %s", directory, path, e)

    logger.debug("Committed %d bytes to %s", len(data), path)


def read_snapshot(path: PathLike) -> bytes:
    """Read the whole file as one consistent snapshot.

    All bytes come from a single open descriptor, so a concurrent commit
    cannot mix old and new contents. If the path was renamed over while
    reading, the file is re-opened once so the caller sees the latest commit.

    Raises:
        IOFailure: If the file is missing or unreadable

    """
    path = Path(path)
    for attempt in range(2):
        try:
            with open(path, "rb") as f:
                opened = os.fstat(f.fileno())
                data = f.read()
            current = os.stat(path)
        except FileNotFoundError:
            raise IOFailure(f"vault not found: {path}") from None
        except OSError as e:
            raise IOFailure(f"could not read {path}: {e}") from e

        if (current.st_ino, current.st_dev) == (opened.st_ino, opened.st_dev):
            return data
        logger.debug("%s was replaced during read (attempt %d)", path, attempt + 1)

    return data


def cleanup_stale_temp_files(path: PathLike) -> int:
    """Remove temp files left behind by an interrupted commit.

    Only call this while holding the vault lock.

    Returns:
        Number of files removed

    """
    path = Path(path)
    removed = 0
    try:
        for stale in path.parent.glob(_temp_prefix(path) + "*"):
            try:
                stale.unlink()
                removed += 1
                logger.info("Removed stale temporary file %s", stale)
            except OSError:
                logger.warning("Could not remove stale temporary file %s", stale)
    except OSError:
        pass
    return removed


def ensure_private_directory(directory: PathLike) -> None:
    """Create ``directory`` (and parents) with owner-only permissions."""
    directory = Path(directory)
    if directory.exists():
        return
    try:
        directory.mkdir(parents=True, mode=DIR_MODE)
    except OSError as e:
        raise IOFailure(f"could not create {directory}: {e}") from e


class VaultLock:
    """Advisory exclusive lock on ``<vault>.lock``.

    Acquisition never blocks: if another process holds the lock, Busy is
    raised straight away. The lock file itself is left in place after
    release.
    """

    def __init__(self, vault_path: PathLike):
        vault_path = Path(vault_path)
        self.lock_path = vault_path.with_name(vault_path.name + LOCK_SUFFIX)
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> "VaultLock":
        if self._fd is not None:
            return self

        try:
            fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, FILE_MODE)
        except OSError as e:
            raise IOFailure(f"could not open lock file {self.lock_path}: {e}") from e

        try:
            if sys.platform == "win32":
                msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise Busy(f"vault is locked by another process ({self.lock_path})") from None

        self._fd = fd
        logger.debug("Acquired %s", self.lock_path)
        return self

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            if sys.platform == "win32":
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released %s", self.lock_path)

    def __enter__(self) -> "VaultLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
