"""
krb5sync Queue Lock

Advisory lock serializing all access to the queue directory.

The lock is a single ``.lock`` file inside the queue directory locked with
``flock``. It is deliberately coarse: every listing, write and delete takes
the whole-directory lock, since queue operations are rare and must never
race on the directory listing. ``flock`` (not ``fcntl`` record locks) is
used because the separate queue processing tools lock the same file and
because ``flock`` locks conflict between two descriptors in one process.

Acquisition blocks with no timeout. A holder that hangs while holding the
lock stalls every other writer until it is killed.
"""

from __future__ import annotations

import fcntl
import os
from pathlib import Path
from typing import Any, Optional, Union

import attrs
import structlog
from returns.result import Failure, Result, Success

from krb5sync.core.exceptions import SyncIOError

logger = structlog.get_logger()

LOCK_FILE = ".lock"


@attrs.define
class QueueLock:
    """
    Held exclusive lock on a queue directory.

    Obtain one with ``lock_queue``; release it with ``unlock_queue`` or by
    using it as a context manager.

    Example:
        result = lock_queue("/var/spool/krb5-sync")
        if isinstance(result, Success):
            with result.unwrap() as lock:
                ...
    """

    queue_dir: Path
    _fd: Optional[int] = None

    @property
    def path(self) -> Path:
        return self.queue_dir / LOCK_FILE

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("queue_unlocked", queue=str(self.queue_dir))

    def __enter__(self) -> "QueueLock":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


def lock_queue(queue_dir: Union[str, Path]) -> Result[QueueLock, SyncIOError]:
    """
    Lock the queue directory, blocking until the lock is available.

    The lock file is created if it does not exist, but the directory is not:
    a missing queue directory is an error naming the lock file path.

    Returns:
        Success(QueueLock) or Failure(SyncIOError)
    """
    queue_dir = Path(queue_dir)
    path = queue_dir / LOCK_FILE
    try:
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
    except OSError as e:
        return Failure(SyncIOError.from_os_error(f"cannot open lock file {path}", e))

    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
    except OSError as e:
        os.close(fd)
        return Failure(SyncIOError.from_os_error(f"cannot flock lock file {path}", e))

    logger.debug("queue_locked", queue=str(queue_dir))
    return Success(QueueLock(queue_dir=queue_dir, fd=fd))


def unlock_queue(lock: QueueLock) -> None:
    """Release a lock obtained from ``lock_queue``."""
    lock.release()
