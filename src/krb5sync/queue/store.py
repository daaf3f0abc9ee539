"""
krb5sync Queue Store

Conflict checking and durable writes for queued changes.

Before pushing a change, the dispatcher checks whether a change of the same
kind is already queued for the principal; if so, the new change has to be
queued behind it so the two are applied in order. When a push is skipped or
fails, the change is written to the queue for the processing tool to replay.

Every function here takes an optional held ``QueueLock``. Standalone callers
omit it and the function locks the queue for its own duration; the
dispatcher passes the lock it already holds so that its conflict check and
write form one critical section. (``flock`` locks taken through two
descriptors conflict even within one process, so re-locking would
deadlock.)
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union

import structlog
from returns.result import Failure, Result, Success

from krb5sync.core.exceptions import InternalError, SyncError, SyncIOError
from krb5sync.core.types import Operation, Principal
from krb5sync.queue.entry import (
    MAX_QUEUE,
    EntryName,
    QueueEntry,
    entry_filename,
    format_timestamp,
    queue_prefix,
    utc_now,
)
from krb5sync.queue.lock import LOCK_FILE, QueueLock, lock_queue

logger = structlog.get_logger()

Clock = Callable[[], datetime]


@contextmanager
def _locked(
    queue_dir: Path, lock: Optional[QueueLock]
) -> Iterator[Result[QueueLock, SyncIOError]]:
    """Yield the caller's lock, or take and later release our own."""
    if lock is not None:
        yield Success(lock)
        return
    result = lock_queue(queue_dir)
    try:
        yield result
    finally:
        if isinstance(result, Success):
            result.unwrap().release()


def _list_names(queue_dir: Path) -> Result[List[str], SyncIOError]:
    try:
        return Success(sorted(os.listdir(queue_dir)))
    except OSError as e:
        return Failure(SyncIOError.from_os_error(f"cannot open {queue_dir}", e))


# =============================================================================
# CONFLICT CHECK
# =============================================================================


def has_conflict(
    queue_dir: Union[str, Path],
    principal: Principal,
    domain: str,
    operation: Operation,
    lock: Optional[QueueLock] = None,
) -> Result[bool, SyncError]:
    """
    Check whether a conflicting change is already queued.

    A change conflicts if its file name starts with the same principal,
    domain and conflict key, including the trailing delimiter, so queued
    changes for "alice" do not block "alicebob". Enable and disable share
    a conflict key.

    Returns:
        Success(True/False), or Failure(SyncIOError) if the queue cannot be
        locked or listed (a missing queue directory is never "no conflict")
    """
    queue_dir = Path(queue_dir)
    prefix = queue_prefix(principal, domain, operation)

    with _locked(queue_dir, lock) as locked:
        if isinstance(locked, Failure):
            return Failure(locked.failure())
        names = _list_names(queue_dir)
        if isinstance(names, Failure):
            return Failure(names.failure())
        conflict = any(name.startswith(prefix) for name in names.unwrap())

    if conflict:
        logger.debug("queue_conflict", prefix=prefix)
    return Success(conflict)


# =============================================================================
# DURABLE WRITE
# =============================================================================


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def write_entry(
    queue_dir: Union[str, Path],
    principal: Principal,
    domain: str,
    operation: Operation,
    payload: Optional[str] = None,
    lock: Optional[QueueLock] = None,
    clock: Clock = utc_now,
) -> Result[Path, SyncError]:
    """
    Durably queue a change.

    The timestamp is taken after locking so a concurrent writer cannot get
    an earlier timestamp for a later change. The first free sequence number
    for that second is claimed with an exclusive create only once the
    entry has been encoded; a partially written file is removed before an
    error is returned.

    Args:
        queue_dir: Queue directory
        principal: Principal the change applies to (realm is ignored)
        domain: Target system tag
        operation: Operation to record
        payload: New password, required for (and only for) PASSWORD
        lock: Lock already held by the caller, if any
        clock: Source of the current time

    Returns:
        Success(path of the new entry) or Failure(SyncError)
    """
    queue_dir = Path(queue_dir)
    try:
        entry = QueueEntry.create(principal, domain, operation, payload)
    except ValueError as e:
        return Failure(InternalError(f"cannot queue {operation.value} for {principal}: {e}"))
    try:
        data = entry.to_text().encode("utf-8")
    except UnicodeEncodeError as e:
        return Failure(InternalError(f"cannot encode {operation.value} for {principal}: {e}"))

    with _locked(queue_dir, lock) as locked:
        if isinstance(locked, Failure):
            return Failure(locked.failure())

        timestamp = format_timestamp(clock())
        path: Optional[Path] = None
        fd = -1
        for sequence in range(MAX_QUEUE):
            candidate = queue_dir / entry_filename(
                principal, domain, operation, timestamp, sequence
            )
            try:
                fd = os.open(candidate, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            except FileExistsError:
                continue
            except OSError as e:
                return Failure(
                    SyncIOError.from_os_error(f"cannot create queue file {candidate}", e)
                )
            path = candidate
            break

        if path is None:
            prefix = queue_prefix(principal, domain, operation)
            return Failure(
                SyncIOError(
                    f"cannot create queue file: all {MAX_QUEUE} sequence numbers"
                    f" for {prefix}{timestamp} are in use"
                )
            )

        complete = False
        try:
            os.fchmod(fd, 0o600)
            _write_all(fd, data)
            os.fsync(fd)
            complete = True
        except OSError as e:
            return Failure(SyncIOError.from_os_error(f"cannot write queue file {path}", e))
        finally:
            os.close(fd)
            if not complete:
                _discard(path)

    logger.info(
        "change_queued",
        principal=entry.principal,
        domain=domain,
        operation=operation.value,
        file=path.name,
    )
    return Success(path)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except OSError as e:
        logger.warning("partial_queue_file_not_removed", file=str(path), error=str(e))


# =============================================================================
# READING AND REMOVAL
# =============================================================================


def list_entries(
    queue_dir: Union[str, Path],
    lock: Optional[QueueLock] = None,
) -> Result[List[EntryName], SyncError]:
    """
    List queued entries in file-name order.

    Ordering by name groups entries by conflict prefix and, within a prefix,
    by timestamp and sequence. Dotfiles (including the lock) and names that
    are not queue entries are skipped.
    """
    queue_dir = Path(queue_dir)
    with _locked(queue_dir, lock) as locked:
        if isinstance(locked, Failure):
            return Failure(locked.failure())
        names = _list_names(queue_dir)
        if isinstance(names, Failure):
            return Failure(names.failure())

    entries = []
    for name in names.unwrap():
        if name == LOCK_FILE or name.startswith("."):
            continue
        parsed = EntryName.parse(name)
        if parsed is None:
            logger.debug("queue_file_ignored", file=name)
            continue
        entries.append(parsed)
    return Success(entries)


def read_entry(path: Union[str, Path]) -> Result[QueueEntry, SyncError]:
    """Read and parse one queue file."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        return Failure(SyncIOError.from_os_error(f"cannot open queue file {path}", e))
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        return Failure(SyncIOError(f"cannot decode queue file {path}: {e}"))
    result = QueueEntry.from_text(text, path=path)
    if isinstance(result, Failure):
        return Failure(result.failure())
    return Success(result.unwrap())


def remove_entry(
    path: Union[str, Path],
    lock: Optional[QueueLock] = None,
) -> Result[None, SyncError]:
    """Delete a queue file under the queue lock."""
    path = Path(path)
    with _locked(path.parent, lock) as locked:
        if isinstance(locked, Failure):
            return Failure(locked.failure())
        try:
            path.unlink()
        except OSError as e:
            return Failure(
                SyncIOError.from_os_error(f"unable to unlink queue file {path}", e)
            )
    logger.debug("queue_file_removed", file=path.name)
    return Success(None)
