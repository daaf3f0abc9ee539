"""
krb5sync Queue Processor

Replays queued changes against the remote directory and maintains the queue.

Entries are replayed in file-name order, which groups them by conflict
prefix and orders each group by timestamp and sequence. If replaying an
entry fails, later entries with the same prefix are held back so that a
change is never applied ahead of an earlier one for the same account.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, List, Optional, Set, Union

import attrs
import structlog
from returns.result import Failure, Result, Success

from krb5sync.ad.client import RemoteSyncClient
from krb5sync.core.exceptions import InternalError, SyncError
from krb5sync.core.types import DOMAIN_AD, Operation
from krb5sync.queue import store
from krb5sync.queue.entry import EntryName, QueueEntry, utc_now
from krb5sync.queue.lock import lock_queue


@attrs.define
class ProcessReport:
    """Outcome of a ``QueueProcessor.process`` run."""

    processed: List[str] = attrs.Factory(list)
    failed: List[str] = attrs.Factory(list)
    skipped: List[str] = attrs.Factory(list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped


@attrs.define
class QueueProcessor:
    """
    Offline queue maintenance.

    Example:
        processor = QueueProcessor(Path("/var/spool/krb5-sync"), ADSyncClient(config))
        report = processor.process()
        if isinstance(report, Success):
            print(report.unwrap().processed)
    """

    queue_dir: Path = attrs.field(converter=Path)
    client: RemoteSyncClient

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def list_entries(self) -> Result[List[EntryName], SyncError]:
        return store.list_entries(self.queue_dir)

    def read_entry(self, path: Union[str, Path]) -> Result[QueueEntry, SyncError]:
        """Read one queue file, rejecting domains this tool cannot replay."""
        result = store.read_entry(path)
        if isinstance(result, Failure):
            return result
        entry = result.unwrap()
        if entry.domain != DOMAIN_AD:
            return Failure(InternalError(f"unknown domain {entry.domain} in queue file {path}"))
        return Success(entry)

    def replay(self, entry: QueueEntry) -> Result[None, SyncError]:
        """Push one queued change to the remote directory."""
        try:
            principal = entry.parsed_principal()
        except ValueError as e:
            return Failure(InternalError(f"invalid principal {entry.principal!r}: {e}"))

        if entry.operation is Operation.PASSWORD:
            if entry.payload is None:
                return Failure(
                    InternalError(f"password entry for {entry.principal} has no password")
                )
            return self.client.push_password(principal, entry.payload)
        return self.client.push_status(principal, entry.operation is Operation.ENABLE)

    def process_file(self, path: Union[str, Path]) -> Result[None, SyncError]:
        """
        Replay one queue file and delete it on success.

        A file whose replay fails is left in place for a later run.
        """
        path = Path(path)
        read = self.read_entry(path)
        if isinstance(read, Failure):
            return Failure(read.failure())
        entry = read.unwrap()

        replayed = self.replay(entry)
        if isinstance(replayed, Failure):
            return replayed

        removed = store.remove_entry(path)
        if isinstance(removed, Failure):
            return removed
        self._logger.info(
            "queue_entry_replayed",
            principal=entry.principal,
            operation=entry.operation.value,
            file=path.name,
        )
        return Success(None)

    def process(self) -> Result[ProcessReport, SyncError]:
        """
        Replay every queued entry in order.

        Returns:
            Success(ProcessReport), or Failure(SyncError) if the queue
            cannot be listed
        """
        listed = self.list_entries()
        if isinstance(listed, Failure):
            return Failure(listed.failure())

        report = ProcessReport()
        blocked: Set[str] = set()
        for name in listed.unwrap():
            if name.prefix in blocked:
                report.skipped.append(name.filename)
                continue
            result = self.process_file(self.queue_dir / name.filename)
            if isinstance(result, Failure):
                self._logger.warning(
                    "queue_entry_failed",
                    file=name.filename,
                    error=str(result.failure()),
                )
                report.failed.append(name.filename)
                blocked.add(name.prefix)
            else:
                report.processed.append(name.filename)

        self._logger.info(
            "queue_processed",
            processed=len(report.processed),
            failed=len(report.failed),
            skipped=len(report.skipped),
        )
        return Success(report)

    def purge(
        self, max_age_days: int, now: Optional[datetime] = None
    ) -> Result[List[str], SyncError]:
        """
        Delete entries queued more than ``max_age_days`` days ago.

        Returns:
            Success(names of the deleted files) or Failure(SyncError)
        """
        cutoff = (now or utc_now()) - timedelta(days=max_age_days)

        locked = lock_queue(self.queue_dir)
        if isinstance(locked, Failure):
            return Failure(locked.failure())
        purged: List[str] = []
        with locked.unwrap() as lock:
            listed = store.list_entries(self.queue_dir, lock=lock)
            if isinstance(listed, Failure):
                return Failure(listed.failure())
            for name in listed.unwrap():
                if name.timestamp >= cutoff:
                    continue
                removed = store.remove_entry(self.queue_dir / name.filename, lock=lock)
                if isinstance(removed, Failure):
                    return Failure(removed.failure())
                purged.append(name.filename)

        self._logger.info("queue_purged", count=len(purged), max_age_days=max_age_days)
        return Success(purged)
