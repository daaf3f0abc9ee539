"""
krb5sync Queue Module

Durable, crash-safe file queue for changes that could not be pushed.

Components:
- lock: flock-based exclusive lock on the queue directory
- entry: queue file names and contents
- store: conflict check, durable write, listing and removal
- processor: offline replay and maintenance of queued entries
"""

from krb5sync.queue.lock import LOCK_FILE, QueueLock, lock_queue, unlock_queue
from krb5sync.queue.entry import MAX_QUEUE, EntryName, QueueEntry, queue_prefix
from krb5sync.queue.store import (
    has_conflict,
    list_entries,
    read_entry,
    remove_entry,
    write_entry,
)
from krb5sync.queue.processor import ProcessReport, QueueProcessor

__all__ = [
    # Lock
    "LOCK_FILE",
    "QueueLock",
    "lock_queue",
    "unlock_queue",
    # Entries
    "MAX_QUEUE",
    "EntryName",
    "QueueEntry",
    "queue_prefix",
    # Store
    "has_conflict",
    "list_entries",
    "read_entry",
    "remove_entry",
    "write_entry",
    # Processing
    "ProcessReport",
    "QueueProcessor",
]
