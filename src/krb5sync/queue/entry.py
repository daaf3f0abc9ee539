"""
krb5sync Queue Entries

The on-disk unit of queued work and its naming scheme.

File name:
    <queue-name>-<domain>-<conflict-key>-<YYYYMMDDTHHMMSSZ>-<NN>

File contents, one newline-terminated line each:
    <principal>
    <domain>
    <operation>
    [<password>]          only for the password operation

The principal line holds the realm-stripped text form of the principal
(component separators intact) so the processing tools can parse it back.
The file name holds the same name with separators rewritten to periods.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import attrs
from returns.result import Failure, Result, Success

from krb5sync.core.exceptions import InternalError
from krb5sync.core.types import Operation, Principal

# At most this many entries may share one prefix and timestamp.
MAX_QUEUE = 100

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"

_FILENAME_RE = re.compile(
    r"^(?P<name>.+)-(?P<domain>[^-]+)-(?P<key>[^-]+)"
    r"-(?P<timestamp>\d{8}T\d{6}Z)-(?P<sequence>\d{2})$"
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(when: datetime) -> str:
    """Second-resolution, sortable UTC timestamp."""
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return when.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> datetime:
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def queue_prefix(principal: Principal, domain: str, operation: Operation) -> str:
    """Prefix shared by every entry that conflicts with this operation."""
    return f"{principal.queue_name}-{domain}-{operation.conflict_key}-"


def entry_filename(
    principal: Principal,
    domain: str,
    operation: Operation,
    timestamp: str,
    sequence: int,
) -> str:
    if not 0 <= sequence < MAX_QUEUE:
        raise ValueError(f"sequence {sequence} outside 0..{MAX_QUEUE - 1}")
    return f"{queue_prefix(principal, domain, operation)}{timestamp}-{sequence:02d}"


@attrs.define(frozen=True)
class EntryName:
    """
    Parsed queue file name.

    Produced when listing the queue; the file contents are authoritative
    for everything except the timestamp and sequence.
    """

    filename: str
    queue_name: str
    domain: str
    conflict_key: str
    timestamp: datetime
    sequence: int

    @property
    def prefix(self) -> str:
        return f"{self.queue_name}-{self.domain}-{self.conflict_key}-"

    @classmethod
    def parse(cls, filename: str) -> Optional["EntryName"]:
        """Parse a queue file name, returning None for foreign files."""
        match = _FILENAME_RE.match(filename)
        if match is None:
            return None
        try:
            timestamp = parse_timestamp(match.group("timestamp"))
        except ValueError:
            return None
        return cls(
            filename=filename,
            queue_name=match.group("name"),
            domain=match.group("domain"),
            conflict_key=match.group("key"),
            timestamp=timestamp,
            sequence=int(match.group("sequence")),
        )


@attrs.define(frozen=True)
class QueueEntry:
    """
    One queued synchronization event.

    INVARIANT: payload is present exactly when operation is PASSWORD
    INVARIANT: no field contains a newline
    """

    principal: str
    domain: str
    operation: Operation
    payload: Optional[str] = attrs.field(default=None, repr=False)
    path: Optional[Path] = None

    def __attrs_post_init__(self) -> None:
        if self.operation.has_payload and self.payload is None:
            raise ValueError("password entries require a payload")
        if not self.operation.has_payload and self.payload is not None:
            raise ValueError(f"{self.operation.value} entries take no payload")
        for value in (self.principal, self.domain, self.payload or ""):
            if "\n" in value:
                raise ValueError("queue entry fields may not contain newlines")

    @classmethod
    def create(
        cls,
        principal: Principal,
        domain: str,
        operation: Operation,
        payload: Optional[str] = None,
    ) -> "QueueEntry":
        return cls(
            principal=principal.short_name,
            domain=domain,
            operation=operation,
            payload=payload if operation.has_payload else None,
        )

    def to_text(self) -> str:
        lines = [self.principal, self.domain, self.operation.value]
        if self.payload is not None:
            lines.append(self.payload)
        return "".join(f"{line}\n" for line in lines)

    @classmethod
    def from_text(
        cls, text: str, path: Optional[Path] = None
    ) -> Result["QueueEntry", InternalError]:
        """
        Parse queue file contents.

        Returns:
            Success(QueueEntry) or Failure(InternalError) naming the file
        """
        where = f" in queue file {path}" if path is not None else ""
        if not text.endswith("\n"):
            return Failure(InternalError(f"incomplete last line{where}"))
        lines = text[:-1].split("\n")
        if len(lines) < 3:
            return Failure(InternalError(f"truncated queue entry{where}"))

        principal, domain, action = lines[0], lines[1], lines[2]
        try:
            operation = Operation(action)
        except ValueError:
            return Failure(InternalError(f"unknown action {action}{where}"))

        expected = 4 if operation.has_payload else 3
        if len(lines) != expected:
            return Failure(
                InternalError(
                    f"expected {expected} lines for {action}{where}, got {len(lines)}"
                )
            )
        payload = lines[3] if operation.has_payload else None
        return Success(
            cls(
                principal=principal,
                domain=domain,
                operation=operation,
                payload=payload,
                path=path,
            )
        )

    def parsed_principal(self) -> Principal:
        """The principal named by this entry, without a realm."""
        return Principal.parse(self.principal)
