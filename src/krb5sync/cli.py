"""
krb5sync Command-Line Tools

krb5-sync
    Push a password or account status change to AD directly, or replay a
    single queue file:

        krb5-sync [-c conf] [-d | -e] [-p password] <user>
        krb5-sync [-c conf] -f <file>

krb5-sync-backend
    Maintain the queue:

        krb5-sync-backend [-c conf] list
        krb5-sync-backend [-c conf] process
        krb5-sync-backend [-c conf] purge [--days N]

Both exit 0 on success and 1 with the error on stderr on failure.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import structlog
from returns.result import Failure

from krb5sync.ad.client import ADSyncClient
from krb5sync.core.config import Krb5ConfSettings, SyncConfig, load_config
from krb5sync.core.exceptions import ConfigError
from krb5sync.core.log import configure_logging
from krb5sync.core.types import Principal
from krb5sync.queue.processor import QueueProcessor

logger = structlog.get_logger()

DEFAULT_PURGE_DAYS = 30


class _UsageError(Exception):
    pass


def _die(program: str, message: str) -> int:
    print(f"{program}: {message}", file=sys.stderr)
    return 1


def _load(program: str, path: Optional[str]) -> SyncConfig:
    try:
        config = load_config(Krb5ConfSettings.from_file(path))
    except (OSError, ValueError) as e:
        raise _UsageError(f"cannot load configuration: {e}") from e
    configure_logging(syslog=config.syslog, program=program)
    return config


# =============================================================================
# krb5-sync
# =============================================================================


def _sync_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="krb5-sync",
        description="Push a password or account status change to Active Directory.",
    )
    parser.add_argument("-c", "--config", help="krb5.conf to read settings from")
    status = parser.add_mutually_exclusive_group()
    status.add_argument("-d", "--disable", action="store_true", help="disable the account")
    status.add_argument("-e", "--enable", action="store_true", help="enable the account")
    parser.add_argument("-f", "--file", help="replay a queue file")
    parser.add_argument("-p", "--password", help="new password")
    parser.add_argument("user", nargs="?", help="principal to change")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for krb5-sync."""
    program = "krb5-sync"
    args = _sync_parser().parse_args(argv)

    if args.file is not None:
        if args.user is not None:
            return _die(program, "usage: krb5-sync -f <file>")
        if args.enable or args.disable or args.password is not None:
            return _die(program, "must specify queue file or action, not both")
    else:
        if args.user is None:
            return _die(program, "usage: krb5-sync [-d | -e] [-p <pass>] <user>")
        if not (args.enable or args.disable) and args.password is None:
            return _die(program, "no action specified")

    try:
        config = _load(program, args.config)
    except _UsageError as e:
        return _die(program, str(e))
    client = ADSyncClient(config)

    if args.file is not None:
        path = Path(args.file)
        result = QueueProcessor(path.parent, client).process_file(path)
        if isinstance(result, Failure):
            return _die(program, str(result.failure()))
        return 0

    try:
        principal = Principal.parse(args.user)
    except ValueError as e:
        return _die(program, f"cannot parse user {args.user} into principal: {e}")

    if args.password is not None:
        result = client.push_password(principal, args.password)
        if isinstance(result, Failure):
            return _die(program, f"AD password change for {args.user} failed: {result.failure()}")
        logger.info("ad_password_change_succeeded", user=args.user)

    if args.enable or args.disable:
        result = client.push_status(principal, args.enable)
        if isinstance(result, Failure):
            return _die(program, f"AD status change for {args.user} failed: {result.failure()}")
        logger.info("ad_status_change_succeeded", user=args.user, enabled=args.enable)

    return 0


# =============================================================================
# krb5-sync-backend
# =============================================================================


def _backend_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="krb5-sync-backend",
        description="Manage the krb5-sync queue.",
    )
    parser.add_argument("-c", "--config", help="krb5.conf to read settings from")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("list", help="list queued changes")
    commands.add_parser("process", help="replay queued changes")
    purge = commands.add_parser("purge", help="delete old queued changes")
    purge.add_argument(
        "--days",
        type=int,
        default=DEFAULT_PURGE_DAYS,
        help=f"delete entries older than this many days (default {DEFAULT_PURGE_DAYS})",
    )
    return parser


def _list(processor: QueueProcessor) -> List[str]:
    listed = processor.list_entries()
    if isinstance(listed, Failure):
        raise _UsageError(str(listed.failure()))

    lines = []
    for name in listed.unwrap():
        read = processor.read_entry(processor.queue_dir / name.filename)
        if isinstance(read, Failure):
            lines.append(f"{name.filename}  (unreadable: {read.failure()})")
            continue
        entry = read.unwrap()
        when = name.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")
        lines.append(f"{when}  {entry.principal}  {entry.domain}  {entry.operation.value}")
    return lines


def backend_main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for krb5-sync-backend."""
    program = "krb5-sync-backend"
    args = _backend_parser().parse_args(argv)

    try:
        config = _load(program, args.config)
        if config.queue_dir is None:
            raise _UsageError(str(ConfigError.missing("queue_dir")))
        processor = QueueProcessor(config.queue_dir, ADSyncClient(config))

        if args.command == "list":
            for line in _list(processor):
                print(line)
            return 0

        if args.command == "process":
            processed = processor.process()
            if isinstance(processed, Failure):
                raise _UsageError(str(processed.failure()))
            report = processed.unwrap()
            for filename in report.failed:
                print(f"failed: {filename}", file=sys.stderr)
            return 0 if not report.failed else 1

        if args.days < 0:
            raise _UsageError("--days must not be negative")
        purged = processor.purge(args.days)
        if isinstance(purged, Failure):
            raise _UsageError(str(purged.failure()))
        for filename in purged.unwrap():
            print(f"purged: {filename}")
        return 0
    except _UsageError as e:
        return _die(program, str(e))


if __name__ == "__main__":
    sys.exit(main())
