"""
krb5sync Dispatch

Entry points called when a principal's password or status changes.

Each change is filtered, then either pushed to AD directly or written to the
queue. It is queued instead of pushed when:

- a change of the same kind is already queued for the principal (pushing
  now would apply it ahead of the queued one)
- the configuration forces queue-only operation
- the direct push fails

The conflict check, the direct attempt and any queue write happen under one
hold of the queue lock, so a concurrent dispatch for the same principal
cannot slip a change in between the check and the write.

Usage:
    ctx = SyncContext(config, ADSyncClient(config), KadminDirectory())
    result = sync_chpass(ctx, Principal.parse("jdoe@EXAMPLE.COM"), "new-password")
    if isinstance(result, Failure):
        print(result.failure())
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

import attrs
import structlog
from returns.result import Failure, Result, Success

from krb5sync.ad.client import RemoteSyncClient
from krb5sync.core.config import SyncConfig
from krb5sync.core.exceptions import ConfigError, SyncError
from krb5sync.core.types import DOMAIN_AD, Operation, Principal
from krb5sync.kerberos.directory import PrincipalDirectory
from krb5sync.kerberos.eligibility import is_eligible
from krb5sync.queue.entry import utc_now
from krb5sync.queue.lock import lock_queue
from krb5sync.queue.store import has_conflict, write_entry


@attrs.define
class SyncContext:
    """
    Everything a dispatch needs, passed explicitly to every call.

    Attributes:
        config: Plugin configuration
        client: Pushes changes to AD
        directory: Principal lookups for the eligibility filter
        clock: Source of queue timestamps
    """

    config: SyncConfig
    client: RemoteSyncClient
    directory: PrincipalDirectory
    clock: Callable[[], datetime] = utc_now
    logger: Any = attrs.Factory(lambda: structlog.get_logger())


def _dispatch(
    ctx: SyncContext,
    principal: Principal,
    operation: Operation,
    push: Callable[[], Result[None, SyncError]],
    payload: Optional[str] = None,
) -> Result[None, SyncError]:
    """Check for conflicts, then push directly or queue, under one lock."""
    if ctx.config.queue_dir is None:
        return Failure(ConfigError.missing("queue_dir"))
    queue_dir = Path(ctx.config.queue_dir)

    locked = lock_queue(queue_dir)
    if isinstance(locked, Failure):
        return Failure(locked.failure())

    with locked.unwrap() as lock:
        conflict = has_conflict(queue_dir, principal, DOMAIN_AD, operation, lock=lock)
        if isinstance(conflict, Failure):
            return Failure(conflict.failure())

        if not conflict.unwrap() and not ctx.config.ad_queue_only:
            pushed = push()
            if isinstance(pushed, Success):
                return Success(None)
            ctx.logger.info(
                "direct_sync_failed",
                principal=str(principal),
                operation=operation.value,
                error=str(pushed.failure()),
            )

        written = write_entry(
            queue_dir,
            principal,
            DOMAIN_AD,
            operation,
            payload=payload,
            lock=lock,
            clock=ctx.clock,
        )
    if isinstance(written, Failure):
        return Failure(written.failure())
    return Success(None)


def sync_chpass(
    ctx: SyncContext, principal: Principal, password: Optional[str]
) -> Result[None, SyncError]:
    """
    Propagate a password change, before it is committed locally.

    A failure here should abort the local password change.

    Args:
        ctx: Dispatch context
        principal: Principal whose password is changing
        password: New password, or None for a key randomization

    Returns:
        Success(None) if the change was pushed, queued or not applicable;
        otherwise Failure(SyncError)
    """
    if ctx.config.ad_realm is None or password is None:
        return Success(None)

    eligible = is_eligible(ctx.config, ctx.directory, principal, password_change=True)
    if isinstance(eligible, Failure):
        return Failure(eligible.failure())
    if not eligible.unwrap():
        return Success(None)

    return _dispatch(
        ctx,
        principal,
        Operation.PASSWORD,
        lambda: ctx.client.push_password(principal, password),
        payload=password,
    )


def sync_status(
    ctx: SyncContext, principal: Principal, enabled: bool
) -> Result[None, SyncError]:
    """
    Propagate an account enable or disable, after it is committed locally.

    Does nothing unless every setting needed for status sync is present.

    Args:
        ctx: Dispatch context
        principal: Principal whose status changed
        enabled: New account status

    Returns:
        Success(None) or Failure(SyncError)
    """
    if not ctx.config.status_sync_configured:
        return Success(None)

    eligible = is_eligible(ctx.config, ctx.directory, principal, password_change=False)
    if isinstance(eligible, Failure):
        return Failure(eligible.failure())
    if not eligible.unwrap():
        return Success(None)

    return _dispatch(
        ctx,
        principal,
        Operation.for_status(enabled),
        lambda: ctx.client.push_status(principal, enabled),
    )


def sync_postcommit_password(
    ctx: SyncContext, principal: Principal, password: Optional[str]
) -> Result[None, SyncError]:
    """Post-commit password hook. Nothing is synchronized at this stage."""
    return Success(None)
