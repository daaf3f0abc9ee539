"""
krb5sync Admin Hook Adapter

Translates kadm5 hook calls into dispatch calls.

The kadmin daemon calls a hook at two stages of every administrative
operation: before the database commit (precommit) and after it
(postcommit). A precommit failure aborts the operation, so it is reported
to the host as a non-zero code. A postcommit failure cannot undo anything,
so it is logged and reported as success.
"""

from __future__ import annotations

import errno
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import attrs
import structlog
from returns.result import Failure, Result, Success

from krb5sync.ad.client import ADSyncClient
from krb5sync.api import SyncContext, sync_chpass, sync_postcommit_password, sync_status
from krb5sync.core.config import Krb5ConfSettings, load_config
from krb5sync.core.exceptions import ErrorKind, InternalError, SyncError
from krb5sync.core.log import configure_logging
from krb5sync.core.types import Principal
from krb5sync.kerberos.directory import KadminDirectory

# kadm5 modify mask bit for principal attributes.
KADM5_ATTRIBUTES = 0x00000010

# Principal attribute that disables all ticket issuance.
KRB5_KDB_DISALLOW_ALL_TIX = 0x00000040

# Host return code for failures without an OS error number.
HOOK_FAILURE = 1


class HookStage(Enum):
    PRECOMMIT = "precommit"
    POSTCOMMIT = "postcommit"


def host_code(error: SyncError) -> int:
    """Map a sync error to the integer code returned to the host."""
    if error.kind is ErrorKind.SYSTEM:
        return error.code or errno.EIO
    if error.kind is ErrorKind.CONFIG:
        return errno.EINVAL
    return HOOK_FAILURE


def _as_principal(principal: Union[str, Principal]) -> Result[Principal, SyncError]:
    if isinstance(principal, Principal):
        return Success(principal)
    try:
        return Success(Principal.parse(principal))
    except ValueError as e:
        return Failure(InternalError(f"cannot parse principal {principal!r}: {e}"))


@attrs.define
class KadmHook:
    """
    kadm5 hook implementation.

    Example:
        hook = KadmHook.from_profile("/etc/krb5.conf")
        code = hook.chpass(HookStage.PRECOMMIT, "jdoe@EXAMPLE.COM", "new-password")
        if code != 0:
            print(hook.last_error)
    """

    context: SyncContext
    last_error: Optional[SyncError] = None

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @classmethod
    def from_profile(
        cls,
        path: Optional[Union[str, Path]] = None,
        setup_logging: bool = True,
    ) -> "KadmHook":
        """Build a hook configured from a krb5.conf profile."""
        config = load_config(Krb5ConfSettings.from_file(path))
        if setup_logging:
            configure_logging(syslog=config.syslog)
        context = SyncContext(
            config=config,
            client=ADSyncClient(config),
            directory=KadminDirectory(),
        )
        return cls(context=context)

    def _finish(self, stage: HookStage, result: Result[None, SyncError]) -> int:
        if not isinstance(result, Failure):
            self.last_error = None
            return 0

        error = result.failure()
        self.last_error = error
        if stage is HookStage.POSTCOMMIT:
            self._logger.warning("postcommit_sync_failed", error=str(error))
            return 0
        self._logger.error("precommit_sync_failed", error=str(error))
        return host_code(error)

    def chpass(
        self,
        stage: HookStage,
        principal: Union[str, Principal],
        password: Optional[str],
    ) -> int:
        """Password change hook."""
        parsed = _as_principal(principal)
        if isinstance(parsed, Failure):
            return self._finish(stage, parsed)
        principal = parsed.unwrap()
        if stage is HookStage.PRECOMMIT:
            result = sync_chpass(self.context, principal, password)
        else:
            result = sync_postcommit_password(self.context, principal, password)
        return self._finish(stage, result)

    def create(
        self,
        stage: HookStage,
        principal: Union[str, Principal],
        password: Optional[str],
    ) -> int:
        """Principal creation hook; the initial password syncs like a change."""
        return self.chpass(stage, principal, password)

    def modify(
        self,
        stage: HookStage,
        principal: Union[str, Principal],
        attributes: int,
        mask: int,
    ) -> int:
        """
        Principal modification hook.

        Only the postcommit stage of a change to the principal attributes
        is synchronized; the account is enabled unless all tickets are
        disallowed.
        """
        if stage is not HookStage.POSTCOMMIT or not mask & KADM5_ATTRIBUTES:
            return 0
        parsed = _as_principal(principal)
        if isinstance(parsed, Failure):
            return self._finish(stage, parsed)
        principal = parsed.unwrap()
        enabled = not attributes & KRB5_KDB_DISALLOW_ALL_TIX
        return self._finish(stage, sync_status(self.context, principal, enabled))
