"""
krb5sync Principal Filter

Decides whether a change to a principal should propagate to AD.

Multi-component principals propagate only when their instance is on the
configured allow-list (the base instance is always allowed). When a base
instance is configured, a password change to a single-component principal
is skipped if the ``<name>/<base-instance>`` principal exists, since that
principal's password is the one AD should carry.
"""

from __future__ import annotations

from typing import Optional

import structlog
from returns.result import Failure, Result, Success

from krb5sync.core.config import SyncConfig
from krb5sync.core.exceptions import SyncError
from krb5sync.core.types import Principal
from krb5sync.kerberos.directory import PrincipalDirectory

logger = structlog.get_logger()


def instance_allowed(config: SyncConfig, instance: Optional[str]) -> bool:
    """True if ``instance`` exactly matches an allowed instance."""
    if instance is None:
        return False
    if instance in config.ad_instances:
        return True
    return config.ad_base_instance is not None and instance == config.ad_base_instance


def is_eligible(
    config: SyncConfig,
    directory: PrincipalDirectory,
    principal: Principal,
    password_change: bool,
) -> Result[bool, SyncError]:
    """
    Check whether a change to ``principal`` should be synchronized.

    Args:
        config: Plugin configuration
        directory: Lookup used for the base-instance check
        principal: Principal being changed
        password_change: True for password changes; the base-instance
            check only applies to those

    Returns:
        Success(True/False), or Failure(FilterError) if the directory
        lookup failed
    """
    if principal.num_components > 1:
        if instance_allowed(config, principal.instance):
            return Success(True)
        logger.debug(
            "sync_skipped",
            principal=str(principal),
            reason="instance not allowed",
        )
        return Success(False)

    if config.ad_base_instance is None or not password_change:
        return Success(True)

    base = principal.with_instance(config.ad_base_instance)
    found = directory.exists(base)
    if isinstance(found, Failure):
        return Failure(found.failure())
    if found.unwrap():
        logger.debug(
            "sync_skipped",
            principal=str(principal),
            reason=f"{base} exists",
        )
        return Success(False)
    return Success(True)
