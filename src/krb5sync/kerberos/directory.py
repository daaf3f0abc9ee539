"""
krb5sync Principal Directory

Existence lookups against the authoritative Kerberos database.

The eligibility filter needs to know whether a ``<name>/<base-instance>``
principal exists. Inside kadmind this is a database lookup; from Python the
portable way to ask is the local administration tool on the KDC.
"""

from __future__ import annotations

import subprocess
from typing import Any, Protocol

import attrs
import structlog
from returns.result import Failure, Result, Success

from krb5sync.core.exceptions import FilterError, SyncError
from krb5sync.core.types import Principal

logger = structlog.get_logger()

# Marker kadmin prints when the principal is missing.
NOT_FOUND_MARKER = "Principal does not exist"


class PrincipalDirectory(Protocol):
    """Answers whether a principal exists in the Kerberos database."""

    def exists(self, principal: Principal) -> Result[bool, SyncError]:
        """Success(False) means "not found"; Failure means the lookup failed."""
        ...


@attrs.define
class KadminDirectory:
    """
    ``PrincipalDirectory`` backed by ``kadmin.local``.

    kadmin.local exits 0 even when a query fails, so the result is judged
    from its output: a principal listing means found, the not-found marker
    means absent, and anything else is a lookup failure.
    """

    command: str = "kadmin.local"
    timeout: int = 10

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def exists(self, principal: Principal) -> Result[bool, SyncError]:
        cmd = [self.command]
        if principal.realm is not None:
            cmd.extend(["-r", principal.realm])
        cmd.extend(["-q", f"getprinc {principal.unparse()}"])

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return Failure(FilterError(f"cannot check for {principal}: kadmin timed out"))
        except OSError as e:
            return Failure(FilterError(f"cannot check for {principal}: {e}"))

        output = result.stdout + result.stderr
        if NOT_FOUND_MARKER in output:
            return Success(False)
        if result.returncode == 0 and "Principal:" in result.stdout:
            return Success(True)

        self._logger.debug(
            "kadmin_lookup_failed",
            principal=str(principal),
            returncode=result.returncode,
            stderr=result.stderr.strip(),
        )
        detail = result.stderr.strip() or f"exit status {result.returncode}"
        return Failure(FilterError(f"cannot check for {principal}: {detail}"))
