"""
Pytest configuration and shared fixtures for krb5sync tests.
"""

import pytest
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from returns.result import Failure, Result, Success

from krb5sync.api import SyncContext
from krb5sync.core.config import SyncConfig
from krb5sync.core.exceptions import FilterError, RemoteError, SyncError
from krb5sync.core.types import Principal


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================


class RecordingClient:
    """Remote client that records calls and fails on demand."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[Tuple[str, str, object]] = []

    def push_password(self, principal: Principal, password: str) -> Result[None, SyncError]:
        self.calls.append(("password", str(principal), password))
        if self.fail:
            return Failure(RemoteError("AD unreachable"))
        return Success(None)

    def push_status(self, principal: Principal, enabled: bool) -> Result[None, SyncError]:
        self.calls.append(("status", str(principal), enabled))
        if self.fail:
            return Failure(RemoteError("AD unreachable"))
        return Success(None)


class FakeDirectory:
    """Principal directory backed by a set of principal names."""

    def __init__(self, principals=(), error: Optional[str] = None) -> None:
        self.principals = set(principals)
        self.error = error
        self.lookups: List[str] = []

    def exists(self, principal: Principal) -> Result[bool, SyncError]:
        self.lookups.append(str(principal))
        if self.error is not None:
            return Failure(FilterError(self.error))
        return Success(str(principal) in self.principals)


# =============================================================================
# QUEUE FIXTURES
# =============================================================================


@pytest.fixture
def queue_dir(tmp_path: Path) -> Path:
    """Empty, existing queue directory."""
    path = tmp_path / "queue"
    path.mkdir()
    return path


@pytest.fixture
def fixed_time() -> datetime:
    """Fixed UTC time for deterministic queue file names."""
    return datetime(2024, 3, 1, 12, 30, 45, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_time: datetime):
    """Clock returning the fixed time."""
    return lambda: fixed_time


# =============================================================================
# CONFIGURATION AND CONTEXT FIXTURES
# =============================================================================


@pytest.fixture
def config(queue_dir: Path) -> SyncConfig:
    """Fully configured plugin settings."""
    return SyncConfig(
        ad_keytab="/etc/krb5-sync.keytab",
        ad_principal="service/krb5-sync@WIN.EXAMPLE.COM",
        ad_realm="WIN.EXAMPLE.COM",
        ad_admin_server="dc.win.example.com",
        ad_ldap_base="ou=Accounts,dc=win,dc=example,dc=com",
        ad_instances=("root", "ipass"),
        ad_base_instance="windows",
        queue_dir=str(queue_dir),
        syslog=False,
    )


@pytest.fixture
def client() -> RecordingClient:
    """Remote client whose pushes succeed."""
    return RecordingClient()


@pytest.fixture
def failing_client() -> RecordingClient:
    """Remote client whose pushes fail."""
    return RecordingClient(fail=True)


@pytest.fixture
def directory() -> FakeDirectory:
    """Empty principal directory."""
    return FakeDirectory()


@pytest.fixture
def context(config, client, directory, clock) -> SyncContext:
    """Dispatch context with fake collaborators."""
    return SyncContext(config=config, client=client, directory=directory, clock=clock)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def queue_files(queue_dir: Path) -> List[str]:
    """Names of queue entries (excluding the lock file)."""
    return sorted(p.name for p in queue_dir.iterdir() if not p.name.startswith("."))


def read_lines(path: Path) -> List[str]:
    """Lines of a queue file without their terminators."""
    return path.read_text(encoding="utf-8").split("\n")[:-1]


def make_principal(text: str) -> Principal:
    """Helper to create a principal."""
    return Principal.parse(text)
