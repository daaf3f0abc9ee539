"""
krb5sync Core Module

Foundational types shared by every other part of the package.

Components:
- types: Principal names and synchronization operations
- config: Settings stores and the immutable plugin configuration
- exceptions: Structured error kinds
- log: structlog/syslog wiring for the tools and the hook
"""

from krb5sync.core.types import DOMAIN_AD, Operation, Principal
from krb5sync.core.config import (
    Krb5ConfSettings,
    MappingSettings,
    SettingsStore,
    SyncConfig,
    load_config,
)
from krb5sync.core.exceptions import (
    ConfigError,
    ErrorKind,
    FilterError,
    InternalError,
    RemoteError,
    SyncError,
    SyncIOError,
)

__all__ = [
    # Types
    "DOMAIN_AD",
    "Operation",
    "Principal",
    # Configuration
    "Krb5ConfSettings",
    "MappingSettings",
    "SettingsStore",
    "SyncConfig",
    "load_config",
    # Exceptions
    "ConfigError",
    "ErrorKind",
    "FilterError",
    "InternalError",
    "RemoteError",
    "SyncError",
    "SyncIOError",
]
