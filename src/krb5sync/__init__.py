"""
krb5sync - Kerberos to Active Directory Synchronization

Propagates password changes and account enable/disable changes made in an
MIT Kerberos or Heimdal KDC to Active Directory.

Changes are pushed directly when possible. When a push fails, when an
earlier change for the same account is still waiting, or when the
configuration asks for it, the change is written to a crash-safe file
queue that the krb5-sync-backend tool replays later.

Example Usage:
    from krb5sync import KadmHook, HookStage

    hook = KadmHook.from_profile("/etc/krb5.conf")
    code = hook.chpass(HookStage.PRECOMMIT, "jdoe@EXAMPLE.COM", "new-password")
    if code != 0:
        print(f"Sync failed: {hook.last_error}")
"""

from krb5sync.core.types import Operation, Principal
from krb5sync.core.config import SyncConfig, load_config
from krb5sync.core.exceptions import SyncError
from krb5sync.api import SyncContext, sync_chpass, sync_postcommit_password, sync_status
from krb5sync.hook import HookStage, KadmHook

__version__ = "0.1.0"

__all__ = [
    # Dispatch
    "SyncContext",
    "sync_chpass",
    "sync_status",
    "sync_postcommit_password",
    # Hook
    "HookStage",
    "KadmHook",
    # Types
    "Operation",
    "Principal",
    "SyncConfig",
    "SyncError",
    "load_config",
    # Metadata
    "__version__",
]
