"""
krb5sync Active Directory Module

Remote side of synchronization.

Components:
- client: Password and account status pushes over LDAPS, with domain
  controllers found through DNS SRV records when none is configured
"""

from krb5sync.ad.client import (
    UF_ACCOUNTDISABLE,
    ADSyncClient,
    RemoteSyncClient,
    account_control,
    ad_principal_for,
    gssapi_available,
)

__all__ = [
    "UF_ACCOUNTDISABLE",
    "ADSyncClient",
    "RemoteSyncClient",
    "account_control",
    "ad_principal_for",
    "gssapi_available",
]
