"""
krb5sync Kerberos Module

Local Kerberos database side of synchronization.

Components:
- directory: Principal existence lookups against the KDC database
- eligibility: Which principal changes propagate to AD
"""

from krb5sync.kerberos.directory import KadminDirectory, PrincipalDirectory
from krb5sync.kerberos.eligibility import instance_allowed, is_eligible

__all__ = [
    "KadminDirectory",
    "PrincipalDirectory",
    "instance_allowed",
    "is_eligible",
]
