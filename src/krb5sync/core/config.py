"""
krb5sync Configuration

Typed settings for the plugin, loaded from a settings store.

The production store is the ``krb5-sync`` application section of
``[appdefaults]`` in krb5.conf, the same place kadmind plugins are normally
configured:

    [appdefaults]
        krb5-sync = {
            ad_realm = WIN.EXAMPLE.COM
            ad_queue_only = false
            queue_dir = /var/spool/krb5-sync
            EXAMPLE.COM = {
                ad_instances = root ipass
            }
        }

Settings in a realm subsection (keyed by the default realm) take precedence
over application-wide settings, which take precedence over realm-wide and
top-level ``[appdefaults]`` settings.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, Union

import attrs
import structlog

logger = structlog.get_logger()

APPLICATION = "krb5-sync"
DEFAULT_PROFILE = "/etc/krb5.conf"

_TRUE_VALUES = frozenset({"y", "yes", "true", "t", "1", "on"})
_FALSE_VALUES = frozenset({"n", "no", "false", "nil", "0", "off"})


def parse_bool(value: str, default: bool) -> bool:
    """Interpret a krb5 profile boolean, falling back to ``default``."""
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


# =============================================================================
# SETTINGS STORES
# =============================================================================


class SettingsStore(Protocol):
    """Source of raw configuration values."""

    def get_string(self, key: str) -> Optional[str]:
        ...

    def get_bool(self, key: str, default: bool) -> bool:
        ...

    def get_list(self, key: str) -> List[str]:
        ...


@attrs.define
class MappingSettings:
    """
    Settings backed by a plain mapping.

    Values may be strings, booleans or lists. Empty strings are treated as
    unset, as they are in krb5.conf.
    """

    values: Mapping[str, Any] = attrs.Factory(dict)

    def get_string(self, key: str) -> Optional[str]:
        value = self.values.get(key)
        if value is None or value == "":
            return None
        return str(value)

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.values.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        return parse_bool(str(value), default)

    def get_list(self, key: str) -> List[str]:
        value = self.values.get(key)
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        return [str(v) for v in value]


ProfileTree = Dict[str, Union[str, "ProfileTree"]]


def parse_profile(text: str) -> Dict[str, ProfileTree]:
    """
    Parse krb5 profile syntax into nested dictionaries.

    Returns a mapping of section name to its relations. Subsections become
    nested dictionaries. As with the Kerberos libraries, the first value of
    a repeated relation wins.
    """
    sections: Dict[str, ProfileTree] = {}
    stack: List[ProfileTree] = []

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line[0] in "#;":
            continue
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip()
            stack = [sections.setdefault(section, {})]
            continue
        if line == "}":
            if len(stack) <= 1:
                raise ValueError(f"line {lineno}: unbalanced closing brace")
            stack.pop()
            continue
        if not stack:
            raise ValueError(f"line {lineno}: relation outside of a section")
        if "=" not in line:
            raise ValueError(f"line {lineno}: expected 'name = value'")

        name, _, value = line.partition("=")
        name, value = name.strip(), value.strip()
        current = stack[-1]
        if value == "{":
            child = current.get(name)
            if not isinstance(child, dict):
                child = {}
                current[name] = child
            stack.append(child)
        else:
            current.setdefault(name, value)

    if len(stack) > 1:
        raise ValueError("unterminated subsection at end of profile")
    return sections


@attrs.define
class Krb5ConfSettings:
    """
    Settings read from krb5.conf ``[appdefaults]``.

    Example:
        store = Krb5ConfSettings.from_file("/etc/krb5.conf")
        config = load_config(store)
    """

    appdefaults: ProfileTree = attrs.Factory(dict)
    realm: Optional[str] = None
    application: str = APPLICATION

    @classmethod
    def from_file(cls, path: Optional[Union[str, Path]] = None) -> "Krb5ConfSettings":
        """
        Load settings from a profile file.

        The path defaults to ``$KRB5_CONFIG`` and then ``/etc/krb5.conf``.
        The default realm comes from ``[libdefaults] default_realm``.
        """
        if path is None:
            path = os.environ.get("KRB5_CONFIG") or DEFAULT_PROFILE
        text = Path(path).read_text(encoding="utf-8")
        sections = parse_profile(text)
        realm = sections.get("libdefaults", {}).get("default_realm")
        logger.debug("profile_loaded", path=str(path), realm=realm)
        return cls(
            appdefaults=sections.get("appdefaults", {}),
            realm=realm if isinstance(realm, str) else None,
        )

    def _lookup(self, key: str) -> Optional[str]:
        app = self.appdefaults.get(self.application)
        candidates: List[Any] = []
        if isinstance(app, dict):
            if self.realm is not None:
                realm_section = app.get(self.realm)
                if isinstance(realm_section, dict):
                    candidates.append(realm_section.get(key))
            candidates.append(app.get(key))
        if self.realm is not None:
            realm_section = self.appdefaults.get(self.realm)
            if isinstance(realm_section, dict):
                candidates.append(realm_section.get(key))
        candidates.append(self.appdefaults.get(key))

        for value in candidates:
            if isinstance(value, str):
                return value
        return None

    def get_string(self, key: str) -> Optional[str]:
        value = self._lookup(key)
        if not value:
            return None
        return value

    def get_bool(self, key: str, default: bool) -> bool:
        value = self._lookup(key)
        if value is None:
            return default
        return parse_bool(value, default)

    def get_list(self, key: str) -> List[str]:
        value = self._lookup(key)
        if value is None:
            return []
        return value.split()


# =============================================================================
# CONFIGURATION
# =============================================================================


@attrs.define(frozen=True)
class SyncConfig:
    """
    Plugin configuration.

    Attributes:
        ad_keytab: Keytab holding the AD service credentials
        ad_principal: Principal to authenticate to AD as
        ad_realm: Active Directory realm; synchronization is off without it
        ad_admin_server: AD server for LDAP operations
        ad_ldap_base: Search base for users in AD
        ad_instances: Instances allowed to propagate
        ad_base_instance: Instance whose password propagates to the base account
        ad_queue_only: Queue every change instead of pushing directly
        queue_dir: Directory holding queued changes
        syslog: Send informational messages to syslog
    """

    ad_keytab: Optional[str] = None
    ad_principal: Optional[str] = None
    ad_realm: Optional[str] = None
    ad_admin_server: Optional[str] = None
    ad_ldap_base: Optional[str] = None
    ad_instances: Tuple[str, ...] = attrs.field(default=(), converter=tuple)
    ad_base_instance: Optional[str] = None
    ad_queue_only: bool = False
    queue_dir: Optional[str] = None
    syslog: bool = True

    @property
    def status_sync_configured(self) -> bool:
        """True if every setting needed for account status sync is present."""
        return all(
            value is not None
            for value in (
                self.ad_admin_server,
                self.ad_keytab,
                self.ad_principal,
                self.ad_ldap_base,
                self.ad_realm,
            )
        )

    def missing(self, *settings: str) -> Optional[str]:
        """Return the first of ``settings`` that is unset, if any."""
        for setting in settings:
            if getattr(self, setting) is None:
                return setting
        return None


def load_config(store: SettingsStore) -> SyncConfig:
    """Build a ``SyncConfig`` from a settings store."""
    config = SyncConfig(
        ad_keytab=store.get_string("ad_keytab"),
        ad_principal=store.get_string("ad_principal"),
        ad_realm=store.get_string("ad_realm"),
        ad_admin_server=store.get_string("ad_admin_server"),
        ad_ldap_base=store.get_string("ad_ldap_base"),
        ad_instances=store.get_list("ad_instances"),
        ad_base_instance=store.get_string("ad_base_instance"),
        ad_queue_only=store.get_bool("ad_queue_only", False),
        queue_dir=store.get_string("queue_dir"),
        syslog=store.get_bool("syslog", True),
    )
    logger.debug(
        "config_loaded",
        ad_realm=config.ad_realm,
        queue_dir=config.queue_dir,
        queue_only=config.ad_queue_only,
    )
    return config
