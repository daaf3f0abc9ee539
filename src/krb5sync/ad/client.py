"""
krb5sync Active Directory Client

Pushes password changes and account status to Active Directory.

Both operations authenticate with the configured keytab through GSSAPI,
bind to AD over LDAPS with SASL/Kerberos, and locate the user by
userPrincipalName under the configured search base (by default the
naming context of the AD realm):

- Password: set unicodePwd with the Microsoft password-modify extension
- Status: flip the ACCOUNTDISABLE bit of userAccountControl

Requirements:
- ldap3 for the directory operations
- gssapi (and MIT Kerberos or Heimdal libraries) for keytab credentials
"""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Tuple

import attrs
import dns.exception
import dns.resolver
import structlog
from ldap3 import KERBEROS, MODIFY_REPLACE, NONE, SASL, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars
from returns.result import Failure, Result, Success

from krb5sync.core.config import SyncConfig
from krb5sync.core.exceptions import ConfigError, InternalError, RemoteError, SyncError
from krb5sync.core.types import Principal

logger = structlog.get_logger()

# Check if GSSAPI is available
try:
    import gssapi
    from gssapi import raw as gssapi_raw
    _gssapi_available = True
    _gssapi_error = None
except ImportError as e:
    gssapi = None  # type: ignore
    gssapi_raw = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)
except OSError as e:
    # gssapi installed but the Kerberos libraries could not be loaded
    gssapi = None  # type: ignore
    gssapi_raw = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)


def gssapi_available() -> bool:
    """Check if GSSAPI is available."""
    return _gssapi_available


# Memory credential cache holding the AD service credentials.
CACHE_NAME = "MEMORY:krb5_sync"

# userAccountControl flag marking a disabled account.
UF_ACCOUNTDISABLE = 0x0002

# SRV record advertising the LDAP service of a domain's controllers.
DC_SRV_TEMPLATE = "_ldap._tcp.dc._msdcs.{realm}"


# =============================================================================
# REMOTE SYNC PROTOCOL
# =============================================================================


class RemoteSyncClient(Protocol):
    """
    Pushes changes to the secondary identity store.

    Implementations report every failure as a ``Failure``; callers treat
    all failures alike and fall back to queuing.
    """

    def push_password(self, principal: Principal, password: str) -> Result[None, SyncError]:
        ...

    def push_status(self, principal: Principal, enabled: bool) -> Result[None, SyncError]:
        ...


def ad_principal_for(config: SyncConfig, principal: Principal) -> Principal:
    """
    Map a local principal to its Active Directory principal.

    A principal whose instance is the configured base instance maps to the
    base account; every other principal keeps its components. The realm is
    always replaced with the AD realm.
    """
    if (
        config.ad_base_instance is not None
        and principal.num_components == 2
        and principal.instance == config.ad_base_instance
    ):
        return Principal(components=(principal.name,), realm=config.ad_realm)
    return principal.with_realm(config.ad_realm)


def account_control(current: int, enabled: bool) -> int:
    """New userAccountControl value for the requested account status."""
    if enabled:
        return current & ~UF_ACCOUNTDISABLE
    return current | UF_ACCOUNTDISABLE


# =============================================================================
# ACTIVE DIRECTORY CLIENT
# =============================================================================


@attrs.define
class ADSyncClient:
    """
    Active Directory implementation of ``RemoteSyncClient``.

    Example:
        client = ADSyncClient(config)
        result = client.push_status(Principal.parse("jdoe@EXAMPLE.COM"), False)
        if isinstance(result, Failure):
            print(result.failure())
    """

    config: SyncConfig
    port: int = 636
    use_ssl: bool = True
    timeout: int = 30

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def _require(self, *settings: str) -> Optional[ConfigError]:
        missing = self.config.missing(*settings)
        if missing is not None:
            return ConfigError.missing(missing)
        return None

    def _credentials(self) -> Result[Any, SyncError]:
        """Obtain initial credentials for ad_principal from ad_keytab."""
        error = self._require("ad_keytab", "ad_principal")
        if error is not None:
            return Failure(error)
        if not _gssapi_available:
            return Failure(RemoteError.with_detail("GSSAPI not available", _gssapi_error))

        try:
            name = gssapi.Name(self.config.ad_principal, gssapi.NameType.kerberos_principal)
            store = {"client_keytab": self.config.ad_keytab, "ccache": CACHE_NAME}
            acquired = gssapi_raw.acquire_cred_from(store, name=name, usage="initiate")
            return Success(gssapi.Credentials(base=acquired.creds))
        except gssapi.exceptions.GSSError as e:
            return Failure(
                RemoteError.with_detail(
                    f"cannot get credentials for {self.config.ad_principal}", e
                )
            )

    def search_base(self) -> str:
        """User search base: ad_ldap_base, or the naming context of ad_realm."""
        if self.config.ad_ldap_base is not None:
            return self.config.ad_ldap_base
        return ",".join(f"DC={part}" for part in self.config.ad_realm.lower().split("."))

    def _server_hosts(self) -> Result[List[str], SyncError]:
        """
        Hosts to bind to, in order of preference.

        Without ad_admin_server, the domain controllers advertised for
        ad_realm in DNS are tried, lowest SRV priority and then highest
        weight first.
        """
        if self.config.ad_admin_server is not None:
            return Success([self.config.ad_admin_server])
        error = self._require("ad_realm")
        if error is not None:
            return Failure(error)

        srv_name = DC_SRV_TEMPLATE.format(realm=self.config.ad_realm.lower())
        try:
            answers = dns.resolver.resolve(srv_name, "SRV")
        except dns.exception.DNSException as e:
            self._logger.debug("dc_lookup_failed", name=srv_name, error=str(e))
            answers = []

        records = sorted(answers, key=lambda r: (r.priority, -r.weight))
        hosts = [str(r.target).rstrip(".") for r in records]
        if not hosts:
            return Failure(ConfigError.missing("ad_admin_server"))
        self._logger.debug("dc_discovered", realm=self.config.ad_realm, servers=hosts)
        return Success(hosts)

    def _connect(self) -> Result[Connection, SyncError]:
        creds = self._credentials()
        if isinstance(creds, Failure):
            return Failure(creds.failure())
        hosts = self._server_hosts()
        if isinstance(hosts, Failure):
            return Failure(hosts.failure())

        last_error: Optional[SyncError] = None
        for host in hosts.unwrap():
            server = Server(
                host,
                port=self.port,
                use_ssl=self.use_ssl,
                get_info=NONE,
                connect_timeout=self.timeout,
            )
            try:
                connection = Connection(
                    server,
                    authentication=SASL,
                    sasl_mechanism=KERBEROS,
                    sasl_credentials=(None, None, creds.unwrap()),
                    receive_timeout=self.timeout,
                    raise_exceptions=True,
                    auto_bind=True,
                )
                self._logger.debug("ldap_bound", server=host)
                return Success(connection)
            except LDAPException as e:
                self._logger.debug("ldap_bind_failed", server=host, error=str(e))
                last_error = RemoteError.with_detail(f"LDAP bind to {host} failed", e)
        if last_error is None:
            return Failure(InternalError("no AD servers to bind to"))
        return Failure(last_error)

    def _find_user(
        self, connection: Connection, target: Principal
    ) -> Result[Tuple[str, List[bytes]], SyncError]:
        """Return the DN and raw userAccountControl values for a user."""
        search_filter = f"(userPrincipalName={escape_filter_chars(target.unparse())})"
        try:
            connection.search(
                search_base=self.search_base(),
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=["userAccountControl"],
            )
        except LDAPException as e:
            return Failure(
                RemoteError.with_detail(f'LDAP search for "{search_filter}" failed', e)
            )

        entries = [r for r in connection.response or [] if r.get("type") == "searchResEntry"]
        if not entries:
            return Failure(RemoteError(f'user "{target}" not found via LDAP'))
        entry = entries[0]
        values = entry.get("raw_attributes", {}).get("userAccountControl", [])
        return Success((entry["dn"], list(values)))

    def push_password(self, principal: Principal, password: str) -> Result[None, SyncError]:
        """
        Set a user's password in Active Directory.

        Args:
            principal: Local principal whose password changed
            password: New password

        Returns:
            Success(None) or Failure(SyncError)
        """
        error = self._require("ad_realm")
        if error is not None:
            return Failure(error)
        target = ad_principal_for(self.config, principal)

        connected = self._connect()
        if isinstance(connected, Failure):
            return Failure(connected.failure())
        connection = connected.unwrap()
        try:
            found = self._find_user(connection, target)
            if isinstance(found, Failure):
                return Failure(found.failure())
            dn, _ = found.unwrap()
            try:
                connection.extend.microsoft.modify_password(dn, password)
            except LDAPException as e:
                return Failure(
                    RemoteError.with_detail(f"password change failed for {target}", e)
                )
        finally:
            connection.unbind()

        self._logger.info("ad_password_changed", principal=str(target))
        return Success(None)

    def push_status(self, principal: Principal, enabled: bool) -> Result[None, SyncError]:
        """
        Enable or disable a user's account in Active Directory.

        Args:
            principal: Local principal whose status changed
            enabled: Whether the account should be enabled

        Returns:
            Success(None) or Failure(SyncError)
        """
        error = self._require("ad_realm", "ad_admin_server", "ad_ldap_base")
        if error is not None:
            return Failure(error)
        target = ad_principal_for(self.config, principal)

        connected = self._connect()
        if isinstance(connected, Failure):
            return Failure(connected.failure())
        connection = connected.unwrap()
        try:
            found = self._find_user(connection, target)
            if isinstance(found, Failure):
                return Failure(found.failure())
            dn, values = found.unwrap()
            if len(values) != 1:
                return Failure(
                    RemoteError(
                        f'expected one value for userAccountControl for user "{target}"'
                        f" and got {len(values)}"
                    )
                )
            try:
                current = int(values[0].decode("ascii"))
            except (UnicodeDecodeError, ValueError):
                return Failure(
                    RemoteError(
                        f'unable to parse userAccountControl for user "{target}"'
                        f" ({values[0]!r})"
                    )
                )

            control = account_control(current, enabled)
            try:
                connection.modify(dn, {"userAccountControl": [(MODIFY_REPLACE, [str(control)])]})
            except LDAPException as e:
                return Failure(
                    RemoteError.with_detail(
                        f'LDAP modification for user "{target}" failed', e
                    )
                )
        finally:
            connection.unbind()

        self._logger.info(
            "ad_status_changed",
            principal=str(target),
            enabled=enabled,
        )
        return Success(None)
