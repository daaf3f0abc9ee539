"""
krb5sync Core Types

Principal names and synchronization operations shared by the filter, the
queue and the remote client.

Design Principles:
- Immutable: principals and operations are frozen values
- Faithful: parsing and unparsing follow the Kerberos text representation,
  including backslash escapes, so queue files round-trip through the tools
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

import attrs
from attrs import field, validators


# Target system tag used in queue file names and contents.
DOMAIN_AD = "ad"

# Characters that must be escaped inside a principal component.
_ESCAPES = {
    "\\": "\\\\",
    "/": "\\/",
    "@": "\\@",
    "\n": "\\n",
    "\t": "\\t",
    "\b": "\\b",
    "\0": "\\0",
}
_UNESCAPES = {"n": "\n", "t": "\t", "b": "\b", "0": "\0"}


# =============================================================================
# OPERATIONS
# =============================================================================


class Operation(Enum):
    """
    A synchronization operation recorded in the queue.

    ``enable`` and ``disable`` are two states of the same account flag, so
    they share one conflict key: a queued disable blocks a later enable and
    the reverse.
    """

    PASSWORD = "password"
    ENABLE = "enable"
    DISABLE = "disable"

    @property
    def conflict_key(self) -> str:
        """Key used in queue file names for conflict detection."""
        if self is Operation.DISABLE:
            return Operation.ENABLE.value
        return self.value

    @property
    def has_payload(self) -> bool:
        return self is Operation.PASSWORD

    @classmethod
    def for_status(cls, enabled: bool) -> "Operation":
        return cls.ENABLE if enabled else cls.DISABLE


# =============================================================================
# PRINCIPALS
# =============================================================================


def _escape(component: str, special: str = "\\/@\n\t\b\0") -> str:
    return "".join(_ESCAPES[c] if c in special else c for c in component)


@attrs.define(frozen=True, slots=True)
class Principal:
    """
    Kerberos principal name.

    Format: comp1/comp2@REALM (e.g., jdoe/root@EXAMPLE.COM)

    INVARIANT: at least one component
    """

    components: Tuple[str, ...] = field(
        converter=tuple,
        validator=validators.min_len(1),
    )
    realm: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> Principal:
        """
        Parse a principal from its text representation.

        Examples:
            "jdoe@EXAMPLE.COM" -> Principal(("jdoe",), "EXAMPLE.COM")
            "jdoe/root@EXAMPLE.COM" -> Principal(("jdoe", "root"), "EXAMPLE.COM")
            "odd\\/name" -> Principal(("odd/name",), None)
        """
        components = []
        current = []
        realm: Optional[str] = None
        i = 0
        while i < len(text):
            char = text[i]
            if char == "\\":
                if i + 1 >= len(text):
                    raise ValueError(f"Trailing backslash in principal: {text!r}")
                escaped = text[i + 1]
                current.append(_UNESCAPES.get(escaped, escaped))
                i += 2
                continue
            if char == "/" and realm is None:
                components.append("".join(current))
                current = []
            elif char == "@" and realm is None:
                components.append("".join(current))
                current = []
                realm = ""
            else:
                current.append(char)
            i += 1

        if realm is None:
            components.append("".join(current))
        else:
            realm = "".join(current)
            if not realm:
                raise ValueError(f"Empty realm in principal: {text!r}")

        if not components[0]:
            raise ValueError(f"Empty name in principal: {text!r}")
        return cls(components=components, realm=realm)

    @property
    def name(self) -> str:
        """First component of the principal."""
        return self.components[0]

    @property
    def instance(self) -> Optional[str]:
        """Second component of the principal, if any."""
        if len(self.components) < 2:
            return None
        return self.components[1]

    @property
    def num_components(self) -> int:
        return len(self.components)

    @property
    def short_name(self) -> str:
        """Text representation with the realm removed."""
        return "/".join(_escape(c) for c in self.components)

    @property
    def queue_name(self) -> str:
        """
        Name safe for use in a queue file name.

        Component separators become periods. Escaped separators keep their
        backslash, so "a\\/b" and "a/b" stay distinct.
        """
        return self.short_name.replace("/", ".")

    def with_realm(self, realm: Optional[str]) -> Principal:
        return Principal(components=self.components, realm=realm)

    def with_instance(self, instance: str) -> Principal:
        """Principal formed by this name plus ``instance`` as second part."""
        return Principal(components=(self.name, instance), realm=self.realm)

    def unparse(self) -> str:
        if self.realm is None:
            return self.short_name
        realm = _escape(self.realm, special="\\@")
        return f"{self.short_name}@{realm}"

    def __str__(self) -> str:
        return self.unparse()
