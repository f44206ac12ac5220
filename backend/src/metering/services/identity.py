"""Caller identity resolution.

A caller is either an authenticated account (by e-mail) or an anonymous
client (by network address). Both forms are normalized so that the same
caller always maps to the same usage row.
"""
import enum
import ipaddress
from dataclasses import dataclass

import structlog

from metering.exceptions import IdentityValidationError

logger = structlog.get_logger(__name__)

UNKNOWN_ADDRESS = "unknown"


class IdentityKind(enum.Enum):
    EMAIL = "email"
    IP_ADDRESS = "ip_address"


@dataclass(frozen=True)
class Identity:
    """Subject of usage accounting."""

    kind: IdentityKind
    value: str

    @property
    def is_email(self) -> bool:
        return self.kind is IdentityKind.EMAIL

    @classmethod
    def email(cls, value: str) -> "Identity":
        return cls(IdentityKind.EMAIL, normalize_email(value))

    @classmethod
    def ip(cls, value: str | None) -> "Identity":
        return cls(IdentityKind.IP_ADDRESS, normalize_ip(value))


def normalize_email(value: str) -> str:
    """
    Lower-case and trim an e-mail address.

    Raises:
        IdentityValidationError: If the value is not shaped like an address
    """
    email = (value or "").strip().lower()
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain or " " in email:
        raise IdentityValidationError("Invalid email format", value=value)
    return email


def normalize_ip(value: str | None) -> str:
    """
    Normalize a network address.

    IPv6-mapped IPv4 addresses (``::ffff:1.2.3.4``) collapse to their IPv4
    form. A missing address maps to a shared ``"unknown"`` bucket.

    Raises:
        IdentityValidationError: If the value is not an IP address
    """
    raw = (value or "").strip()
    if not raw or raw == UNKNOWN_ADDRESS:
        return UNKNOWN_ADDRESS
    try:
        address = ipaddress.ip_address(raw)
    except ValueError as e:
        raise IdentityValidationError("Invalid IP address format", value=value) from e
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return str(address.ipv4_mapped)
    return str(address)


def client_address(forwarded_for: str | None, peer_host: str | None) -> str | None:
    """Originating client address: first ``X-Forwarded-For`` hop, else the socket peer."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return peer_host


def address_identity(forwarded_for: str | None, peer_host: str | None) -> Identity:
    """
    Network-address identity of a caller.

    Tries the first ``X-Forwarded-For`` hop, then the socket peer. Values
    that do not parse as an address are logged and skipped; with nothing
    usable the caller lands in the shared ``"unknown"`` bucket.
    """
    candidates = (("forwarded_for", client_address(forwarded_for, None)), ("peer", peer_host))
    for source, candidate in candidates:
        if not candidate:
            continue
        try:
            return Identity.ip(candidate)
        except IdentityValidationError:
            logger.warning("client_address_invalid", source=source, value=candidate)
    return Identity.ip(UNKNOWN_ADDRESS)


def resolve_identity(
    email: str | None,
    forwarded_for: str | None = None,
    peer_host: str | None = None,
) -> Identity:
    """
    Classify an inbound caller.

    An e-mail containing ``@`` wins; anything else falls back to the
    caller's network address.
    """
    if email and "@" in email:
        return Identity.email(email)
    return address_identity(forwarded_for, peer_host)
