"""
krbgss Core Types

Fundamental type definitions shared by the Kerberos message layer and the
GSSAPI security context.

Design Principles:
- Immutable: All types use frozen attrs for safety
- Validated: Type constraints enforced at construction
- Wire values live in enums; everything above the codec uses the enums
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import FrozenSet, Iterable, Optional, Tuple
import secrets

import attrs
from attrs import field, validators


# =============================================================================
# ENUMS
# =============================================================================


class Role(Enum):
    """Which side of the handshake a security context belongs to."""

    INITIATOR = "initiator"
    ACCEPTOR = "acceptor"


class EncryptionType(Enum):
    """
    Kerberos encryption types.

    Values match RFC 3961 / RFC 3962 assigned numbers.
    """

    AES256_CTS_HMAC_SHA1_96 = 18
    AES128_CTS_HMAC_SHA1_96 = 17

    @property
    def key_size(self) -> int:
        """Return key size in bytes for this encryption type."""
        sizes = {
            EncryptionType.AES256_CTS_HMAC_SHA1_96: 32,
            EncryptionType.AES128_CTS_HMAC_SHA1_96: 16,
        }
        return sizes[self]


class KeyUsage(IntEnum):
    """
    Key usage numbers (RFC 4120 section 7.5.1, RFC 4121 section 2).

    Every key derivation is salted with one of these so that material
    produced for one purpose can never be replayed as another.
    """

    KDC_REP_TICKET = 2
    AP_REQ_AUTHENTICATOR = 11
    AP_REP_ENCPART = 12
    ACCEPTOR_SEAL = 22
    ACCEPTOR_SIGN = 23
    INITIATOR_SEAL = 24
    INITIATOR_SIGN = 25


class SequenceOutcome(Enum):
    """Classification of an inbound per-message sequence number."""

    ACCEPT = "accept"
    GAP = "gap"
    DUPLICATE = "duplicate"
    STALE = "stale"
    UNSEQUENCED = "unsequenced"


class NameType(IntEnum):
    """Principal name types (RFC 4120 section 6.2)."""

    UNKNOWN = 0
    PRINCIPAL = 1
    SRV_INST = 2
    SRV_HST = 3


class ContextFlag(Enum):
    """
    GSSAPI context flags.

    Values are the bit positions used in the authenticator checksum
    (RFC 4121 section 4.1.1.1). Code outside the codec works with sets of
    members, never with the raw bits.
    """

    DELEGATE = 0x01
    MUTUAL = 0x02
    REPLAY = 0x04
    SEQUENCE = 0x08
    CONFIDENTIALITY = 0x10
    INTEGRITY = 0x20
    ANONYMOUS = 0x40


SUPPORTED_FLAGS: FrozenSet[ContextFlag] = frozenset(
    {
        ContextFlag.MUTUAL,
        ContextFlag.REPLAY,
        ContextFlag.SEQUENCE,
        ContextFlag.CONFIDENTIALITY,
        ContextFlag.INTEGRITY,
    }
)


def restrict_flags(flags: Iterable[ContextFlag]) -> FrozenSet[ContextFlag]:
    """Intersect requested flags with the set this package implements."""
    return frozenset(flags) & SUPPORTED_FLAGS


def flags_to_wire(flags: Iterable[ContextFlag]) -> int:
    """Encode a flag set as the 32-bit checksum flags field."""
    value = 0
    for flag in flags:
        value |= flag.value
    return value


def flags_from_wire(value: int) -> FrozenSet[ContextFlag]:
    """Decode the checksum flags field, ignoring bits we do not know."""
    return frozenset(flag for flag in ContextFlag if value & flag.value)


# =============================================================================
# IDENTITY TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Realm:
    """Kerberos realm. Stored uppercase."""

    name: str = field(converter=str.upper, validator=validators.min_len(1))

    def __str__(self) -> str:
        return self.name


@attrs.define(frozen=True, slots=True)
class Principal:
    """
    Kerberos principal.

    Format: name@realm where name may hold several components separated
    by "/" (e.g., host/server.example.com@EXAMPLE.COM).

    INVARIANT: name is non-empty
    """

    name: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    realm: Realm = field(validator=validators.instance_of(Realm))
    name_type: NameType = field(default=NameType.PRINCIPAL, eq=False)

    @classmethod
    def from_string(
        cls, principal_str: str, name_type: NameType = NameType.PRINCIPAL
    ) -> Principal:
        """
        Parse "name[/instance...]@REALM".

        The realm is everything after the last "@".
        """
        name, sep, realm = principal_str.rpartition("@")
        if not sep or not realm:
            raise ValueError(f"Invalid principal format: {principal_str}")
        return cls(name=name, realm=Realm(realm), name_type=name_type)

    @classmethod
    def from_components(
        cls,
        components: Iterable[str],
        realm: str,
        name_type: NameType = NameType.PRINCIPAL,
    ) -> Principal:
        """Build a principal from its name-string components."""
        return cls(name="/".join(components), realm=Realm(realm), name_type=name_type)

    @property
    def components(self) -> Tuple[str, ...]:
        """Name-string components as carried in a PrincipalName."""
        return tuple(self.name.split("/"))

    def __str__(self) -> str:
        return f"{self.name}@{self.realm}"


def service_principal(service: str, default_realm: Realm) -> Principal:
    """
    Resolve a target service name.

    Accepts GSSAPI host-based names ("host@server.example.com") and
    Kerberos principals ("host/server.example.com[@REALM]").
    """
    if "/" not in service and "@" in service:
        service = service.replace("@", "/", 1)

    if "@" in service:
        return Principal.from_string(service, name_type=NameType.SRV_HST)

    return Principal(name=service, realm=default_realm, name_type=NameType.SRV_HST)


# =============================================================================
# CRYPTOGRAPHIC TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Key:
    """Key block: an encryption type and its raw key material."""

    enctype: EncryptionType = field(validator=validators.instance_of(EncryptionType))
    material: bytes = field(validator=validators.instance_of(bytes), repr=False)

    @material.validator
    def _check_length(self, attribute: attrs.Attribute, value: bytes) -> None:
        if len(value) != self.enctype.key_size:
            raise ValueError(
                f"{self.enctype.name} keys are {self.enctype.key_size} bytes, got {len(value)}"
            )

    @classmethod
    def generate(cls, enctype: EncryptionType = EncryptionType.AES256_CTS_HMAC_SHA1_96) -> Key:
        """Fresh random key, e.g. a session key or subkey."""
        return cls(enctype=enctype, material=secrets.token_bytes(enctype.key_size))


@attrs.define(frozen=True, slots=True)
class Timestamp:
    """
    Kerberos timestamp: whole seconds plus a microsecond field.

    KerberosTime has no fractional part on the wire, so the sub-second
    component travels separately (cusec). Equality is exact on both.
    """

    time: datetime = field()
    usec: int = field(default=0, validator=validators.and_(
        validators.instance_of(int),
        validators.ge(0),
        validators.lt(1000000)
    ))

    def __attrs_post_init__(self) -> None:
        if self.time.tzinfo is None:
            raise ValueError("Timestamp requires a timezone-aware datetime")
        if self.time.microsecond:
            raise ValueError("Timestamp.time must have whole-second precision")

    @classmethod
    def from_datetime(cls, value: datetime) -> Timestamp:
        """Split a datetime into KerberosTime seconds and microseconds."""
        value = value.astimezone(timezone.utc)
        return cls(time=value.replace(microsecond=0), usec=value.microsecond)

    def as_datetime(self) -> datetime:
        """Recombine seconds and microseconds."""
        return self.time + timedelta(microseconds=self.usec)

    def is_within_skew(
        self, reference: datetime, skew: timedelta = timedelta(minutes=5)
    ) -> bool:
        """Check if timestamp is within acceptable clock skew of reference."""
        return abs(self.as_datetime() - reference) <= skew


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


# =============================================================================
# TICKET TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class TicketTimes:
    """
    Ticket validity times.

    INVARIANT: auth_time <= end_time
    """

    auth_time: datetime
    end_time: datetime
    start_time: Optional[datetime] = None
    renew_till: Optional[datetime] = None

    def __attrs_post_init__(self) -> None:
        if self.auth_time > self.end_time:
            raise ValueError("auth_time must be before end_time")

    @property
    def effective_start(self) -> datetime:
        return self.start_time or self.auth_time
