"""
krbgss Kerberos Types

Kerberos V5 AP exchange messages (RFC 4120) and the handshake state
machine vocabulary shared by both GSSAPI roles.

These are the typed forms of the messages; the ASN.1 encoding lives in
krbgss.kerberos.messages.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum, auto
from typing import FrozenSet, Optional

import attrs
from attrs import field, validators

from krbgss.core.types import (
    ContextFlag,
    EncryptionType,
    Key,
    Principal,
    TicketTimes,
    Timestamp,
)


class MessageType(IntEnum):
    """Kerberos message types used by the AP exchange."""

    AP_REQ = 14
    AP_REP = 15
    KRB_ERROR = 30


class TicketFlag(Enum):
    """Ticket flags (RFC 4120 section 5.3). Values are ASN.1 bit names."""

    FORWARDABLE = "forwardable"
    FORWARDED = "forwarded"
    PROXIABLE = "proxiable"
    PROXY = "proxy"
    MAY_POSTDATE = "may-postdate"
    POSTDATED = "postdated"
    INVALID = "invalid"
    RENEWABLE = "renewable"
    INITIAL = "initial"
    PRE_AUTHENT = "pre-authent"
    HW_AUTHENT = "hw-authent"
    TRANSITED_POLICY_CHECKED = "transited-policy-checked"
    OK_AS_DELEGATE = "ok-as-delegate"


# =============================================================================
# MESSAGES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class EncryptedData:
    """Ciphertext tagged with the encryption type and key version."""

    etype: EncryptionType
    cipher: bytes = field(repr=False)
    kvno: Optional[int] = None


@attrs.define(frozen=True, slots=True)
class Ticket:
    """
    Service ticket as carried on the wire.

    Only the server name travels in the clear; everything else is in
    enc_part, sealed with the service's long-term key.
    """

    server: Principal
    enc_part: EncryptedData


@attrs.define(frozen=True, slots=True)
class EncTicketPart:
    """Decrypted service ticket contents."""

    session_key: Key
    client: Principal
    times: TicketTimes
    flags: FrozenSet[TicketFlag] = field(factory=frozenset)


@attrs.define(frozen=True, slots=True)
class Authenticator:
    """
    Kerberos authenticator.

    Proves possession of the ticket session key. For GSSAPI the checksum
    field carries the requested context flags (RFC 4121 section 4.1.1).
    """

    client: Principal
    ctime: Timestamp
    flags: FrozenSet[ContextFlag] = field(factory=frozenset)
    subkey: Optional[Key] = None
    seq_number: Optional[int] = None


@attrs.define(frozen=True, slots=True)
class APRequest:
    """
    AP-REQ: Application Protocol Request (Initiator -> Acceptor).
    """

    ticket: Ticket
    authenticator: EncryptedData
    mutual_required: bool = False


@attrs.define(frozen=True, slots=True)
class APReply:
    """
    AP-REP: Application Protocol Reply (Acceptor -> Initiator).

    Confirms mutual authentication.
    """

    enc_part: EncryptedData


@attrs.define(frozen=True, slots=True)
class APReplyEncPart:
    """Encrypted portion of AP-REP."""

    ctime: Timestamp
    subkey: Optional[Key] = None
    seq_number: Optional[int] = None


@attrs.define(frozen=True, slots=True)
class KrbError:
    """KRB-ERROR message."""

    error_code: int
    server: Principal
    server_time: Timestamp
    error_text: Optional[str] = None
    client: Optional[Principal] = None
    client_time: Optional[Timestamp] = None


# =============================================================================
# VALIDATION RESULT
# =============================================================================


@attrs.define(frozen=True, slots=True)
class ValidatedRequest:
    """
    An AP-REQ whose ticket and authenticator have both been verified.
    """

    ticket: EncTicketPart
    authenticator: Authenticator
    mutual_required: bool

    @property
    def client(self) -> Principal:
        return self.ticket.client

    @property
    def session_key(self) -> Key:
        return self.ticket.session_key

    @property
    def end_time(self) -> datetime:
        return self.ticket.times.end_time


# =============================================================================
# HANDSHAKE STATES
# =============================================================================


class InitiatorState(Enum):
    """Initiator handshake states."""

    NEW = auto()
    REQUEST_SENT = auto()
    ESTABLISHED = auto()


class AcceptorState(Enum):
    """Acceptor handshake states."""

    NEW = auto()
    AWAITING_REQUEST = auto()
    ESTABLISHED = auto()


@attrs.define(frozen=True, slots=True)
class HandshakeParams:
    """
    Values negotiated during a handshake.

    Staged here while the handshake is in progress and copied into the
    security context only when the handshake reaches ESTABLISHED.
    """

    peer_name: Optional[str] = None
    session_key: Optional[Key] = None
    local_subkey: Optional[Key] = None
    peer_subkey: Optional[Key] = None
    flags: FrozenSet[ContextFlag] = field(factory=frozenset)
    ctime: Optional[Timestamp] = None
    expiry: Optional[datetime] = None
    send_sequence: Optional[int] = None
    base_sequence: Optional[int] = None


# =============================================================================
# INITIATOR EVENTS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class MutualRequestSent:
    """Event: AP-REQ sent with mutual-required; waiting for AP-REP."""

    params: HandshakeParams


@attrs.define(frozen=True, slots=True)
class RequestSent:
    """Event: AP-REQ sent without mutual authentication."""

    params: HandshakeParams


@attrs.define(frozen=True, slots=True)
class ReplyVerified:
    """Event: AP-REP decrypted and its timestamp matched."""

    base_sequence: int
    peer_subkey: Optional[Key] = None


@attrs.define(frozen=True, slots=True)
class HandshakeFailed:
    """Event: the handshake was abandoned."""

    reason: str


# =============================================================================
# ACCEPTOR EVENTS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class AcceptorReady:
    """Event: collaborators are wired; waiting for the AP-REQ."""

    service: str


@attrs.define(frozen=True, slots=True)
class RequestRejected:
    """Event: AP-REQ validation failed with a Kerberos error."""

    error_code: int = field(validator=validators.instance_of(int))
    reason: str = ""


@attrs.define(frozen=True, slots=True)
class RequestAccepted:
    """Event: AP-REQ validated; the context is established."""

    params: HandshakeParams
