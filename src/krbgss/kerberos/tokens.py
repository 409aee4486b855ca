"""
krbgss Token Codec

GSSAPI token formats for the Kerberos V5 mechanism:

Context tokens (RFC 2743 section 3.1, RFC 4121 section 4.1):

    [APPLICATION 0] IMPLICIT SEQUENCE {
        thisMech  OBJECT IDENTIFIER,   -- 1.2.840.113554.1.2.2
        innerToken                     -- TOK_ID (2 bytes) || Kerberos message
    }

MIC tokens (RFC 4121 section 4.2.6.1):

    04 04 | flags | FF FF FF FF FF | SND_SEQ (8, big-endian) | SGN_CKSUM
"""

from __future__ import annotations

import struct
from enum import Enum
from typing import Union

import attrs
from asn1crypto import core, parser

from krbgss.core.exceptions import AuthenticityFailure, ProtocolViolation
from krbgss.kerberos import messages
from krbgss.kerberos.types import APReply, APRequest, KrbError

KRB5_OID = "1.2.840.113554.1.2.2"

_APPLICATION = 1
_CONSTRUCTED = 1


class TokenId(Enum):
    """Two-byte token identifiers."""

    AP_REQ = b"\x01\x00"
    AP_REP = b"\x02\x00"
    KRB_ERROR = b"\x03\x00"
    MIC = b"\x04\x04"
    WRAP = b"\x05\x04"


_LOADERS = {
    TokenId.AP_REQ: messages.load_ap_request,
    TokenId.AP_REP: messages.load_ap_reply,
    TokenId.KRB_ERROR: messages.load_krb_error,
}


# =============================================================================
# CONTEXT TOKENS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class KRB5Token:
    """A decoded context-establishment token."""

    tok_id: TokenId
    message: Union[APRequest, APReply, KrbError]

    @property
    def is_request(self) -> bool:
        return self.tok_id is TokenId.AP_REQ

    @property
    def is_reply(self) -> bool:
        return self.tok_id is TokenId.AP_REP

    @property
    def is_error(self) -> bool:
        return self.tok_id is TokenId.KRB_ERROR


def encode_token(message: Union[APRequest, APReply, KrbError]) -> bytes:
    """
    Wrap a Kerberos message in the GSS InitialContextToken framing.

    The token id is chosen from the message type.
    """
    if isinstance(message, APRequest):
        tok_id = TokenId.AP_REQ
    elif isinstance(message, APReply):
        tok_id = TokenId.AP_REP
    elif isinstance(message, KrbError):
        tok_id = TokenId.KRB_ERROR
    else:
        raise TypeError(f"No token id for {type(message).__name__}")

    contents = (
        core.ObjectIdentifier(KRB5_OID).dump()
        + tok_id.value
        + messages.dump_message(message)
    )
    return parser.emit(_APPLICATION, _CONSTRUCTED, 0, contents)


def decode_token(data: bytes) -> KRB5Token:
    """
    Unwrap a context token and decode the Kerberos message inside.

    Raises:
        ProtocolViolation: framing, mechanism, token id or message is invalid
    """
    try:
        class_, _method, tag, _header, contents, _trailer = parser.parse(data, strict=True)
    except ValueError as e:
        raise ProtocolViolation(f"Malformed context token: {e}") from e

    if class_ != _APPLICATION or tag != 0:
        raise ProtocolViolation("Context token is not an InitialContextToken")

    try:
        oid_info = parser.parse(contents)
        oid_length = len(oid_info[3]) + len(oid_info[4])
        mech = core.ObjectIdentifier.load(contents[:oid_length]).dotted
    except (ValueError, TypeError) as e:
        raise ProtocolViolation(f"Malformed mechanism OID: {e}") from e

    if mech != KRB5_OID:
        raise ProtocolViolation(f"Unsupported mechanism {mech}")

    inner = contents[oid_length:]
    if len(inner) < 2:
        raise ProtocolViolation("Context token missing token id")

    try:
        tok_id = TokenId(inner[:2])
    except ValueError:
        raise ProtocolViolation(f"Unknown token id {inner[:2].hex()}") from None

    loader = _LOADERS.get(tok_id)
    if loader is None:
        raise ProtocolViolation(f"Token id {tok_id.name} is not a context token")

    return KRB5Token(tok_id=tok_id, message=loader(inner[2:]))


# =============================================================================
# MIC TOKENS
# =============================================================================


class MICFlag:
    """MIC token flag bits."""

    SENT_BY_ACCEPTOR = 0x01
    SEALED = 0x02
    ACCEPTOR_SUBKEY = 0x04


_MIC_HEADER = struct.Struct(">2sB5sQ")
MIC_HEADER_LENGTH = _MIC_HEADER.size
_FILLER = b"\xff" * 5


@attrs.define(frozen=True, slots=True)
class MICToken:
    """
    Per-message integrity token.

    The checksum covers the message followed by the 16-byte header, so the
    header fields (direction, subkey use, sequence number) are protected.
    """

    sequence_number: int
    sent_by_acceptor: bool = False
    acceptor_subkey: bool = False
    checksum: bytes = attrs.field(default=b"", repr=False)

    @property
    def flags(self) -> int:
        value = 0
        if self.sent_by_acceptor:
            value |= MICFlag.SENT_BY_ACCEPTOR
        if self.acceptor_subkey:
            value |= MICFlag.ACCEPTOR_SUBKEY
        return value

    def header(self) -> bytes:
        """The 16 header bytes that are also fed to the checksum."""
        return _MIC_HEADER.pack(TokenId.MIC.value, self.flags, _FILLER, self.sequence_number)

    def checksum_input(self, message: bytes) -> bytes:
        return message + self.header()

    def marshal(self) -> bytes:
        return self.header() + self.checksum

    @classmethod
    def unmarshal(cls, data: bytes, expect_from_acceptor: bool) -> MICToken:
        """
        Parse a MIC token.

        Raises:
            ProtocolViolation: token is truncated or has a bad header
            AuthenticityFailure: direction flag does not match the sender
                we expect
        """
        if len(data) < MIC_HEADER_LENGTH:
            raise ProtocolViolation("MIC token too short")

        tok_id, flags, filler, sequence_number = _MIC_HEADER.unpack_from(data)
        if tok_id != TokenId.MIC.value:
            raise ProtocolViolation(f"Not a MIC token: {tok_id.hex()}")
        if filler != _FILLER:
            raise ProtocolViolation("MIC token filler bytes are invalid")

        sent_by_acceptor = bool(flags & MICFlag.SENT_BY_ACCEPTOR)
        if sent_by_acceptor != expect_from_acceptor:
            raise AuthenticityFailure("MIC token direction does not match the peer")

        return cls(
            sequence_number=sequence_number,
            sent_by_acceptor=sent_by_acceptor,
            acceptor_subkey=bool(flags & MICFlag.ACCEPTOR_SUBKEY),
            checksum=data[MIC_HEADER_LENGTH:],
        )
