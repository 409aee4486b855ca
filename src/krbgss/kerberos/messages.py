"""
krbgss Kerberos Message Codec

Converts between the typed AP exchange messages in krbgss.kerberos.types
and their DER encoding, and seals/opens the encrypted parts:

- Ticket enc-part        key usage 2  (service long-term key)
- Authenticator          key usage 11 (ticket session key)
- AP-REP enc-part        key usage 12 (ticket session key)

Malformed input raises ProtocolViolation. Integrity failures while opening
an encrypted part raise CryptoError, which callers map to the Kerberos
error that fits their step.
"""

from __future__ import annotations

import struct
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterator, Optional, Union

from krbgss.core import crypto
from krbgss.core.exceptions import ProtocolViolation
from krbgss.core.types import (
    ContextFlag,
    EncryptionType,
    Key,
    KeyUsage,
    NameType,
    Principal,
    TicketTimes,
    Timestamp,
    flags_from_wire,
    flags_to_wire,
)
from krbgss.kerberos import asn1
from krbgss.kerberos.types import (
    APReply,
    APReplyEncPart,
    APRequest,
    Authenticator,
    EncryptedData,
    EncTicketPart,
    KrbError,
    MessageType,
    Ticket,
    TicketFlag,
)

# RFC 4121 section 4.1.1: authenticator checksum carrying GSS flags
GSS_CHECKSUM_TYPE = 0x8003
GSS_CHECKSUM_LENGTH = 24
_BINDINGS_LENGTH = 16

# seq-number is a UInt32 (RFC 4120 section 5.2.4)
SEQ_NUMBER_MAX = 0xFFFFFFFF

Message = Union[APRequest, APReply, KrbError]


@contextmanager
def _decoding(what: str) -> Iterator[None]:
    """Map parser failures to ProtocolViolation."""
    try:
        yield
    except ProtocolViolation:
        raise
    except (ValueError, TypeError, KeyError) as e:
        raise ProtocolViolation(f"Malformed {what}: {e}") from e


def _seq_number_from(value: Optional[int]) -> Optional[int]:
    """seq-number is a krb5uint32."""
    if value is not None and not 0 <= value <= SEQ_NUMBER_MAX:
        raise ProtocolViolation(f"Sequence number {value} out of range")
    return value


# =============================================================================
# GSS AUTHENTICATOR CHECKSUM
# =============================================================================


def build_gss_checksum(
    flags: FrozenSet[ContextFlag], bindings: bytes = b"\x00" * _BINDINGS_LENGTH
) -> bytes:
    """
    Build the 0x8003 checksum value.

    Layout: Lgth (4, LE) = 16 || Bnd (16) || Flags (4, LE)
    """
    if len(bindings) != _BINDINGS_LENGTH:
        raise ValueError("Channel binding hash must be 16 bytes")
    return struct.pack("<I", _BINDINGS_LENGTH) + bindings + struct.pack("<I", flags_to_wire(flags))


def parse_gss_checksum(value: bytes) -> FrozenSet[ContextFlag]:
    """Extract the requested context flags from a 0x8003 checksum value."""
    if len(value) < GSS_CHECKSUM_LENGTH:
        raise ProtocolViolation("GSS checksum too short")
    (length,) = struct.unpack_from("<I", value, 0)
    if length != _BINDINGS_LENGTH:
        raise ProtocolViolation(f"Unexpected channel binding length {length}")
    (wire_flags,) = struct.unpack_from("<I", value, 20)
    return flags_from_wire(wire_flags)


# =============================================================================
# FIELD HELPERS
# =============================================================================


def _principal_to_native(principal: Principal) -> Dict[str, Any]:
    return {
        "name-type": int(principal.name_type),
        "name-string": list(principal.components),
    }


def _principal_from_native(name: Dict[str, Any], realm: str) -> Principal:
    try:
        name_type = NameType(name["name-type"])
    except ValueError:
        name_type = NameType.UNKNOWN
    return Principal.from_components(name["name-string"], realm, name_type)


def _key_to_native(key: Key) -> Dict[str, Any]:
    return {"keytype": key.enctype.value, "keyvalue": key.material}


def _key_from_native(value: Optional[Dict[str, Any]]) -> Optional[Key]:
    if value is None:
        return None
    return Key(enctype=EncryptionType(value["keytype"]), material=value["keyvalue"])


def _enc_to_native(enc: EncryptedData) -> Dict[str, Any]:
    return {"etype": enc.etype.value, "kvno": enc.kvno, "cipher": enc.cipher}


def _enc_from_native(value: Dict[str, Any]) -> EncryptedData:
    return EncryptedData(
        etype=EncryptionType(value["etype"]),
        cipher=value["cipher"],
        kvno=value["kvno"],
    )


def _timestamp_from(time: datetime, usec: int) -> Timestamp:
    return Timestamp(time=time.replace(microsecond=0), usec=usec)


def _check_message_type(native: Dict[str, Any], expected: MessageType) -> None:
    if native["pvno"] != asn1.PVNO:
        raise ProtocolViolation(f"Unsupported protocol version {native['pvno']}")
    if native["msg-type"] != expected:
        raise ProtocolViolation(
            f"Expected {expected.name} message, got type {native['msg-type']}"
        )


# =============================================================================
# TICKETS
# =============================================================================


def _ticket_to_native(ticket: Ticket) -> Dict[str, Any]:
    return {
        "tkt-vno": asn1.PVNO,
        "realm": ticket.server.realm.name,
        "sname": _principal_to_native(ticket.server),
        "enc-part": _enc_to_native(ticket.enc_part),
    }


def _ticket_from_native(value: Dict[str, Any]) -> Ticket:
    if value["tkt-vno"] != asn1.PVNO:
        raise ProtocolViolation(f"Unsupported ticket version {value['tkt-vno']}")
    return Ticket(
        server=_principal_from_native(value["sname"], value["realm"]),
        enc_part=_enc_from_native(value["enc-part"]),
    )


def seal_ticket(
    part: EncTicketPart, server: Principal, service_key: Key, kvno: Optional[int] = None
) -> Ticket:
    """Encrypt ticket contents under the service's long-term key."""
    times = part.times
    plaintext = asn1.EncTicketPart(
        {
            "flags": {flag.value for flag in part.flags},
            "key": _key_to_native(part.session_key),
            "crealm": part.client.realm.name,
            "cname": _principal_to_native(part.client),
            "transited": {"tr-type": 0, "contents": b""},
            "authtime": times.auth_time.replace(microsecond=0),
            "starttime": times.start_time.replace(microsecond=0) if times.start_time else None,
            "endtime": times.end_time.replace(microsecond=0),
            "renew-till": times.renew_till.replace(microsecond=0) if times.renew_till else None,
        }
    ).dump()

    cipher = crypto.encrypt(service_key, KeyUsage.KDC_REP_TICKET, plaintext)
    return Ticket(
        server=server,
        enc_part=EncryptedData(etype=service_key.enctype, cipher=cipher, kvno=kvno),
    )


def open_ticket(ticket: Ticket, service_key: Key) -> EncTicketPart:
    """
    Decrypt a ticket with the service's long-term key.

    Raises:
        CryptoError: ticket was not sealed with this key
        ProtocolViolation: decrypted contents are malformed
    """
    plaintext = crypto.decrypt(service_key, KeyUsage.KDC_REP_TICKET, ticket.enc_part.cipher)

    with _decoding("ticket"):
        native = asn1.EncTicketPart.load(plaintext).native
        times = TicketTimes(
            auth_time=native["authtime"],
            start_time=native["starttime"],
            end_time=native["endtime"],
            renew_till=native["renew-till"],
        )
        known = {flag.value for flag in TicketFlag}
        return EncTicketPart(
            session_key=_key_from_native(native["key"]),
            client=_principal_from_native(native["cname"], native["crealm"]),
            times=times,
            flags=frozenset(TicketFlag(name) for name in native["flags"] if name in known),
        )


# =============================================================================
# AUTHENTICATOR
# =============================================================================


def seal_authenticator(authenticator: Authenticator, session_key: Key) -> EncryptedData:
    """Encode and encrypt an authenticator with the ticket session key."""
    plaintext = asn1.Authenticator(
        {
            "authenticator-vno": asn1.PVNO,
            "crealm": authenticator.client.realm.name,
            "cname": _principal_to_native(authenticator.client),
            "cksum": {
                "cksumtype": GSS_CHECKSUM_TYPE,
                "checksum": build_gss_checksum(authenticator.flags),
            },
            "cusec": authenticator.ctime.usec,
            "ctime": authenticator.ctime.time,
            "subkey": _key_to_native(authenticator.subkey) if authenticator.subkey else None,
            "seq-number": authenticator.seq_number,
        }
    ).dump()

    cipher = crypto.encrypt(session_key, KeyUsage.AP_REQ_AUTHENTICATOR, plaintext)
    return EncryptedData(etype=session_key.enctype, cipher=cipher)


def open_authenticator(enc: EncryptedData, session_key: Key) -> Authenticator:
    """
    Decrypt an authenticator with the ticket session key.

    Raises:
        CryptoError: authenticator was not sealed with this key
        ProtocolViolation: decrypted contents are malformed
    """
    plaintext = crypto.decrypt(session_key, KeyUsage.AP_REQ_AUTHENTICATOR, enc.cipher)

    with _decoding("authenticator"):
        native = asn1.Authenticator.load(plaintext).native
        flags: FrozenSet[ContextFlag] = frozenset()
        cksum = native["cksum"]
        if cksum is not None and cksum["cksumtype"] == GSS_CHECKSUM_TYPE:
            flags = parse_gss_checksum(cksum["checksum"])

        return Authenticator(
            client=_principal_from_native(native["cname"], native["crealm"]),
            ctime=_timestamp_from(native["ctime"], native["cusec"]),
            flags=flags,
            subkey=_key_from_native(native["subkey"]),
            seq_number=_seq_number_from(native["seq-number"]),
        )


# =============================================================================
# AP-REP
# =============================================================================


def seal_reply(part: APReplyEncPart, session_key: Key) -> APReply:
    """Encrypt the AP-REP enc-part with the ticket session key."""
    plaintext = asn1.EncAPRepPart(
        {
            "ctime": part.ctime.time,
            "cusec": part.ctime.usec,
            "subkey": _key_to_native(part.subkey) if part.subkey else None,
            "seq-number": part.seq_number,
        }
    ).dump()

    cipher = crypto.encrypt(session_key, KeyUsage.AP_REP_ENCPART, plaintext)
    return APReply(enc_part=EncryptedData(etype=session_key.enctype, cipher=cipher))


def open_reply(reply: APReply, session_key: Key) -> APReplyEncPart:
    """
    Decrypt the AP-REP enc-part.

    Raises:
        CryptoError: reply was not sealed with this key
        ProtocolViolation: decrypted contents are malformed
    """
    plaintext = crypto.decrypt(session_key, KeyUsage.AP_REP_ENCPART, reply.enc_part.cipher)

    with _decoding("AP-REP enc-part"):
        native = asn1.EncAPRepPart.load(plaintext).native
        return APReplyEncPart(
            ctime=_timestamp_from(native["ctime"], native["cusec"]),
            subkey=_key_from_native(native["subkey"]),
            seq_number=_seq_number_from(native["seq-number"]),
        )


# =============================================================================
# TOP-LEVEL MESSAGES
# =============================================================================


def dump_message(message: Message) -> bytes:
    """DER-encode an AP-REQ, AP-REP or KRB-ERROR."""
    if isinstance(message, APRequest):
        return asn1.AP_REQ(
            {
                "pvno": asn1.PVNO,
                "msg-type": MessageType.AP_REQ.value,
                "ap-options": {"mutual-required"} if message.mutual_required else set(),
                "ticket": _ticket_to_native(message.ticket),
                "authenticator": _enc_to_native(message.authenticator),
            }
        ).dump()

    if isinstance(message, APReply):
        return asn1.AP_REP(
            {
                "pvno": asn1.PVNO,
                "msg-type": MessageType.AP_REP.value,
                "enc-part": _enc_to_native(message.enc_part),
            }
        ).dump()

    if isinstance(message, KrbError):
        client = message.client
        return asn1.KRB_ERROR(
            {
                "pvno": asn1.PVNO,
                "msg-type": MessageType.KRB_ERROR.value,
                "ctime": message.client_time.time if message.client_time else None,
                "cusec": message.client_time.usec if message.client_time else None,
                "stime": message.server_time.time,
                "susec": message.server_time.usec,
                "error-code": message.error_code,
                "crealm": client.realm.name if client else None,
                "cname": _principal_to_native(client) if client else None,
                "realm": message.server.realm.name,
                "sname": _principal_to_native(message.server),
                "e-text": message.error_text,
            }
        ).dump()

    raise TypeError(f"Cannot encode {type(message).__name__}")


def load_ap_request(data: bytes) -> APRequest:
    """Decode a DER AP-REQ."""
    with _decoding("AP-REQ"):
        native = asn1.AP_REQ.load(data).native
        _check_message_type(native, MessageType.AP_REQ)
        return APRequest(
            ticket=_ticket_from_native(native["ticket"]),
            authenticator=_enc_from_native(native["authenticator"]),
            mutual_required="mutual-required" in native["ap-options"],
        )


def load_ap_reply(data: bytes) -> APReply:
    """Decode a DER AP-REP."""
    with _decoding("AP-REP"):
        native = asn1.AP_REP.load(data).native
        _check_message_type(native, MessageType.AP_REP)
        return APReply(enc_part=_enc_from_native(native["enc-part"]))


def load_krb_error(data: bytes) -> KrbError:
    """Decode a DER KRB-ERROR."""
    with _decoding("KRB-ERROR"):
        native = asn1.KRB_ERROR.load(data).native
        _check_message_type(native, MessageType.KRB_ERROR)

        client = None
        if native["cname"] is not None and native["crealm"] is not None:
            client = _principal_from_native(native["cname"], native["crealm"])

        client_time = None
        if native["ctime"] is not None:
            client_time = _timestamp_from(native["ctime"], native["cusec"] or 0)

        return KrbError(
            error_code=native["error-code"],
            server=_principal_from_native(native["sname"], native["realm"]),
            server_time=_timestamp_from(native["stime"], native["susec"]),
            error_text=native["e-text"],
            client=client,
            client_time=client_time,
        )
