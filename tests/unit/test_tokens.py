"""
Unit tests for krbgss.kerberos.tokens and krbgss.kerberos.messages.

Tests the GSS token framing, the MIC token layout and the authenticator
checksum.
"""

import struct

import pytest
from asn1crypto import core, parser

from krbgss.core.exceptions import AuthenticityFailure, ProtocolViolation
from krbgss.core.types import ContextFlag, Key, Principal, Timestamp
from krbgss.kerberos.messages import (
    GSS_CHECKSUM_LENGTH,
    build_gss_checksum,
    parse_gss_checksum,
    seal_reply,
)
from krbgss.kerberos.tokens import (
    KRB5_OID,
    MICFlag,
    MICToken,
    TokenId,
    decode_token,
    encode_token,
)
from krbgss.kerberos.types import APReplyEncPart, KrbError


@pytest.fixture
def krb_error(service_principal, current_time) -> KrbError:
    return KrbError(
        error_code=37,
        server=service_principal,
        server_time=Timestamp.from_datetime(current_time),
        error_text="Clock skew too great",
    )


class TestContextTokenFraming:
    """Tests for encode_token / decode_token."""

    def test_framing(self, krb_error):
        """Test the token is [APPLICATION 0] with the Kerberos OID and token id."""
        token = encode_token(krb_error)
        assert token[0] == 0x60
        oid = core.ObjectIdentifier(KRB5_OID).dump()
        _, _, _, _, contents, _ = parser.parse(token)
        assert contents.startswith(oid)
        assert contents[len(oid) : len(oid) + 2] == TokenId.KRB_ERROR.value

    def test_krb_error_decoded(self, krb_error):
        """Test a KRB-ERROR token decodes to the same fields."""
        decoded = decode_token(encode_token(krb_error))
        assert decoded.is_error
        assert not decoded.is_request and not decoded.is_reply
        assert decoded.message.error_code == 37
        assert decoded.message.error_text == "Clock skew too great"
        assert decoded.message.server == krb_error.server
        assert decoded.message.server_time == krb_error.server_time
        assert decoded.message.client is None

    def test_reply_token_id(self, current_time):
        """Test an AP-REP is framed with token id 02 00."""
        reply = seal_reply(APReplyEncPart(ctime=Timestamp.from_datetime(current_time)), Key.generate())
        decoded = decode_token(encode_token(reply))
        assert decoded.tok_id is TokenId.AP_REP
        assert decoded.is_reply

    def test_unknown_message_type(self):
        """Test only context messages can be framed."""
        with pytest.raises(TypeError):
            encode_token(object())

    def test_garbage(self):
        """Test random bytes are a protocol violation."""
        with pytest.raises(ProtocolViolation):
            decode_token(b"\x01\x02\x03")

    def test_empty(self):
        with pytest.raises(ProtocolViolation):
            decode_token(b"")

    def test_wrong_outer_tag(self, krb_error):
        """Test a token not wrapped in [APPLICATION 0] is refused."""
        token = encode_token(krb_error)
        _, _, _, _, contents, _ = parser.parse(token)
        with pytest.raises(ProtocolViolation):
            decode_token(parser.emit(1, 1, 1, contents))

    def test_wrong_mechanism(self, krb_error):
        """Test tokens for another mechanism are refused."""
        token = encode_token(krb_error)
        _, _, _, _, contents, _ = parser.parse(token)
        oid = core.ObjectIdentifier(KRB5_OID).dump()
        spnego = core.ObjectIdentifier("1.3.6.1.5.5.2").dump()
        with pytest.raises(ProtocolViolation):
            decode_token(parser.emit(1, 1, 0, spnego + contents[len(oid) :]))

    def test_unknown_token_id(self, krb_error):
        """Test an unknown token id is refused."""
        oid = core.ObjectIdentifier(KRB5_OID).dump()
        with pytest.raises(ProtocolViolation):
            decode_token(parser.emit(1, 1, 0, oid + b"\x09\x09" + b"\x30\x00"))

    def test_mic_id_in_context_token(self):
        """Test a per-message token id is not a context token."""
        oid = core.ObjectIdentifier(KRB5_OID).dump()
        with pytest.raises(ProtocolViolation):
            decode_token(parser.emit(1, 1, 0, oid + TokenId.MIC.value + b"\x30\x00"))

    def test_token_id_mismatch(self, krb_error):
        """Test a KRB-ERROR body labelled as an AP-REQ is refused."""
        token = encode_token(krb_error)
        _, _, _, _, contents, _ = parser.parse(token)
        oid = core.ObjectIdentifier(KRB5_OID).dump()
        body = contents[len(oid) + 2 :]
        with pytest.raises(ProtocolViolation):
            decode_token(parser.emit(1, 1, 0, oid + TokenId.AP_REQ.value + body))

    def test_truncated_body(self, krb_error):
        """Test a truncated Kerberos message is refused."""
        token = encode_token(krb_error)
        _, _, _, _, contents, _ = parser.parse(token)
        with pytest.raises(ProtocolViolation):
            decode_token(parser.emit(1, 1, 0, contents[:-5]))


class TestMICToken:
    """Tests for the RFC 4121 MIC token layout."""

    def test_header_layout(self):
        """Test 04 04, flags, five FF filler bytes and a big-endian sequence number."""
        token = MICToken(sequence_number=0x0102030405, sent_by_acceptor=True, checksum=b"x" * 12)
        data = token.marshal()
        assert data[:2] == b"\x04\x04"
        assert data[2] == MICFlag.SENT_BY_ACCEPTOR
        assert data[3:8] == b"\xff" * 5
        assert struct.unpack(">Q", data[8:16])[0] == 0x0102030405
        assert data[16:] == b"x" * 12

    def test_flags(self):
        token = MICToken(sequence_number=1, sent_by_acceptor=True, acceptor_subkey=True)
        assert token.flags == MICFlag.SENT_BY_ACCEPTOR | MICFlag.ACCEPTOR_SUBKEY

    def test_checksum_input(self):
        """Test the checksum covers the message followed by the header."""
        token = MICToken(sequence_number=7)
        assert token.checksum_input(b"msg") == b"msg" + token.header()

    def test_unmarshal(self):
        data = MICToken(sequence_number=9, acceptor_subkey=True, checksum=b"c" * 12).marshal()
        token = MICToken.unmarshal(data, expect_from_acceptor=False)
        assert token.sequence_number == 9
        assert token.acceptor_subkey
        assert not token.sent_by_acceptor
        assert token.checksum == b"c" * 12

    def test_too_short(self):
        with pytest.raises(ProtocolViolation):
            MICToken.unmarshal(b"\x04\x04\x00\xff", expect_from_acceptor=True)

    def test_wrong_token_id(self):
        data = b"\x05\x04" + MICToken(sequence_number=1).marshal()[2:]
        with pytest.raises(ProtocolViolation):
            MICToken.unmarshal(data, expect_from_acceptor=False)

    def test_bad_filler(self):
        data = bytearray(MICToken(sequence_number=1).marshal())
        data[4] = 0x00
        with pytest.raises(ProtocolViolation):
            MICToken.unmarshal(bytes(data), expect_from_acceptor=False)

    def test_direction_mismatch(self):
        """Test a token from the wrong side is an authenticity failure."""
        data = MICToken(sequence_number=1, sent_by_acceptor=True).marshal()
        with pytest.raises(AuthenticityFailure):
            MICToken.unmarshal(data, expect_from_acceptor=False)


class TestGSSChecksum:
    """Tests for the 0x8003 authenticator checksum."""

    def test_layout(self):
        """Test Lgth=16, zero bindings and little-endian flags."""
        value = build_gss_checksum(frozenset({ContextFlag.MUTUAL, ContextFlag.INTEGRITY}))
        assert len(value) == GSS_CHECKSUM_LENGTH
        assert value[:4] == b"\x10\x00\x00\x00"
        assert value[4:20] == b"\x00" * 16
        assert value[20:24] == b"\x22\x00\x00\x00"

    def test_parse(self):
        flags = frozenset({ContextFlag.REPLAY, ContextFlag.SEQUENCE})
        assert parse_gss_checksum(build_gss_checksum(flags)) == flags

    def test_parse_ignores_unknown_bits(self):
        value = struct.pack("<I", 16) + b"\x00" * 16 + struct.pack("<I", 0x1000 | 0x02)
        assert parse_gss_checksum(value) == frozenset({ContextFlag.MUTUAL})

    def test_parse_too_short(self):
        with pytest.raises(ProtocolViolation):
            parse_gss_checksum(b"\x10\x00\x00\x00")

    def test_parse_bad_length(self):
        value = struct.pack("<I", 8) + b"\x00" * 20
        with pytest.raises(ProtocolViolation):
            parse_gss_checksum(value)

    def test_bindings_must_be_16_bytes(self):
        with pytest.raises(ValueError):
            build_gss_checksum(frozenset(), bindings=b"\x00" * 8)
