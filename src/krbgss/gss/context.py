"""
GSSAPI security context.

Holds the keys, flags and sequence state negotiated by a handshake and
provides the per-message integrity services (MIC tokens, RFC 4121
section 4.2.6.1) once the context is established.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, Optional, Type

import attrs
import structlog

from krbgss.core import crypto
from krbgss.core.exceptions import (
    AuthenticityFailure,
    DuplicateToken,
    GapToken,
    InvariantViolation,
    SequenceAnomaly,
    StaleToken,
    StateError,
    UnsequencedToken,
)
from krbgss.core.types import (
    ContextFlag,
    Key,
    KeyUsage,
    Role,
    SequenceOutcome,
    Timestamp,
)
from krbgss.gss.sequence import SequenceWindow
from krbgss.kerberos.tokens import MICToken
from krbgss.kerberos.types import HandshakeParams

logger = structlog.get_logger()

SEQUENCE_ERRORS: Dict[SequenceOutcome, Type[SequenceAnomaly]] = {
    SequenceOutcome.DUPLICATE: DuplicateToken,
    SequenceOutcome.STALE: StaleToken,
    SequenceOutcome.UNSEQUENCED: UnsequencedToken,
    SequenceOutcome.GAP: GapToken,
}


@attrs.define
class SecurityContext:
    """
    One side of an authenticated conversation.

    Everything negotiated is written once, by establish(). Until then the
    signature services raise StateError.

    Example:
        token = ctx.make_signature(b"payload")
        peer_ctx.verify_signature(b"payload", token)
    """

    role: Role = attrs.field(validator=attrs.validators.instance_of(Role))
    _established: bool = attrs.field(default=False, alias="_established")
    _session_key: Optional[Key] = attrs.field(default=None, alias="_session_key", repr=False)
    _local_subkey: Optional[Key] = attrs.field(default=None, alias="_local_subkey", repr=False)
    _peer_subkey: Optional[Key] = attrs.field(default=None, alias="_peer_subkey", repr=False)
    _flags: FrozenSet[ContextFlag] = attrs.field(factory=frozenset, alias="_flags")
    _peer_name: str = attrs.field(default="", alias="_peer_name")
    _ctime: Optional[Timestamp] = attrs.field(default=None, alias="_ctime")
    _expiry: Optional[datetime] = attrs.field(default=None, alias="_expiry")
    _send_sequence: int = attrs.field(default=0, alias="_send_sequence")
    _base_sequence: int = attrs.field(default=0, alias="_base_sequence")
    _window: Optional[SequenceWindow] = attrs.field(default=None, alias="_window")
    _logger: structlog.BoundLogger = attrs.field(default=None, alias="_logger")

    def __attrs_post_init__(self) -> None:
        if self._logger is None:
            self._logger = logger.bind(role=self.role.value)

    # -------------------------------------------------------------------------
    # Read-only view
    # -------------------------------------------------------------------------

    @property
    def established(self) -> bool:
        return self._established

    @property
    def is_acceptor(self) -> bool:
        return self.role is Role.ACCEPTOR

    @property
    def session_key(self) -> Optional[Key]:
        return self._session_key

    @property
    def local_subkey(self) -> Optional[Key]:
        return self._local_subkey

    @property
    def peer_subkey(self) -> Optional[Key]:
        return self._peer_subkey

    @property
    def flags(self) -> FrozenSet[ContextFlag]:
        return self._flags

    @property
    def peer_name(self) -> str:
        return self._peer_name

    @property
    def ctime(self) -> Optional[Timestamp]:
        return self._ctime

    @property
    def expiry(self) -> Optional[datetime]:
        """When the underlying ticket expires. Not enforced here."""
        return self._expiry

    @property
    def send_sequence(self) -> int:
        return self._send_sequence

    @property
    def base_sequence(self) -> int:
        return self._base_sequence

    @property
    def window(self) -> Optional[SequenceWindow]:
        return self._window

    # -------------------------------------------------------------------------
    # Establishment
    # -------------------------------------------------------------------------

    def establish(self, params: HandshakeParams) -> None:
        """
        Commit negotiated values and mark the context established.

        Raises:
            StateError: context is already established
            InvariantViolation: params lack a session key or sequence numbers
        """
        if self._established:
            raise StateError("Security context is already established")
        if params.session_key is None:
            raise InvariantViolation("Cannot establish a context without a session key")
        if params.send_sequence is None or params.base_sequence is None:
            raise InvariantViolation("Cannot establish a context without sequence numbers")

        self._session_key = params.session_key
        self._local_subkey = params.local_subkey
        self._peer_subkey = params.peer_subkey
        self._flags = frozenset(params.flags)
        self._peer_name = params.peer_name or ""
        self._ctime = params.ctime
        self._expiry = params.expiry
        self._send_sequence = params.send_sequence
        self._base_sequence = params.base_sequence
        self._window = SequenceWindow(base=params.base_sequence)
        self._established = True

        self._logger.info(
            "context_established",
            peer=self._peer_name,
            flags=sorted(flag.name for flag in self._flags),
            expiry=self._expiry.isoformat() if self._expiry else None,
            local_subkey=self._local_subkey is not None,
            peer_subkey=self._peer_subkey is not None,
        )

    def _require_established(self) -> None:
        if not self._established:
            raise StateError("Security context is not established")

    # -------------------------------------------------------------------------
    # Per-message integrity
    # -------------------------------------------------------------------------

    def make_signature(self, message: bytes) -> bytes:
        """
        Produce a MIC token over message.

        Signed with the local subkey when there is one, else the session
        key, and stamped with the next send sequence number.
        """
        self._require_established()

        if self.is_acceptor:
            usage = KeyUsage.ACCEPTOR_SIGN
        else:
            usage = KeyUsage.INITIATOR_SIGN

        key = self._local_subkey or self._session_key

        token = MICToken(
            sequence_number=self._send_sequence,
            sent_by_acceptor=self.is_acceptor,
            acceptor_subkey=self.is_acceptor and self._local_subkey is not None,
        )
        checksum = crypto.compute_checksum(key, usage, token.checksum_input(message))
        signature = attrs.evolve(token, checksum=checksum).marshal()

        self._send_sequence += 1
        return signature

    def verify_signature(self, message: bytes, token: bytes) -> None:
        """
        Check a MIC token produced by the peer.

        The sequence number is recorded in the window before the checksum
        is verified.

        Raises:
            StateError: context is not established
            ProtocolViolation: token is malformed
            SequenceAnomaly: duplicate, stale, reordered or gapped token
            AuthenticityFailure: checksum mismatch or wrong direction
        """
        self._require_established()

        mic = MICToken.unmarshal(token, expect_from_acceptor=not self.is_acceptor)

        outcome = self._window.classify(
            mic.sequence_number,
            replay=ContextFlag.REPLAY in self._flags,
            sequence=ContextFlag.SEQUENCE in self._flags,
        )
        if outcome is not SequenceOutcome.ACCEPT:
            self._logger.warning(
                "sequence_anomaly", outcome=outcome.value, sequence_number=mic.sequence_number
            )
            raise SEQUENCE_ERRORS[outcome](mic.sequence_number)

        if self.is_acceptor:
            usage = KeyUsage.INITIATOR_SIGN
        else:
            usage = KeyUsage.ACCEPTOR_SIGN

        key = self._peer_subkey or self._session_key

        if not crypto.verify_checksum(key, usage, mic.checksum_input(message), mic.checksum):
            self._logger.warning("signature_invalid", sequence_number=mic.sequence_number)
            raise AuthenticityFailure("MIC token checksum does not match")


class ContextRole:
    """
    Exposes the security context of a handshake role.

    Subclasses provide a ``security_context`` attribute.
    """

    security_context: SecurityContext

    @property
    def established(self) -> bool:
        return self.security_context.established

    @property
    def peer_name(self) -> str:
        return self.security_context.peer_name

    @property
    def expiry(self) -> Optional[datetime]:
        return self.security_context.expiry

    @property
    def flags(self) -> FrozenSet[ContextFlag]:
        return self.security_context.flags

    def make_signature(self, message: bytes) -> bytes:
        return self.security_context.make_signature(message)

    def verify_signature(self, message: bytes, token: bytes) -> None:
        self.security_context.verify_signature(message, token)
