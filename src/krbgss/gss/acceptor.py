"""
GSSAPI acceptor (server side of the Kerberos V5 mechanism).

Handshake:

    NEW --(collaborators wired)--> AWAITING_REQUEST --valid AP-REQ--> ESTABLISHED
                                          ^    |
                                          +----+ rejected AP-REQ (KRB-ERROR token)

A single accept() call completes the handshake. When the initiator asked
for mutual authentication the returned AP-REP echoes the authenticator
timestamp and carries the acceptor's initial sequence number.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, Union

import attrs
import structlog
from returns.result import Failure

from krbgss.core.crypto import generate_sequence_number
from krbgss.core.exceptions import (
    CredentialFailure,
    KerberosError,
    KrbGSSError,
    PeerError,
    ProtocolViolation,
    StateError,
)
from krbgss.core.state_machine import StateMachineBase, TransitionEntry
from krbgss.core.types import Key, Role, Timestamp, restrict_flags
from krbgss.gss.config import AcceptorConfig
from krbgss.gss.context import ContextRole, SecurityContext
from krbgss.kerberos.messages import seal_reply
from krbgss.kerberos.ticket import KeytabTicketValidator, TicketValidator
from krbgss.kerberos.tokens import decode_token, encode_token
from krbgss.kerberos.types import (
    AcceptorReady,
    AcceptorState,
    APReplyEncPart,
    APRequest,
    HandshakeParams,
    KrbError,
    RequestAccepted,
    RequestRejected,
    ValidatedRequest,
)

logger = structlog.get_logger()


# =============================================================================
# VALIDATION OUTCOMES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Accepted:
    """The AP-REQ is genuine."""

    request: ValidatedRequest


@attrs.define(frozen=True, slots=True)
class Rejected:
    """The AP-REQ was refused; token is the KRB-ERROR to send back."""

    error: KerberosError
    token: bytes


@attrs.define(frozen=True, slots=True)
class Fatal:
    """Validation could not run (e.g. no keytab). Nothing to send back."""

    error: KrbGSSError


ValidationOutcome = Union[Accepted, Rejected, Fatal]


def established_has_keys(state: AcceptorState, params: HandshakeParams) -> bool:
    """An established handshake has a session key and both sequence origins."""
    if state is not AcceptorState.ESTABLISHED:
        return True
    return (
        params.session_key is not None
        and params.send_sequence is not None
        and params.base_sequence is not None
    )


# =============================================================================
# ACCEPTOR STATE MACHINE
# =============================================================================


@attrs.define
class AcceptorStateMachine(StateMachineBase[AcceptorState, Any, HandshakeParams]):
    """
    Acceptor handshake state machine.

    States:
    - NEW: Created, collaborators not yet wired
    - AWAITING_REQUEST: Ready for an AP-REQ
    - ESTABLISHED: Handshake complete
    """

    def initial_state(self) -> AcceptorState:
        return AcceptorState.NEW

    def transition_table(
        self,
    ) -> Dict[Tuple[AcceptorState, type], TransitionEntry]:
        return {
            (AcceptorState.NEW, AcceptorReady): (
                AcceptorState.AWAITING_REQUEST,
                self._handle_unchanged,
            ),
            (AcceptorState.AWAITING_REQUEST, RequestRejected): (
                AcceptorState.AWAITING_REQUEST,
                self._handle_unchanged,
            ),
            (AcceptorState.AWAITING_REQUEST, RequestAccepted): (
                AcceptorState.ESTABLISHED,
                self._handle_request_accepted,
            ),
        }

    @staticmethod
    def _handle_unchanged(event: Any, params: HandshakeParams) -> HandshakeParams:
        return params

    @staticmethod
    def _handle_request_accepted(
        event: RequestAccepted, params: HandshakeParams
    ) -> HandshakeParams:
        return event.params


# =============================================================================
# ACCEPTOR
# =============================================================================


@attrs.define
class Acceptor(ContextRole):
    """
    Server side of the GSSAPI Kerberos handshake.

    Example:
        acceptor = Acceptor(AcceptorConfig("HTTP/web.example.com@EXAMPLE.COM"))
        try:
            reply, _ = acceptor.accept(token)
        except CredentialFailure as e:
            send(e.token)  # KRB-ERROR for the initiator
            raise
        if reply:
            send(reply)
    """

    config: AcceptorConfig
    validator: Optional[TicketValidator] = None
    security_context: SecurityContext = attrs.field(init=False)
    _state_machine: AcceptorStateMachine = attrs.field(init=False, alias="_state_machine")
    _logger: structlog.BoundLogger = attrs.field(
        factory=lambda: logger.bind(role=Role.ACCEPTOR.value), alias="_logger"
    )

    def __attrs_post_init__(self) -> None:
        if self.validator is None:
            self.validator = KeytabTicketValidator(
                service=self.config.service_principal,
                keytab_path=self.config.keytab_path,
                fs=self.config.fs,
                environ=self.config.environ,
                replay_cache=self.config.replay_cache,
                _logger=self._logger,
            )

        self.security_context = SecurityContext(role=Role.ACCEPTOR, _logger=self._logger)
        self._state_machine = AcceptorStateMachine(
            _state=AcceptorState.NEW,
            _context=HandshakeParams(),
            _logger=self._logger,
        )
        self._state_machine.add_invariant("established_has_keys", established_has_keys)
        self._advance(AcceptorReady(service=str(self.config.service_principal)))

    @property
    def state(self) -> AcceptorState:
        """Current handshake state."""
        return self._state_machine.state

    def export_trace_json(self) -> str:
        """Export the handshake transitions as JSON."""
        return self._state_machine.export_trace_json()

    def _advance(self, event: Any) -> AcceptorState:
        result = self._state_machine.process_event(event)
        if isinstance(result, Failure):
            raise StateError(result.failure())
        return result.unwrap()

    def validate(self, request: APRequest) -> ValidationOutcome:
        """Run the ticket validator and tag its outcome."""
        now = self.config.clock()
        try:
            result = self.validator.validate(request, self.config.clock_skew, now)
        except KrbGSSError as e:
            self._logger.error("ap_request_validation_failed", error=e.message)
            return Fatal(error=e)

        if isinstance(result, Failure):
            error: KerberosError = result.failure()
            krb_error = KrbError(
                error_code=error.code,
                server=request.ticket.server,
                server_time=Timestamp.from_datetime(now),
                error_text=error.message,
            )
            return Rejected(error=error, token=encode_token(krb_error))

        return Accepted(request=result.unwrap())

    def accept(self, token: bytes) -> Tuple[Optional[bytes], bool]:
        """
        Process the initiator's AP-REQ.

        Returns:
            (AP-REP token or None, False)

        Raises:
            ProtocolViolation: token is malformed or not an AP-REQ
            PeerError: the initiator sent a KRB-ERROR
            CredentialFailure: the AP-REQ was rejected; ``token`` holds
                the KRB-ERROR for the initiator
            ConfigurationError, KeytabError: the service key is unavailable
        """
        if self.security_context.established:
            return None, False

        decoded = decode_token(token)
        if decoded.is_error:
            error: KrbError = decoded.message
            raise PeerError(f"Peer returned Kerberos error {error.error_code}", code=error.error_code)
        if not decoded.is_request:
            raise ProtocolViolation(f"Expected AP-REQ, got {decoded.tok_id.name}")

        outcome = self.validate(decoded.message)

        if isinstance(outcome, Fatal):
            raise outcome.error

        if isinstance(outcome, Rejected):
            self._advance(
                RequestRejected(error_code=outcome.error.code, reason=outcome.error.message)
            )
            raise CredentialFailure(
                outcome.error.message, code=outcome.error.code, token=outcome.token
            )

        return self._establish(outcome.request)

    def _establish(self, validated: ValidatedRequest) -> Tuple[Optional[bytes], bool]:
        authenticator = validated.authenticator
        base_sequence = authenticator.seq_number or 0

        params = HandshakeParams(
            peer_name=str(validated.client),
            session_key=validated.session_key,
            peer_subkey=authenticator.subkey,
            flags=restrict_flags(authenticator.flags),
            ctime=authenticator.ctime,
            expiry=validated.end_time,
            base_sequence=base_sequence,
            send_sequence=base_sequence,
        )

        output = None
        if validated.mutual_required:
            send_sequence = generate_sequence_number()
            subkey = None
            if self.config.use_subkey:
                subkey = Key.generate(validated.session_key.enctype)

            reply = seal_reply(
                APReplyEncPart(ctime=authenticator.ctime, subkey=subkey, seq_number=send_sequence),
                validated.session_key,
            )
            output = encode_token(reply)
            params = attrs.evolve(params, send_sequence=send_sequence, local_subkey=subkey)

        self._advance(RequestAccepted(params=params))
        self.security_context.establish(self._state_machine.context)

        self._logger.info(
            "ap_request_accepted",
            client=params.peer_name,
            mutual=validated.mutual_required,
        )

        return output, False


def create_acceptor(
    service_principal: str,
    keytab_path: Optional[str] = None,
    use_subkey: bool = False,
) -> Acceptor:
    """
    Create an Acceptor.

    Args:
        service_principal: e.g. "HTTP/web.example.com@EXAMPLE.COM"
        keytab_path: Keytab file; $KRB5_KTNAME or /etc/krb5.keytab when omitted
        use_subkey: Return an acceptor subkey in the AP-REP

    Returns:
        Configured Acceptor
    """
    return Acceptor(
        config=AcceptorConfig(
            service_principal=service_principal,
            keytab_path=keytab_path,
            use_subkey=use_subkey,
        )
    )
