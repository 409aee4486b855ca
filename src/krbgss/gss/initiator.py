"""
GSSAPI initiator (client side of the Kerberos V5 mechanism).

Handshake:

    NEW --initiate(service, flags)--> REQUEST_SENT --AP-REP--> ESTABLISHED
     |                                     |
     +--(no mutual auth)--> ESTABLISHED    +--(failure)--> NEW

The first call produces an AP-REQ token. With mutual authentication the
acceptor answers with an AP-REP that must echo our authenticator
timestamp exactly; that reply is fed back through a second initiate().
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Tuple

import attrs
import structlog
from returns.result import Failure

from krbgss.core.crypto import generate_sequence_number
from krbgss.core.exceptions import (
    CredentialFailure,
    CryptoError,
    KrbGSSError,
    MutualAuthFailure,
    PeerError,
    ProtocolViolation,
    StateError,
)
from krbgss.core.state_machine import StateMachineBase, TransitionEntry
from krbgss.core.types import (
    ContextFlag,
    Key,
    Role,
    Timestamp,
    restrict_flags,
    service_principal,
)
from krbgss.gss.config import InitiatorConfig
from krbgss.gss.context import ContextRole, SecurityContext
from krbgss.kerberos.credentials import CredentialSource
from krbgss.kerberos.messages import open_authenticator, open_reply, seal_authenticator
from krbgss.kerberos.tokens import decode_token, encode_token
from krbgss.kerberos.types import (
    APReply,
    APRequest,
    Authenticator,
    HandshakeFailed,
    HandshakeParams,
    InitiatorState,
    KrbError,
    MutualRequestSent,
    ReplyVerified,
    RequestSent,
)

logger = structlog.get_logger()


def established_has_keys(state: InitiatorState, params: HandshakeParams) -> bool:
    """An established handshake has a session key and both sequence origins."""
    if state is not InitiatorState.ESTABLISHED:
        return True
    return (
        params.session_key is not None
        and params.send_sequence is not None
        and params.base_sequence is not None
    )


# =============================================================================
# INITIATOR STATE MACHINE
# =============================================================================


@attrs.define
class InitiatorStateMachine(StateMachineBase[InitiatorState, Any, HandshakeParams]):
    """
    Initiator handshake state machine.

    States:
    - NEW: Nothing sent
    - REQUEST_SENT: AP-REQ sent, waiting for AP-REP
    - ESTABLISHED: Handshake complete
    """

    def initial_state(self) -> InitiatorState:
        return InitiatorState.NEW

    def transition_table(
        self,
    ) -> Dict[Tuple[InitiatorState, type], TransitionEntry]:
        return {
            (InitiatorState.NEW, MutualRequestSent): (
                InitiatorState.REQUEST_SENT,
                self._handle_request_sent,
            ),
            (InitiatorState.NEW, RequestSent): (
                InitiatorState.ESTABLISHED,
                self._handle_request_sent,
            ),
            (InitiatorState.REQUEST_SENT, ReplyVerified): (
                InitiatorState.ESTABLISHED,
                self._handle_reply_verified,
            ),
            (InitiatorState.REQUEST_SENT, HandshakeFailed): (
                InitiatorState.NEW,
                self._handle_failed,
            ),
        }

    @staticmethod
    def _handle_request_sent(event: Any, params: HandshakeParams) -> HandshakeParams:
        return event.params

    @staticmethod
    def _handle_reply_verified(event: ReplyVerified, params: HandshakeParams) -> HandshakeParams:
        return attrs.evolve(
            params,
            base_sequence=event.base_sequence,
            peer_subkey=event.peer_subkey,
        )

    @staticmethod
    def _handle_failed(event: HandshakeFailed, params: HandshakeParams) -> HandshakeParams:
        return HandshakeParams()


# =============================================================================
# INITIATOR
# =============================================================================


@attrs.define
class Initiator(ContextRole):
    """
    Client side of the GSSAPI Kerberos handshake.

    Example:
        initiator = Initiator(credentials=kdc)
        token, more = initiator.initiate(
            "HTTP@web.example.com", {ContextFlag.MUTUAL, ContextFlag.INTEGRITY}
        )
        # send token, receive reply
        if more:
            initiator.initiate("HTTP@web.example.com", flags, reply)
        mic = initiator.make_signature(b"hello")
    """

    credentials: CredentialSource
    config: InitiatorConfig = attrs.Factory(InitiatorConfig)
    security_context: SecurityContext = attrs.field(init=False)
    _state_machine: InitiatorStateMachine = attrs.field(init=False, alias="_state_machine")
    _logger: structlog.BoundLogger = attrs.field(
        factory=lambda: logger.bind(role=Role.INITIATOR.value), alias="_logger"
    )

    def __attrs_post_init__(self) -> None:
        self.security_context = SecurityContext(role=Role.INITIATOR, _logger=self._logger)
        self._state_machine = InitiatorStateMachine(
            _state=InitiatorState.NEW,
            _context=HandshakeParams(),
            _logger=self._logger,
        )
        self._state_machine.add_invariant("established_has_keys", established_has_keys)

    @property
    def state(self) -> InitiatorState:
        """Current handshake state."""
        return self._state_machine.state

    def export_trace_json(self) -> str:
        """Export the handshake transitions as JSON."""
        return self._state_machine.export_trace_json()

    def initiate(
        self,
        service: str,
        flags: Iterable[ContextFlag],
        token: Optional[bytes] = None,
    ) -> Tuple[Optional[bytes], bool]:
        """
        Drive the handshake one step.

        Args:
            service: Target service, "service@host" or "service/host[@REALM]"
            flags: Requested context flags
            token: None on the first call; the acceptor's reply afterwards

        Returns:
            (output token or None, whether another round trip is needed)

        Raises:
            CredentialFailure: no ticket could be obtained
            ProtocolViolation: unexpected token or call order
            PeerError: the acceptor answered with a KRB-ERROR
            MutualAuthFailure: the AP-REP did not prove the acceptor's identity
        """
        if self.security_context.established:
            return None, False

        if not token:
            return self._send_request(service, restrict_flags(flags))

        return self._receive_reply(token)

    def _advance(self, event: Any) -> InitiatorState:
        result = self._state_machine.process_event(event)
        if isinstance(result, Failure):
            raise StateError(result.failure())
        return result.unwrap()

    def _send_request(
        self, service: str, flags: frozenset
    ) -> Tuple[Optional[bytes], bool]:
        if self.state is InitiatorState.REQUEST_SENT:
            self._advance(HandshakeFailed(reason="handshake restarted"))

        target = service_principal(service, self.credentials.principal.realm)
        result = self.credentials.get_ticket(target)
        if isinstance(result, Failure):
            self._logger.warning("service_ticket_unavailable", service=str(target), reason=result.failure())
            raise CredentialFailure(f"Cannot obtain ticket for {target}: {result.failure()}")

        service_ticket = result.unwrap()
        session_key = service_ticket.session_key

        subkey = Key.generate(session_key.enctype) if self.config.use_subkey else None
        authenticator = Authenticator(
            client=service_ticket.client,
            ctime=Timestamp.from_datetime(self.config.clock()),
            flags=flags,
            subkey=subkey,
            seq_number=generate_sequence_number(),
        )
        mutual = ContextFlag.MUTUAL in flags
        request = APRequest(
            ticket=service_ticket.ticket,
            authenticator=seal_authenticator(authenticator, session_key),
            mutual_required=mutual,
        )

        # Read back exactly what went on the wire
        sent = open_authenticator(request.authenticator, session_key)

        params = HandshakeParams(
            peer_name=str(service_ticket.ticket.server),
            session_key=session_key,
            local_subkey=sent.subkey,
            flags=flags,
            ctime=sent.ctime,
            expiry=service_ticket.expiry,
            send_sequence=sent.seq_number,
        )
        output = encode_token(request)

        self._logger.info(
            "ap_request_sent",
            service=str(target),
            flags=sorted(flag.name for flag in flags),
            mutual=mutual,
        )

        if mutual:
            self._advance(MutualRequestSent(params=params))
            return output, True

        self._advance(RequestSent(params=attrs.evolve(params, base_sequence=sent.seq_number)))
        self.security_context.establish(self._state_machine.context)
        return output, False

    def _receive_reply(self, token: bytes) -> Tuple[Optional[bytes], bool]:
        if self.state is not InitiatorState.REQUEST_SENT:
            raise ProtocolViolation("No mutual authentication reply is expected")

        params = self._state_machine.context
        try:
            decoded = decode_token(token)
            if decoded.is_error:
                error: KrbError = decoded.message
                message = f"Peer returned Kerberos error {error.error_code}"
                if error.error_text:
                    message = f"{message}: {error.error_text}"
                raise PeerError(message, code=error.error_code)
            if not decoded.is_reply:
                raise ProtocolViolation(f"Expected AP-REP, got {decoded.tok_id.name}")

            reply: APReply = decoded.message
            try:
                part = open_reply(reply, params.session_key)
            except CryptoError as e:
                raise MutualAuthFailure(f"Cannot decrypt AP-REP: {e}") from e

            if part.ctime != params.ctime:
                raise MutualAuthFailure("AP-REP timestamp does not match the authenticator")
            if part.seq_number is None:
                raise ProtocolViolation("AP-REP carries no sequence number")

        except KrbGSSError as e:
            self._logger.warning("mutual_auth_failed", error=e.message)
            self._advance(HandshakeFailed(reason=e.message))
            raise

        self._advance(ReplyVerified(base_sequence=part.seq_number, peer_subkey=part.subkey))
        self.security_context.establish(self._state_machine.context)
        return None, False


def create_initiator(
    credentials: CredentialSource,
    use_subkey: bool = True,
) -> Initiator:
    """
    Create an Initiator.

    Args:
        credentials: Source of service tickets
        use_subkey: Send an initiator subkey in the authenticator

    Returns:
        Configured Initiator
    """
    return Initiator(credentials=credentials, config=InitiatorConfig(use_subkey=use_subkey))
