"""
krbgss GSS Module

GSSAPI security contexts for the Kerberos V5 mechanism (RFC 4121).

Components:
- initiator: Client-side handshake
- acceptor: Server-side handshake
- context: Established context and MIC tokens
- sequence: Receive-side replay and ordering window
- config: Initiator and acceptor configuration
"""

from krbgss.gss.config import AcceptorConfig, InitiatorConfig, DEFAULT_CLOCK_SKEW
from krbgss.gss.sequence import SequenceWindow
from krbgss.gss.context import SecurityContext
from krbgss.gss.initiator import Initiator, InitiatorStateMachine, create_initiator
from krbgss.gss.acceptor import (
    Acceptor,
    AcceptorStateMachine,
    Accepted,
    Rejected,
    Fatal,
    create_acceptor,
)

__all__ = [
    # Configuration
    "AcceptorConfig",
    "InitiatorConfig",
    "DEFAULT_CLOCK_SKEW",
    # Context
    "SecurityContext",
    "SequenceWindow",
    # Initiator
    "Initiator",
    "InitiatorStateMachine",
    "create_initiator",
    # Acceptor
    "Acceptor",
    "AcceptorStateMachine",
    "Accepted",
    "Rejected",
    "Fatal",
    "create_acceptor",
]
