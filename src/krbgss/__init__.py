"""
krbgss - GSSAPI security contexts over Kerberos V5

Establishes mutually authenticated security contexts between an initiator
and an acceptor (RFC 4121) and protects individual messages with MIC
tokens checked against a sliding replay and sequencing window.

Example Usage:
    from krbgss import Acceptor, AcceptorConfig, ContextFlag, Initiator

    initiator = Initiator(credentials=kdc)
    acceptor = Acceptor(AcceptorConfig("HTTP/web.example.com@EXAMPLE.COM"))

    flags = {ContextFlag.MUTUAL, ContextFlag.REPLAY, ContextFlag.SEQUENCE}
    request, _ = initiator.initiate("HTTP@web.example.com", flags)
    reply, _ = acceptor.accept(request)
    initiator.initiate("HTTP@web.example.com", flags, reply)

    mic = initiator.make_signature(b"hello")
    acceptor.verify_signature(b"hello", mic)
"""

from krbgss.core.types import ContextFlag, Key, Principal, Realm, Role
from krbgss.core.exceptions import (
    KrbGSSError,
    ProtocolViolation,
    CredentialFailure,
    PeerError,
    MutualAuthFailure,
    SequenceAnomaly,
    DuplicateToken,
    StaleToken,
    UnsequencedToken,
    GapToken,
    AuthenticityFailure,
    StateError,
)
from krbgss.gss import (
    Acceptor,
    AcceptorConfig,
    Initiator,
    InitiatorConfig,
    SecurityContext,
)
from krbgss.kerberos import Keytab, SimulatedKDC

__version__ = "0.1.0"

__all__ = [
    # Main API
    "Initiator",
    "InitiatorConfig",
    "Acceptor",
    "AcceptorConfig",
    "SecurityContext",
    "Keytab",
    "SimulatedKDC",
    # Types
    "ContextFlag",
    "Key",
    "Principal",
    "Realm",
    "Role",
    # Errors
    "KrbGSSError",
    "ProtocolViolation",
    "CredentialFailure",
    "PeerError",
    "MutualAuthFailure",
    "SequenceAnomaly",
    "DuplicateToken",
    "StaleToken",
    "UnsequencedToken",
    "GapToken",
    "AuthenticityFailure",
    "StateError",
    # Metadata
    "__version__",
]
