"""
krbgss Core Module

Provides foundational types and abstractions used by the Kerberos message
layer and the GSSAPI security context.

Components:
- types: Core type definitions (Principal, Key, Timestamp, ContextFlag, etc.)
- state_machine: Base state machine with invariant checking
- crypto: Usage-keyed encryption and checksums
- exceptions: Custom exception types
"""

from krbgss.core.types import (
    Role,
    Principal,
    Realm,
    EncryptionType,
    Key,
    KeyUsage,
    Timestamp,
    ContextFlag,
    SequenceOutcome,
    SUPPORTED_FLAGS,
)
from krbgss.core.state_machine import StateMachineBase, Transition
from krbgss.core.exceptions import (
    KrbGSSError,
    ProtocolViolation,
    CredentialFailure,
    PeerError,
    MutualAuthFailure,
    SequenceAnomaly,
    AuthenticityFailure,
    CryptoError,
    StateError,
    KerberosError,
)

__all__ = [
    # Types
    "Role",
    "Principal",
    "Realm",
    "EncryptionType",
    "Key",
    "KeyUsage",
    "Timestamp",
    "ContextFlag",
    "SequenceOutcome",
    "SUPPORTED_FLAGS",
    # State Machine
    "StateMachineBase",
    "Transition",
    # Exceptions
    "KrbGSSError",
    "ProtocolViolation",
    "CredentialFailure",
    "PeerError",
    "MutualAuthFailure",
    "SequenceAnomaly",
    "AuthenticityFailure",
    "CryptoError",
    "StateError",
    "KerberosError",
]
