"""
krbgss Exception Types

Custom exceptions for security context negotiation and per-message
protection errors.
"""

from typing import Optional

from krbgss.core.types import SequenceOutcome


class KrbGSSError(Exception):
    """Base exception for all krbgss errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ProtocolViolation(KrbGSSError):
    """
    Protocol-level error.

    A malformed token, a token of the wrong kind, or an operation invoked
    out of order.
    """

    pass


class CredentialFailure(KrbGSSError):
    """
    Credentials could not be obtained or were rejected.

    When the acceptor rejects an AP-REQ it produces a KRB-ERROR token for
    the peer; that token rides along in ``token`` so the caller can still
    send it.
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        token: Optional[bytes] = None,
    ) -> None:
        super().__init__(message, code)
        self.token = token


class PeerError(KrbGSSError):
    """
    The peer answered with a KRB-ERROR token.

    ``code`` is the Kerberos error code the peer reported.
    """

    pass


class MutualAuthFailure(KrbGSSError):
    """
    The acceptor failed to prove its identity in the AP-REP.
    """

    pass


class SequenceAnomaly(KrbGSSError):
    """
    A per-message token arrived out of the expected sequence.

    Subclasses identify the specific outcome of the sequence window.
    """

    outcome = SequenceOutcome.ACCEPT

    def __init__(self, sequence_number: int, message: Optional[str] = None) -> None:
        if message is None:
            message = f"{self.outcome.value} token (sequence number {sequence_number})"
        super().__init__(message)
        self.sequence_number = sequence_number


class DuplicateToken(SequenceAnomaly):
    """Token has already been seen."""

    outcome = SequenceOutcome.DUPLICATE


class StaleToken(SequenceAnomaly):
    """Token is older than the replay window."""

    outcome = SequenceOutcome.STALE


class UnsequencedToken(SequenceAnomaly):
    """Token is fresh but arrived after a later one."""

    outcome = SequenceOutcome.UNSEQUENCED


class GapToken(SequenceAnomaly):
    """One or more tokens were skipped before this one."""

    outcome = SequenceOutcome.GAP


class AuthenticityFailure(KrbGSSError):
    """
    Message integrity check failed.

    Either the checksum did not verify or the token claims to have been
    produced by the receiving side.
    """

    pass


class CryptoError(KrbGSSError):
    """
    Cryptographic operation failed.

    This indicates an error in encryption, decryption, or
    integrity verification.
    """

    pass


class StateError(KrbGSSError):
    """
    Invalid state transition.

    This indicates an attempt to perform an operation that is
    not valid in the current protocol state.
    """

    pass


class InvariantViolation(KrbGSSError):
    """
    Security invariant was violated.

    The handshake state machine refused to commit a transition whose
    result would leave the context inconsistent.
    """

    pass


class KeytabError(KrbGSSError):
    """Keytab is malformed or lacks the requested key."""

    pass


class ConfigurationError(KrbGSSError):
    """A credential file could not be located or configuration is invalid."""

    pass


class KerberosError(KrbGSSError):
    """
    Kerberos protocol error with standard error code.

    Maps to KRB-ERROR message types from RFC 4120.
    """

    # Standard Kerberos error codes
    KDC_ERR_NONE = 0
    KDC_ERR_C_PRINCIPAL_UNKNOWN = 6
    KDC_ERR_S_PRINCIPAL_UNKNOWN = 7
    KDC_ERR_ETYPE_NOSUPP = 14
    KRB_AP_ERR_BAD_INTEGRITY = 31
    KRB_AP_ERR_TKT_EXPIRED = 32
    KRB_AP_ERR_TKT_NYV = 33
    KRB_AP_ERR_REPEAT = 34
    KRB_AP_ERR_NOT_US = 35
    KRB_AP_ERR_BADMATCH = 36
    KRB_AP_ERR_SKEW = 37
    KRB_AP_ERR_BADADDR = 38
    KRB_AP_ERR_BADVERSION = 39
    KRB_AP_ERR_MSG_TYPE = 40
    KRB_AP_ERR_MODIFIED = 41
    KRB_AP_ERR_BADKEYVER = 44
    KRB_AP_ERR_NOKEY = 45
    KRB_ERR_GENERIC = 60

    ERROR_MESSAGES = {
        KDC_ERR_C_PRINCIPAL_UNKNOWN: "Client not found in Kerberos database",
        KDC_ERR_S_PRINCIPAL_UNKNOWN: "Server not found in Kerberos database",
        KDC_ERR_ETYPE_NOSUPP: "KDC has no support for encryption type",
        KRB_AP_ERR_BAD_INTEGRITY: "Integrity check on decrypted field failed",
        KRB_AP_ERR_TKT_EXPIRED: "Ticket expired",
        KRB_AP_ERR_TKT_NYV: "Ticket not yet valid",
        KRB_AP_ERR_REPEAT: "Request is a replay",
        KRB_AP_ERR_NOT_US: "The ticket isn't for us",
        KRB_AP_ERR_BADMATCH: "Ticket and authenticator don't match",
        KRB_AP_ERR_SKEW: "Clock skew too great",
        KRB_AP_ERR_MSG_TYPE: "Invalid msg type",
        KRB_AP_ERR_MODIFIED: "Message stream modified",
        KRB_AP_ERR_NOKEY: "Service key not available",
        KRB_ERR_GENERIC: "Generic error",
    }

    def __init__(self, code: int, message: Optional[str] = None) -> None:
        if message is None:
            message = self.ERROR_MESSAGES.get(code, f"Kerberos error {code}")
        super().__init__(message, code)
