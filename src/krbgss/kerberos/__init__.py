"""
krbgss Kerberos Module

Kerberos V5 (RFC 4120) pieces of the GSSAPI mechanism (RFC 4121).

Components:
- types: Message, state and event types
- asn1: DER structures for the Kerberos messages
- messages: Encrypt/decrypt and encode/decode of tickets, authenticators and replies
- tokens: GSS framing and MIC tokens
- ticket: AP-REQ validation against a keytab
- credentials: Service ticket sources
- keytab: MIT keytab files
- files: Credential file lookup
- replay_cache: Authenticator replay prevention
"""

from krbgss.kerberos.types import (
    # Messages
    EncryptedData,
    Ticket,
    EncTicketPart,
    Authenticator,
    APRequest,
    APReply,
    APReplyEncPart,
    KrbError,
    ValidatedRequest,
    TicketFlag,
    # Handshake states
    InitiatorState,
    AcceptorState,
    HandshakeParams,
)
from krbgss.kerberos.tokens import (
    KRB5_OID,
    KRB5Token,
    MICToken,
    TokenId,
    decode_token,
    encode_token,
)
from krbgss.kerberos.ticket import (
    TicketValidator,
    KeytabTicketValidator,
    check_ticket_window,
)
from krbgss.kerberos.credentials import (
    CredentialSource,
    ServiceTicket,
    SimulatedKDC,
)
from krbgss.kerberos.keytab import Keytab, KeytabEntry
from krbgss.kerberos.files import (
    FileSystem,
    OsFileSystem,
    find_file,
    locate_keytab,
    load_keytab,
)
from krbgss.kerberos.replay_cache import AuthenticatorCache, AuthenticatorKey

__all__ = [
    # Messages
    "EncryptedData",
    "Ticket",
    "EncTicketPart",
    "Authenticator",
    "APRequest",
    "APReply",
    "APReplyEncPart",
    "KrbError",
    "ValidatedRequest",
    "TicketFlag",
    # Handshake states
    "InitiatorState",
    "AcceptorState",
    "HandshakeParams",
    # Tokens
    "KRB5_OID",
    "KRB5Token",
    "MICToken",
    "TokenId",
    "decode_token",
    "encode_token",
    # Validation
    "TicketValidator",
    "KeytabTicketValidator",
    "check_ticket_window",
    # Credentials
    "CredentialSource",
    "ServiceTicket",
    "SimulatedKDC",
    # Keytabs and files
    "Keytab",
    "KeytabEntry",
    "FileSystem",
    "OsFileSystem",
    "find_file",
    "locate_keytab",
    "load_keytab",
    # Replay cache
    "AuthenticatorCache",
    "AuthenticatorKey",
]
