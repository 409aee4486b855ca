"""
AP-REQ validation.

Validates an AP-REQ the way an acceptor must before trusting it:

1. The ticket names this service (KRB_AP_ERR_NOT_US)
2. A long-term key for the ticket exists (KRB_AP_ERR_NOKEY)
3. The ticket decrypts under that key (KRB_AP_ERR_BAD_INTEGRITY)
4. The ticket is inside its validity window, allowing for clock skew
   (KRB_AP_ERR_TKT_NYV, KRB_AP_ERR_TKT_EXPIRED)
5. The authenticator decrypts under the ticket session key
   (KRB_AP_ERR_BAD_INTEGRITY)
6. The authenticator names the ticket's client (KRB_AP_ERR_BADMATCH)
7. The authenticator timestamp is within clock skew (KRB_AP_ERR_SKEW)
8. The authenticator has not been seen before (KRB_AP_ERR_REPEAT)

Protocol rejections come back as Failure(KerberosError). Local problems,
such as a missing or unreadable keytab, are raised.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Mapping, Optional

import attrs
import structlog
from returns.result import Failure, Result, Success

from krbgss.core.exceptions import (
    CryptoError,
    KerberosError,
    KeytabError,
    ProtocolViolation,
)
from krbgss.core.types import Key, Principal
from krbgss.kerberos.files import FileSystem, OsFileSystem, load_keytab
from krbgss.kerberos.keytab import Keytab
from krbgss.kerberos.messages import open_authenticator, open_ticket
from krbgss.kerberos.replay_cache import AuthenticatorCache
from krbgss.kerberos.types import APRequest, EncTicketPart, TicketFlag, ValidatedRequest

logger = structlog.get_logger()


class TicketValidator(ABC):
    """Decrypts and checks the ticket and authenticator of an AP-REQ."""

    @abstractmethod
    def validate(
        self, request: APRequest, clock_skew: timedelta, now: datetime
    ) -> Result[ValidatedRequest, KerberosError]:
        ...


def check_ticket_window(
    ticket: EncTicketPart, clock_skew: timedelta, now: datetime
) -> Optional[KerberosError]:
    """Return the error for a ticket outside its validity window, if any."""
    if TicketFlag.INVALID in ticket.flags:
        return KerberosError(KerberosError.KRB_AP_ERR_TKT_NYV)
    if ticket.times.effective_start - now > clock_skew:
        return KerberosError(KerberosError.KRB_AP_ERR_TKT_NYV)
    if now - ticket.times.end_time > clock_skew:
        return KerberosError(KerberosError.KRB_AP_ERR_TKT_EXPIRED)
    return None


@attrs.define
class KeytabTicketValidator(TicketValidator):
    """
    Validator backed by the service's keytab.

    The keytab is read on first use: from keytab_path when given, else
    from $KRB5_KTNAME or /etc/krb5.keytab.
    """

    service: Principal
    keytab: Optional[Keytab] = None
    keytab_path: Optional[str] = None
    fs: FileSystem = attrs.Factory(OsFileSystem)
    environ: Optional[Mapping[str, str]] = None
    replay_cache: Optional[AuthenticatorCache] = None
    _logger: structlog.BoundLogger = attrs.field(
        factory=lambda: structlog.get_logger(), alias="_logger"
    )

    def _keytab(self) -> Keytab:
        if self.keytab is None:
            self.keytab = load_keytab(self.fs, self.keytab_path, self.environ)
        return self.keytab

    def _reject(self, code: int, **context) -> Failure:
        error = KerberosError(code)
        self._logger.warning(
            "ap_request_rejected", error_code=code, reason=error.message, **context
        )
        return Failure(error)

    def validate(
        self, request: APRequest, clock_skew: timedelta, now: datetime
    ) -> Result[ValidatedRequest, KerberosError]:
        """
        Validate an AP-REQ.

        Returns:
            Success(ValidatedRequest) or Failure(KerberosError)

        Raises:
            ConfigurationError: keytab cannot be located or read
            KeytabError: keytab is malformed
        """
        ticket = request.ticket
        if ticket.server != self.service:
            return self._reject(KerberosError.KRB_AP_ERR_NOT_US, server=str(ticket.server))

        keytab = self._keytab()
        try:
            service_key: Key = keytab.get_key(
                ticket.server, kvno=ticket.enc_part.kvno, enctype=ticket.enc_part.etype
            )
        except KeytabError:
            return self._reject(KerberosError.KRB_AP_ERR_NOKEY, server=str(ticket.server))

        try:
            decrypted = open_ticket(ticket, service_key)
        except (CryptoError, ProtocolViolation) as e:
            return self._reject(KerberosError.KRB_AP_ERR_BAD_INTEGRITY, stage="ticket", error=str(e))

        window_error = check_ticket_window(decrypted, clock_skew, now)
        if window_error is not None:
            self._logger.warning(
                "ap_request_rejected",
                error_code=window_error.code,
                reason=window_error.message,
                client=str(decrypted.client),
            )
            return Failure(window_error)

        try:
            authenticator = open_authenticator(request.authenticator, decrypted.session_key)
        except (CryptoError, ProtocolViolation) as e:
            return self._reject(
                KerberosError.KRB_AP_ERR_BAD_INTEGRITY, stage="authenticator", error=str(e)
            )

        if authenticator.client != decrypted.client:
            return self._reject(
                KerberosError.KRB_AP_ERR_BADMATCH,
                client=str(decrypted.client),
                authenticator_client=str(authenticator.client),
            )

        if not authenticator.ctime.is_within_skew(now, clock_skew):
            return self._reject(KerberosError.KRB_AP_ERR_SKEW, client=str(decrypted.client))

        if self.replay_cache is not None and not self.replay_cache.check_and_add(authenticator):
            return self._reject(KerberosError.KRB_AP_ERR_REPEAT, client=str(decrypted.client))

        return Success(
            ValidatedRequest(
                ticket=decrypted,
                authenticator=authenticator,
                mutual_required=request.mutual_required,
            )
        )
