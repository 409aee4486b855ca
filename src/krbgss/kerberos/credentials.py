"""
Credential sources for the initiator.

A credential source hands the initiator a service ticket and its session
key. Acquiring tickets from a real KDC is outside this package; the
SimulatedKDC below issues genuine, acceptor-verifiable tickets from a
keytab of service keys, for tests and local use.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable

import attrs
import structlog
from returns.result import Failure, Result, Success

from krbgss.core.exceptions import KerberosError, KeytabError
from krbgss.core.types import Key, Principal, TicketTimes, utc_now
from krbgss.kerberos.keytab import Keytab
from krbgss.kerberos.messages import seal_ticket
from krbgss.kerberos.types import EncTicketPart, Ticket, TicketFlag

logger = structlog.get_logger()


@attrs.define(frozen=True, slots=True)
class ServiceTicket:
    """A ticket for one service plus the session key inside it."""

    ticket: Ticket
    session_key: Key = attrs.field(repr=False)
    client: Principal
    expiry: datetime


class CredentialSource(ABC):
    """Where the initiator's tickets come from."""

    @property
    @abstractmethod
    def principal(self) -> Principal:
        """The client principal tickets are issued to."""
        ...

    @abstractmethod
    def get_ticket(self, service: Principal) -> Result[ServiceTicket, str]:
        """
        Obtain a ticket for service.

        Returns:
            Success(ServiceTicket) or Failure(reason)
        """
        ...


@attrs.define
class SimulatedKDC(CredentialSource):
    """
    Issues service tickets locally.

    Example:
        keytab = Keytab()
        keytab.add(Principal.from_string("HTTP/web@EXAMPLE.COM"), Key.generate())
        kdc = SimulatedKDC(client=Principal.from_string("alice@EXAMPLE.COM"),
                           service_keys=keytab)
        ticket = kdc.get_ticket(Principal.from_string("HTTP/web@EXAMPLE.COM")).unwrap()
    """

    client: Principal
    service_keys: Keytab
    lifetime: timedelta = timedelta(hours=10)
    clock: Callable[[], datetime] = utc_now
    _logger: structlog.BoundLogger = attrs.field(
        factory=lambda: structlog.get_logger(), alias="_logger"
    )

    @property
    def principal(self) -> Principal:
        return self.client

    def get_ticket(self, service: Principal) -> Result[ServiceTicket, str]:
        """Issue a ticket for service, sealed with its newest key."""
        try:
            entry = self.service_keys.get_entry(service)
        except KeytabError:
            reason = KerberosError.ERROR_MESSAGES[KerberosError.KDC_ERR_S_PRINCIPAL_UNKNOWN]
            self._logger.warning("service_ticket_failed", service=str(service), reason=reason)
            return Failure(reason)

        now = self.clock().replace(microsecond=0)
        session_key = Key.generate(entry.key.enctype)
        part = EncTicketPart(
            session_key=session_key,
            client=self.client,
            times=TicketTimes(auth_time=now, start_time=now, end_time=now + self.lifetime),
            flags=frozenset({TicketFlag.INITIAL, TicketFlag.PRE_AUTHENT}),
        )
        ticket = seal_ticket(part, service, entry.key, kvno=entry.kvno)

        self._logger.info(
            "service_ticket_issued",
            client=str(self.client),
            service=str(service),
            valid_until=part.times.end_time.isoformat(),
        )

        return Success(
            ServiceTicket(
                ticket=ticket,
                session_key=session_key,
                client=self.client,
                expiry=part.times.end_time,
            )
        )
