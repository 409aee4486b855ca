"""
Pytest configuration and shared fixtures for krbgss tests.
"""

import errno
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
from returns.result import Result

from krbgss.core.types import ContextFlag, Key, Principal, Realm
from krbgss.gss.acceptor import Acceptor
from krbgss.gss.config import AcceptorConfig, InitiatorConfig
from krbgss.gss.initiator import Initiator
from krbgss.kerberos.credentials import CredentialSource, ServiceTicket, SimulatedKDC
from krbgss.kerberos.files import FileSystem
from krbgss.kerberos.keytab import Keytab
from krbgss.kerberos.ticket import KeytabTicketValidator


SERVICE_NAME = "HTTP@web.example.com"

ALL_FLAGS = frozenset(
    {
        ContextFlag.MUTUAL,
        ContextFlag.REPLAY,
        ContextFlag.SEQUENCE,
        ContextFlag.INTEGRITY,
    }
)


# =============================================================================
# TEST DOUBLES
# =============================================================================


class FakeFileSystem(FileSystem):
    """In-memory filesystem. Paths in errors fail stat with that error."""

    def __init__(
        self,
        files: Optional[Dict[str, bytes]] = None,
        errors: Optional[Dict[str, OSError]] = None,
    ) -> None:
        self.files = dict(files or {})
        self.errors = dict(errors or {})
        self.stat_calls: List[str] = []

    def stat(self, path: str) -> os.stat_result:
        self.stat_calls.append(path)
        if path in self.errors:
            raise self.errors[path]
        if path not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)
        return os.stat_result((0o100600, 0, 0, 1, 0, 0, len(self.files[path]), 0, 0, 0))

    def read_bytes(self, path: str) -> bytes:
        if path in self.errors:
            raise self.errors[path]
        if path not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)
        return self.files[path]


class RecordingSource(CredentialSource):
    """Wraps a credential source and remembers the last ticket handed out."""

    def __init__(self, inner: CredentialSource) -> None:
        self.inner = inner
        self.issued: List[ServiceTicket] = []

    @property
    def principal(self) -> Principal:
        return self.inner.principal

    def get_ticket(self, service: Principal) -> Result[ServiceTicket, str]:
        result = self.inner.get_ticket(service)
        result.map(self.issued.append)
        return result

    @property
    def last(self) -> ServiceTicket:
        return self.issued[-1]


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# =============================================================================
# REALM AND PRINCIPAL FIXTURES
# =============================================================================


@pytest.fixture
def test_realm() -> Realm:
    """Test Kerberos realm."""
    return Realm("EXAMPLE.COM")


@pytest.fixture
def client_principal(test_realm: Realm) -> Principal:
    """Initiator's principal."""
    return Principal(name="alice", realm=test_realm)


@pytest.fixture
def service_principal(test_realm: Realm) -> Principal:
    """Acceptor's principal, matching SERVICE_NAME."""
    return Principal(name="HTTP/web.example.com", realm=test_realm)


# =============================================================================
# KEY FIXTURES
# =============================================================================


@pytest.fixture
def service_key() -> Key:
    """Long-term key of the service."""
    return Key.generate()


@pytest.fixture
def keytab(service_principal: Principal, service_key: Key) -> Keytab:
    """Keytab holding the service key at kvno 2."""
    keytab = Keytab()
    keytab.add(service_principal, service_key, kvno=2)
    return keytab


# =============================================================================
# TIME FIXTURES
# =============================================================================


@pytest.fixture
def current_time() -> datetime:
    """Fixed point in time with a non-zero microsecond part."""
    return datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


@pytest.fixture
def clock(current_time: datetime) -> FixedClock:
    return FixedClock(current_time)


# =============================================================================
# HANDSHAKE FIXTURES
# =============================================================================


@pytest.fixture
def kdc(client_principal: Principal, keytab: Keytab, clock: FixedClock) -> RecordingSource:
    """Simulated KDC issuing tickets for the keytab's services."""
    return RecordingSource(SimulatedKDC(client=client_principal, service_keys=keytab, clock=clock))


@pytest.fixture
def validator(service_principal: Principal, keytab: Keytab) -> KeytabTicketValidator:
    return KeytabTicketValidator(service=service_principal, keytab=keytab)


@pytest.fixture
def acceptor_config(service_principal: Principal, clock: FixedClock) -> AcceptorConfig:
    return AcceptorConfig(service_principal=service_principal, clock=clock)


@pytest.fixture
def initiator(kdc: RecordingSource, clock: FixedClock) -> Initiator:
    return Initiator(credentials=kdc, config=InitiatorConfig(clock=clock))


@pytest.fixture
def acceptor(acceptor_config: AcceptorConfig, validator: KeytabTicketValidator) -> Acceptor:
    return Acceptor(config=acceptor_config, validator=validator)


@pytest.fixture
def established(initiator: Initiator, acceptor: Acceptor):
    """Initiator and acceptor after a mutual handshake with all flags."""
    handshake(initiator, acceptor, ALL_FLAGS)
    return initiator, acceptor


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def handshake(initiator: Initiator, acceptor: Acceptor, flags=ALL_FLAGS) -> None:
    """Run both legs of the handshake."""
    request, more = initiator.initiate(SERVICE_NAME, flags)
    reply, _ = acceptor.accept(request)
    if more:
        initiator.initiate(SERVICE_NAME, flags, reply)
