"""
Handshake configuration.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional, Union

import attrs

from krbgss.core.types import Principal, utc_now
from krbgss.kerberos.files import FileSystem, OsFileSystem, locate_keytab
from krbgss.kerberos.replay_cache import AuthenticatorCache

DEFAULT_CLOCK_SKEW = timedelta(seconds=10)


def _to_principal(value: Union[str, Principal]) -> Principal:
    if isinstance(value, Principal):
        return value
    return Principal.from_string(value)


@attrs.define
class InitiatorConfig:
    """
    Initiator configuration.

    Attributes:
        use_subkey: Send a fresh subkey in the authenticator; the peer then
            verifies our signatures with it
        clock: Source of the current time
    """

    use_subkey: bool = True
    clock: Callable[[], datetime] = utc_now


@attrs.define
class AcceptorConfig:
    """
    Acceptor configuration.

    Attributes:
        service_principal: Principal tickets must be issued to
            (e.g., "HTTP/web.example.com@EXAMPLE.COM")
        keytab_path: Keytab holding the service key; located through
            $KRB5_KTNAME or /etc/krb5.keytab when omitted
        clock_skew: Allowed difference between our clock and the peer's
        use_subkey: Return a fresh subkey in the AP-REP
        replay_cache: Authenticator cache shared across acceptors
        clock: Source of the current time
        fs: Filesystem used to find and read the keytab
    """

    service_principal: Principal = attrs.field(converter=_to_principal)
    keytab_path: Optional[str] = None
    clock_skew: timedelta = DEFAULT_CLOCK_SKEW
    use_subkey: bool = False
    replay_cache: Optional[AuthenticatorCache] = None
    clock: Callable[[], datetime] = utc_now
    fs: FileSystem = attrs.Factory(OsFileSystem)
    environ: Optional[Mapping[str, str]] = None

    @classmethod
    def from_environment(
        cls,
        service_principal: Union[str, Principal],
        fs: Optional[FileSystem] = None,
        environ: Optional[Mapping[str, str]] = None,
        **kwargs,
    ) -> "AcceptorConfig":
        """
        Build a config whose keytab path is resolved now.

        Raises:
            ConfigurationError: no keytab can be found
        """
        fs = fs or OsFileSystem()
        return cls(
            service_principal=service_principal,
            keytab_path=locate_keytab(fs, environ),
            fs=fs,
            environ=environ,
            **kwargs,
        )
