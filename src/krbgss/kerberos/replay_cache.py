"""
Authenticator replay cache.

An acceptor must refuse an authenticator it has already accepted
(KRB_AP_ERR_REPEAT). Authenticators are identified by client and
timestamp, (crealm, cname, ctime, cusec) per RFC 4120 section 3.2.3.

An entry only needs to outlive the window in which the skew check would
still accept its timestamp, so entries are forgotten after twice the
clock skew. One cache may be shared by every acceptor of a service and
is safe to use from several threads.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable

import attrs
import structlog

from krbgss.core.types import utc_now
from krbgss.kerberos.types import Authenticator

logger = structlog.get_logger()


@attrs.define(frozen=True, slots=True)
class AuthenticatorKey:
    """Replay identity of an authenticator. The seq-number is not part of it."""

    client_realm: str
    client_principal: str
    ctime: datetime
    cusec: int

    @classmethod
    def from_authenticator(cls, auth: Authenticator) -> AuthenticatorKey:
        return cls(
            client_realm=auth.client.realm.name,
            client_principal=auth.client.name,
            ctime=auth.ctime.time,
            cusec=auth.ctime.usec,
        )


@attrs.define
class AuthenticatorCache:
    """
    Remembers accepted authenticators.

    Example:
        cache = AuthenticatorCache(clock_skew_seconds=10)
        if not cache.check_and_add(authenticator):
            reject(KerberosError.KRB_AP_ERR_REPEAT)
    """

    clock_skew_seconds: int = 300
    max_entries: int = 10000
    clock: Callable[[], datetime] = utc_now

    # key -> time after which the entry may be forgotten, in insertion order
    _entries: "OrderedDict[AuthenticatorKey, datetime]" = attrs.field(
        factory=OrderedDict, alias="_entries"
    )
    _lock: threading.RLock = attrs.field(factory=threading.RLock, alias="_lock")
    _logger: structlog.BoundLogger = attrs.field(
        factory=lambda: structlog.get_logger(), alias="_logger"
    )

    @property
    def retention(self) -> timedelta:
        return timedelta(seconds=2 * self.clock_skew_seconds)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def check_and_add(self, authenticator: Authenticator) -> bool:
        """
        Record authenticator unless it is already known.

        Returns:
            True when the authenticator is new, False for a replay
        """
        key = AuthenticatorKey.from_authenticator(authenticator)
        now = self.clock()

        with self._lock:
            if key in self._entries:
                self._logger.warning(
                    "replay_detected",
                    client=f"{key.client_principal}@{key.client_realm}",
                    ctime=key.ctime.isoformat(),
                    cusec=key.cusec,
                )
                return False

            self._entries[key] = now + self.retention
            if len(self._entries) > self.max_entries:
                self._evict(now)
            return True

    def is_replay(self, authenticator: Authenticator) -> bool:
        """Whether authenticator is already recorded. Does not record it."""
        key = AuthenticatorKey.from_authenticator(authenticator)
        with self._lock:
            return key in self._entries

    def cleanup_expired(self) -> int:
        """Forget entries past their retention. Returns how many were dropped."""
        with self._lock:
            return self._evict(self.clock())

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def _evict(self, now: datetime) -> int:
        expired = [key for key, forget_at in self._entries.items() if forget_at < now]
        for key in expired:
            del self._entries[key]

        if expired:
            self._logger.debug(
                "replay_cache_evicted", removed=len(expired), remaining=len(self._entries)
            )
        return len(expired)
