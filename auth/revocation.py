"""
auth/revocation.py -- Process-local registry of revoked tokens.

A revoked token stays rejected until its own `exp`. After that the codec
rejects it as expired anyway, so the registry no longer needs to remember it.

Eviction is lazy: an entry is dropped when a lookup finds it past its expiry.
There is no background sweep, so memory is bounded by "tokens revoked within
their own remaining lifetime" -- at most one token lifetime's worth of logouts.

Concurrency: one threading.Lock guards the dict. Every operation is a single
critical section, so a request cancelled mid-logout either recorded the token
or did not; there is no half-written state. Callers never lock.

Known limitation: the registry is not shared between processes and does not
survive restarts. A horizontally scaled deployment would put a shared
key-value store behind the same revoke()/is_revoked() contract.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone

logger = logging.getLogger("expensetracker.auth.revocation")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RevocationRegistry:
    """In-memory token blacklist with lazy eviction.

    Usage:
        registry = RevocationRegistry()
        registry.revoke(token, claims.expires_at)
        registry.is_revoked(token)   # True until expires_at passes
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def revoke(self, token: str, expires_at: datetime) -> None:
        """Record `token` as revoked until `expires_at`.

        Idempotent. Revoking an already-revoked token keeps the later expiry,
        so a repeated call can never shorten a revocation.
        """
        with self._lock:
            current = self._entries.get(token)
            if current is None or expires_at > current:
                self._entries[token] = expires_at

    def is_revoked(self, token: str) -> bool:
        """Return True only while `token` is recorded and not yet expired.

        An entry found past its expiry is evicted as part of this lookup and
        reported as not revoked.
        """
        if not token:
            return False
        now = self._clock()
        with self._lock:
            expires_at = self._entries.get(token)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._entries[token]
                logger.debug("Evicted expired revocation entry")
                return False
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
