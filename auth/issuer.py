"""
auth/issuer.py -- Mints tokens for users whose identity was just verified.

Only AuthService calls this, right after a password check (login) or a
successful insert (registration). It is never wired to a route directly.

The token carries the username and nothing else about the account. Password
hashes and other secret material never go into claims.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from auth.models import User
from auth.tokens import TokenCodec

logger = logging.getLogger("expensetracker.auth.issuer")

_FORBIDDEN_CLAIMS = frozenset({"password", "hashed_password", "secret", "email"})


class CredentialIssuer:
    def __init__(self, codec: TokenCodec) -> None:
        self._codec = codec

    @property
    def lifetime_seconds(self) -> int:
        return self._codec.lifetime_seconds

    def issue_for_user(self, user: User, extra_claims: Mapping[str, Any] | None = None) -> str:
        """Return a signed token whose subject is `user.username`.

        Raises ValueError if an extra claim would leak account data.
        """
        if extra_claims:
            leaked = _FORBIDDEN_CLAIMS.intersection(extra_claims)
            if leaked:
                raise ValueError(f"Refusing to embed account data in a token: {sorted(leaked)!r}")
        token = self._codec.issue(user.username, extra_claims)
        logger.debug("Issued token for %s", user.username)
        return token
