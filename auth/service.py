"""
auth/service.py -- Registration, login and logout flows.

These are the only paths that mint or revoke tokens:
  register()     -- create the account, then issue a token for it
  authenticate() -- verify the password, then issue a token
  logout()       -- revoke every presented token until its natural expiry

Registration and login raise AuthError subclasses (auth/errors.py); routes map
them to HTTP responses. Logout never raises: a token that cannot be revoked is
logged and skipped, and the caller still gets a successful logout.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmailError, DuplicateUsernameError, InvalidCredentialsError
from auth.issuer import CredentialIssuer
from auth.models import User
from auth.revocation import RevocationRegistry
from auth.store import UserStore
from auth.tokens import TokenCodec, authenticate_user, hash_password

logger = logging.getLogger("expensetracker.auth.service")


@dataclass(frozen=True)
class AuthResult:
    """A freshly issued token and the account it was issued for."""

    token: str
    user: User
    expires_in: int


class AuthService:
    def __init__(
        self,
        store: UserStore,
        issuer: CredentialIssuer,
        codec: TokenCodec,
        registry: RevocationRegistry,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._codec = codec
        self._registry = registry

    def register(self, username: str, email: str, password: str) -> AuthResult:
        """Create an account and issue its first token.

        Raises DuplicateUsernameError or DuplicateEmailError; no token is
        issued in either case.
        """
        if self._store.exists_by_username(username):
            raise DuplicateUsernameError(username)
        if self._store.exists_by_email(email):
            raise DuplicateEmailError(email)

        try:
            self._store.create_user(User(username=username, email=email, hashed_password=hash_password(password)))
        except IntegrityError as exc:
            # Lost a race with a concurrent registration; report which field collided.
            if self._store.exists_by_username(username):
                raise DuplicateUsernameError(username) from exc
            raise DuplicateEmailError(email) from exc

        user = self._store.get_by_username(username)
        if user is None:
            raise RuntimeError(f"User {username!r} not found after insert")
        logger.info("Registered user %s", username)
        return self._issue(user)

    def authenticate(self, username: str, password: str) -> AuthResult:
        """Verify a username/password pair and issue a token.

        Raises InvalidCredentialsError for an unknown user, a wrong password
        or a disabled account alike.
        """
        user = authenticate_user(self._store, username, password)
        if user is None:
            logger.info("Login failed for %s", username)
            raise InvalidCredentialsError()
        logger.info("Login successful for %s", username)
        return self._issue(user)

    def logout(self, tokens: Iterable[str]) -> int:
        """Revoke each token until its own expiry. Returns how many were recorded.

        Tokens that fail verification are skipped: a forged or expired token
        cannot authenticate anyway, and recording it would let anyone grow
        the registry with garbage.
        """
        revoked = 0
        for token in tokens:
            if not token or not token.strip():
                continue
            try:
                result = self._codec.verify_and_decode(token)
                if not result.ok:
                    logger.info("Logout skipped a token that did not verify: %s", result.failure.value)
                    continue
                self._registry.revoke(token, result.claims.expires_at)
                revoked += 1
            except Exception:
                logger.warning("Failed to revoke token during logout", exc_info=True)
        if revoked:
            logger.info("Revoked %d token(s) during logout", revoked)
        else:
            logger.info("No token revoked during logout - user may already be logged out")
        return revoked

    def _issue(self, user: User) -> AuthResult:
        return AuthResult(
            token=self._issuer.issue_for_user(user),
            user=user,
            expires_in=self._issuer.lifetime_seconds,
        )
