"""
auth/authenticator.py -- The per-request authentication decision.

One pass per inbound request:

  1. Extract a candidate token. Authorization: Bearer <token> wins; the auth
     cookie is consulted only when there is no Bearer header. A blank
     candidate counts as no credential.
  2. Revocation registry: a revoked token stops here (credential_revoked,
     reported distinctly from no_credential so the HTTP layer can clear a
     stale cookie).
  3. TokenCodec: malformed, bad signature or expired stops here.
  4. Identity resolver: the subject must still map to an active account whose
     username equals the subject exactly.
  5. Bind a Principal on request.state -- unless one is already bound, in
     which case nothing is re-validated or replaced.

The authenticator never ends a request. It only decides whether a principal
is present; which routes need one is decided downstream (auth/dependencies.py).

Failure reasons are logged but never returned to HTTP callers. Any unexpected
exception in steps 2-4 is logged and treated as unauthenticated (fail closed).

Layer rule: no imports from api/ or core/. Starlette is used only for its
Request type and threadpool helper.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import Protocol

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request

from auth.models import AuthFailure, AuthOutcome, Principal, User
from auth.revocation import RevocationRegistry
from auth.tokens import TokenCodec

logger = logging.getLogger("expensetracker.auth.authenticator")

_BEARER_PREFIX = "Bearer "


class IdentityResolver(Protocol):
    """Maps a username to the live account, or None.

    get_by_username may be a plain function (run in the threadpool) or a
    coroutine function (awaited).
    """

    def get_by_username(self, username: str) -> User | None: ...


class RequestAuthenticator:
    def __init__(
        self,
        codec: TokenCodec,
        registry: RevocationRegistry,
        resolver: IdentityResolver,
        cookie_name: str = "authToken",
    ) -> None:
        self._codec = codec
        self._registry = registry
        self._resolver = resolver
        self.cookie_name = cookie_name

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def candidate_tokens(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> list[str]:
        """Every distinct non-blank token presented, header first.

        Authentication only ever uses the first; logout revokes them all.
        """
        candidates: list[str] = []
        auth_header = headers.get("Authorization")
        if auth_header is not None and auth_header.startswith(_BEARER_PREFIX):
            candidates.append(auth_header[len(_BEARER_PREFIX) :].strip())
        cookie = cookies.get(self.cookie_name)
        if cookie is not None:
            candidates.append(cookie.strip())
        seen: list[str] = []
        for token in candidates:
            if token and token not in seen:
                seen.append(token)
        return seen

    def extract_token(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> str | None:
        """Return the token to authenticate with, or None if none was presented.

        A Bearer header takes precedence over the cookie even when blank: a
        client that sends `Authorization: Bearer ` has chosen header auth and
        gets treated as presenting no credential.
        """
        return self.locate_token(headers, cookies)[0]

    def locate_token(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> tuple[str | None, str | None]:
        """Return `(token, source)`, source being "header", "cookie" or None."""
        auth_header = headers.get("Authorization")
        if auth_header is not None and auth_header.startswith(_BEARER_PREFIX):
            token = auth_header[len(_BEARER_PREFIX) :].strip()
            return (token, "header") if token else (None, None)
        token = (cookies.get(self.cookie_name) or "").strip()
        return (token, "cookie") if token else (None, None)

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    async def authenticate(self, token: str | None) -> AuthOutcome:
        """Decide whether `token` authenticates, and as whom."""
        if token is None or not token.strip():
            return AuthOutcome(failure=AuthFailure.NO_CREDENTIAL)
        try:
            return await self._authenticate(token)
        except Exception:
            logger.exception("Authentication aborted by an internal error; treating request as unauthenticated")
            return AuthOutcome(failure=AuthFailure.INTERNAL_ERROR)

    async def _authenticate(self, token: str) -> AuthOutcome:
        if self._registry.is_revoked(token):
            logger.info("Rejected revoked token")
            return AuthOutcome(failure=AuthFailure.REVOKED)

        result = self._codec.verify_and_decode(token)
        if not result.ok:
            logger.debug("Rejected token: %s", result.failure.value)
            return AuthOutcome(failure=result.failure)

        subject = result.claims.subject
        user = await self._resolve(subject)
        if user is None or not user.is_active or user.username != subject:
            logger.info("Rejected token for %r: identity not found or inactive", subject)
            return AuthOutcome(failure=AuthFailure.IDENTITY_NOT_FOUND)

        return AuthOutcome(principal=Principal(username=user.username))

    async def _resolve(self, username: str) -> User | None:
        lookup = self._resolver.get_by_username
        if inspect.iscoroutinefunction(lookup):
            return await lookup(username)
        return await run_in_threadpool(lookup, username)

    # ------------------------------------------------------------------
    # Request binding
    # ------------------------------------------------------------------

    async def authenticate_request(self, request: Request) -> AuthOutcome:
        """Authenticate `request` and bind its principal on request.state.

        Re-entrant: if a principal is already bound, it is returned untouched
        and the token is not looked at again.
        """
        bound = getattr(request.state, "principal", None)
        if bound is not None:
            return AuthOutcome(principal=bound)

        token, source = self.locate_token(request.headers, request.cookies)
        outcome = replace(await self.authenticate(token), source=source)
        if outcome.authenticated and getattr(request.state, "principal", None) is None:
            request.state.principal = outcome.principal
        request.state.auth_failure = outcome.failure
        return outcome
