"""
auth/models.py -- Domain dataclasses and result types for authentication.

Pattern: Data class (pure data container, zero logic beyond convenience
properties). Stores, the codec and the authenticator do the work; these types
only carry shape.

Result types replace exceptions for the authentication decision: every check
either yields a value or exactly one AuthFailure. Callers branch on `.ok` /
`.authenticated` instead of catching.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AuthFailure(str, Enum):
    """Why a request did not authenticate.

    Logged internally for operability. Never sent to HTTP callers, who only
    ever see "authenticated" or "not authenticated".
    """

    NO_CREDENTIAL = "no_credential"
    MALFORMED = "malformed_credential"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "credential_expired"
    REVOKED = "credential_revoked"
    IDENTITY_NOT_FOUND = "identity_not_found"
    INTERNAL_ERROR = "internal_resolution_failure"


@dataclass
class User:
    """A registered account, as returned by the identity resolver (UserStore).

    hashed_password is a bcrypt hash and must never leave the auth layer --
    not in a token claim, not in a response body.
    """

    username: str
    email: str
    hashed_password: str
    id: int | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class Principal:
    """The authenticated identity bound to a single request.

    Lives on request.state for the remainder of one request and is never
    cached or shared across requests.
    """

    username: str
    authorities: tuple[str, ...] = ()


@dataclass(frozen=True)
class TokenClaims:
    """Decoded and verified contents of a token."""

    subject: str
    issued_at: datetime
    expires_at: datetime
    token_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of TokenCodec.verify_and_decode()."""

    claims: TokenClaims | None = None
    failure: AuthFailure | None = None

    @property
    def ok(self) -> bool:
        return self.claims is not None and self.failure is None


@dataclass(frozen=True)
class AuthOutcome:
    """Outcome of one authentication pass over a request."""

    principal: Principal | None = None
    failure: AuthFailure | None = None
    # Where the judged token came from: "header", "cookie", or None.
    source: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.principal is not None
