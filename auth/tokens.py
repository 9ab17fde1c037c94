"""
auth/tokens.py -- JWT codec, password hashing, and auth cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the username as `sub`, plus `iat`,
       `exp` and a random `jti`. TokenCodec.verify_and_decode() never raises on
       client input -- every failure is a typed VerificationResult so the
       authenticator can fail closed without try/except at each call site.

       Failure precedence: structure first (malformed_credential), then the
       signature (bad_signature), then expiry (credential_expired). A token
       with a forged signature is reported as bad_signature even when it is
       also expired.

       Expiry is checked here, not by jose, so `exp <= now` is rejected exactly
       and the clock can be injected in tests.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether a username exists [C1].

  Signing key: the base64-decoded JWT_SECRET from core.config, handed to
       TokenCodec once at startup. Rotating it invalidates every outstanding
       token.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import AuthFailure, TokenClaims, VerificationResult

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("expensetracker.auth")

_ALGORITHM = "HS256"
_RESERVED_CLAIMS = frozenset({"sub", "iat", "exp", "jti"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_timestamp(value: Any) -> bool:
    # bool is an int subclass; a `true` exp is not a timestamp.
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class TokenCodec:
    """Signs and verifies expiring HS256 tokens with one process-wide key.

    The lifetime is kept in whole seconds, matching JWT timestamps; a
    fractional part of `lifetime` is dropped.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        token = codec.issue("alice")
        result = codec.verify_and_decode(token)
        if result.ok:
            result.claims.subject  # "alice"
    """

    def __init__(
        self,
        key: bytes,
        lifetime: timedelta,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._key = key
        self._lifetime_seconds = int(lifetime.total_seconds())
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> TokenCodec:
        return cls(settings.signing_key, settings.token_lifetime, clock=clock)

    @property
    def lifetime_seconds(self) -> int:
        return self._lifetime_seconds

    def issue(self, subject: str, extra_claims: Mapping[str, Any] | None = None) -> str:
        """Encode a signed token for `subject` that expires after the configured lifetime.

        Extra claims are applied first, so they can never override the
        subject, timestamps or token id.
        """
        issued_at = int(self._clock().timestamp())
        payload: dict[str, Any] = {k: v for k, v in (extra_claims or {}).items() if k not in _RESERVED_CLAIMS}
        payload.update(
            {
                "sub": subject,
                "iat": issued_at,
                "exp": issued_at + self._lifetime_seconds,
                "jti": secrets.token_urlsafe(16),
            }
        )
        return jwt.encode(payload, self._key, algorithm=_ALGORITHM)

    def verify_and_decode(self, token: str) -> VerificationResult:
        """Verify a token and return its claims, or the reason it was rejected.

        Never raises for bad input: garbage, truncated, re-signed or expired
        tokens all come back as a VerificationResult with `failure` set.
        """
        if not isinstance(token, str) or not token.strip():
            return VerificationResult(failure=AuthFailure.MALFORMED)

        # Structure: three segments, a JSON header and a JSON object payload.
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError:
            return VerificationResult(failure=AuthFailure.MALFORMED)

        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except (JWTClaimsError, TypeError, ValueError):
            # Signature was fine but a registered claim (iat, nbf, aud) is ill-formed.
            return VerificationResult(failure=AuthFailure.MALFORMED)
        except JWTError:
            return VerificationResult(failure=AuthFailure.BAD_SIGNATURE)

        subject = payload.get("sub")
        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(subject, str) or not subject or not _is_timestamp(exp) or not _is_timestamp(iat):
            return VerificationResult(failure=AuthFailure.MALFORMED)

        try:
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
            issued_at = datetime.fromtimestamp(iat, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return VerificationResult(failure=AuthFailure.MALFORMED)

        if expires_at <= self._clock():
            return VerificationResult(failure=AuthFailure.EXPIRED)

        token_id = payload.get("jti")
        return VerificationResult(
            claims=TokenClaims(
                subject=subject,
                issued_at=issued_at,
                expires_at=expires_at,
                token_id=token_id if isinstance(token_id, str) else None,
                extra={k: v for k, v in payload.items() if k not in _RESERVED_CLAIMS},
            )
        )


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only accepts 72 bytes. The API layer rejects longer passwords
    (Pydantic validator on the UTF-8 length) before they reach this function.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Corrupt stored hash or a password bcrypt refuses (>72 bytes).
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load. Always run bcrypt even when the username does
# not exist so response time does not reveal which usernames are registered.
_DUMMY_HASH: str = hash_password("expensetracker_timing_dummy")


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_username(username)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, settings: Settings) -> None:
    """Write the token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": cookie sent on same-site navigations and top-level GETs,
        not on cross-site POSTs -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the token lifetime so both expire together.
    """
    response.set_cookie(
        settings.auth_cookie_name,
        value=token,
        max_age=settings.cookie_max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )


def clear_auth_cookie(response, settings: Settings) -> None:
    """Expire the auth cookie immediately, with the same attributes it was set with."""
    response.delete_cookie(
        settings.auth_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
