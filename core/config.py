"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the Expense Tracker auth service happen
here. No module should call os.getenv() or os.environ.get() directly -- import
get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to refuse startup without a usable
      signing secret.

Security notes:
  [M6] JWT_SECRET is a base64-encoded symmetric key. It must decode cleanly and
       yield at least 32 bytes -- HS256 is only as strong as its key.

  [M7] There is no default secret and no auto-generation. A missing secret is a
       hard startup failure in every mode. Rotating the secret invalidates every
       token issued under the old one; that is expected, not a bug.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import base64
import binascii
import logging
from datetime import timedelta
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("expensetracker.config")

_MIN_KEY_BYTES = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Everything except JWT_SECRET has a default. The model_validator enforces
    the secret policy at startup so a misconfigured process never serves a
    request.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `jwt_expiration` reads from JWT_EXPIRATION, `debug` reads from DEBUG.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty means the default SQLite file beside the auth package.
    database_url: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    jwt_expiration: int = 86_400_000  # milliseconds, 24 hours

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    auth_cookie_name: str = "authToken"
    # Must be true behind TLS in production.
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # HTTP hardening
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_settings(self) -> "Settings":
        """Enforce the signing secret and token lifetime policy [M6][M7].

        The secret must be present, valid base64, and decode to at least 32
        bytes. The lifetime must be a whole number of seconds, at least one,
        because JWT timestamps carry whole seconds.
        """
        if not self.jwt_secret:
            raise ValueError(
                "JWT_SECRET is required. "
                "Set JWT_SECRET to a base64-encoded key of at least 32 bytes "
                "in your environment or .env file."
            )
        try:
            key = base64.b64decode(self.jwt_secret, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("JWT_SECRET must be base64-encoded.") from exc
        if len(key) < _MIN_KEY_BYTES:
            raise ValueError(f"JWT_SECRET must decode to at least {_MIN_KEY_BYTES} bytes.")
        if self.jwt_expiration < 1000 or self.jwt_expiration % 1000:
            raise ValueError("JWT_EXPIRATION must be a whole number of seconds (a multiple of 1000 ms), at least 1000.")
        if self.debug and not self.secure_cookies:
            logger.warning("Auth cookie is not marked Secure. Enable SECURE_COOKIES behind TLS.")
        return self

    @property
    def signing_key(self) -> bytes:
        """The decoded HMAC key. Already validated, so this cannot fail."""
        return base64.b64decode(self.jwt_secret)

    @property
    def token_lifetime(self) -> timedelta:
        return timedelta(milliseconds=self.jwt_expiration)

    @property
    def cookie_max_age(self) -> int:
        """Cookie lifetime in seconds, matched to the token lifetime."""
        return self.jwt_expiration // 1000


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
