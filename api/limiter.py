"""
api/limiter.py -- The process-wide slowapi Limiter and the login limit policy.

api/main.py mounts the limiter (SlowAPIMiddleware + app.state.limiter);
api/routes/auth.py decorates the credential-accepting routes with it [H2].

Counters are in-memory and keyed by client IP, so they reset on restart and
are per-process. There must be exactly one Limiter: a second instance would
keep its own counters and the limit would never be reached.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Limit string for login and registration, e.g. "10/minute".

    Read per request rather than at import so LOGIN_RATE_LIMIT follows the
    cached Settings instance.
    """
    return get_settings().login_rate_limit
