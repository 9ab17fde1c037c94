"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The authentication middleware (api/main.py) runs RequestAuthenticator once per
request and binds the Principal on request.state. These helpers only read
that binding:

get_principal() is the soft variant (returns None when unauthenticated).
require_principal() raises AuthenticationRequired, which the application's
exception handler turns into a JSON 401 for API callers or a redirect to the
login page for interactive callers.

If a route is reached without the middleware having run (e.g. an app built
without it), require_principal() runs the authenticator itself -- binding is
idempotent, so running it twice is harmless.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthenticationRequired
from auth.models import Principal


def get_principal(request: Request) -> Principal | None:
    """Return the principal bound to this request, or None.

    Use as a FastAPI dependency for routes that behave differently for
    signed-in users but do not require sign-in.
    """
    return getattr(request.state, "principal", None)


async def require_principal(request: Request) -> Principal:
    """Require authentication. Raises AuthenticationRequired if no principal is bound.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(require_principal)): ...
    """
    principal = get_principal(request)
    if principal is None and not hasattr(request.state, "auth_failure"):
        outcome = await request.app.state.authenticator.authenticate_request(request)
        principal = outcome.principal
    if principal is None:
        raise AuthenticationRequired()
    return principal
