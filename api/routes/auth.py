"""
api/routes/auth.py -- Registration, login, logout and identity endpoints.

Routes:
  POST /api/auth/register  -- create account; sets auth cookie
  POST /api/auth/login     -- password login; sets auth cookie
  POST /api/auth/logout    -- revoke presented tokens; always clears cookie; 200
  GET  /api/auth/me        -- current principal (requires auth)

Security:
  [H2] POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] AuthService.authenticate() uses authenticate_user() timing
       equalization -- never inline a username lookup + password check.
  [M5] Cache-Control: no-store on every response that carries a token.
  Logout revokes tokens server-side, so a copied token stops working even
  though it has not expired.
"""

# Annotations stay eagerly evaluated: FastAPI reads the rate-limited handlers
# through slowapi's wrapper, whose module globals cannot resolve string hints.

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import AuthResponse, LoginRequest, MeResponse, MessageResponse, RegisterRequest
from auth.dependencies import require_principal
from auth.errors import DuplicateEmailError, DuplicateUsernameError, InvalidCredentialsError
from auth.models import Principal
from auth.service import AuthResult, AuthService
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import get_settings

# Auth policy:
# - POST /api/auth/register: public -- creating an account needs no prior auth
# - POST /api/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/auth/logout:   public -- must succeed even with a missing or dead token
# - GET  /api/auth/me:       requires auth (require_principal)
router = APIRouter()


def _token_response(result: AuthResult, message: str) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=AuthResponse(
            message=message,
            username=result.user.username,
            access_token=result.token,
            expires_in=result.expires_in,
        ).model_dump(),
    )
    set_auth_cookie(resp, result.token, get_settings())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse)
@limiter.limit(login_rate_limit)  # [H2]
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and sign it in.

    Duplicate username and duplicate email are distinct 409 conflicts. No
    token or cookie is issued on failure.
    """
    service: AuthService = request.app.state.auth_service
    try:
        result = service.register(body.username, body.email, body.password)
    except DuplicateUsernameError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "duplicate_username",
                "message": "Username already exists. Please choose a different username.",
            },
        ) from exc
    except DuplicateEmailError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "duplicate_email",
                "message": "Email address already registered. Please use a different email.",
            },
        ) from exc
    return _token_response(result, "Registration successful! Redirecting to dashboard...")


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(login_rate_limit)  # [H2] brute-force mitigation
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the auth cookie.

    Returns the same generic error for wrong username and wrong password
    ("bad_credentials") to avoid leaking username existence information.
    """
    service: AuthService = request.app.state.auth_service
    try:
        result = service.authenticate(body.username, body.password)
    except InvalidCredentialsError:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
    return _token_response(result, "Login successful! Redirecting to dashboard...")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke whatever tokens the caller presented and clear the cookie.

    Always 200 and always clears the cookie: a missing, expired or
    unrevokable token must not stop a user from logging out.
    """
    service: AuthService = request.app.state.auth_service
    tokens = request.app.state.authenticator.candidate_tokens(request.headers, request.cookies)
    service.logout(tokens)
    resp = JSONResponse(content=MessageResponse(message="Logout successful").model_dump())
    clear_auth_cookie(resp, get_settings())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(principal: Principal = Depends(require_principal)) -> MeResponse:
    """Return identity information for the currently authenticated principal."""
    return MeResponse(username=principal.username, authorities=list(principal.authorities))
