"""
auth/errors.py -- Exceptions raised by the auth service layer.

These cover the login and registration flows, where a failure must stop the
flow and reach the caller. The per-request authentication decision does NOT
raise; it returns an AuthOutcome (see auth/models.py).

Route handlers translate these into HTTPException with a structured detail
dict. AuthenticationRequired is handled by an application-level exception
handler that picks a JSON 401 or a login redirect.
"""


class AuthError(Exception):
    """Base class for auth service failures."""


class DuplicateUsernameError(AuthError):
    def __init__(self, username: str) -> None:
        super().__init__(f"Username '{username}' is already taken")
        self.username = username


class DuplicateEmailError(AuthError):
    def __init__(self, email: str) -> None:
        super().__init__(f"Email '{email}' is already registered")
        self.email = email


class InvalidCredentialsError(AuthError):
    """Wrong username or wrong password. Deliberately does not say which."""

    def __init__(self) -> None:
        super().__init__("Invalid username or password")


class AuthenticationRequired(AuthError):
    """A protected route was reached without a bound principal."""

    def __init__(self) -> None:
        super().__init__("Authentication required")
