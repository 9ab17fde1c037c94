"""
tests/test_auth_service.py -- Unit tests for CredentialIssuer, UserStore and AuthService.

Covers:
  - Issuer: subject is the username; account data refused as extra claims
  - UserStore: create / lookup / exists / set_active, unique constraints
  - register(): token for the new user; duplicate username and email rejected
    without issuing anything
  - authenticate(): token on success, InvalidCredentialsError otherwise
  - logout(): revokes valid tokens until their own expiry, skips garbage,
    and never raises even if the registry does
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmailError, DuplicateUsernameError, InvalidCredentialsError
from auth.issuer import CredentialIssuer
from auth.models import User
from auth.service import AuthService


@pytest.fixture
def issuer(codec) -> CredentialIssuer:
    return CredentialIssuer(codec)


@pytest.fixture
def service(user_store, issuer, codec, registry) -> AuthService:
    return AuthService(user_store, issuer, codec, registry)


# ---------------------------------------------------------------------------
# CredentialIssuer
# ---------------------------------------------------------------------------


class TestIssuer:
    def test_token_subject_is_username(self, issuer, codec):
        token = issuer.issue_for_user(User(username="alice", email="a@example.com", hashed_password="h"))
        assert codec.verify_and_decode(token).claims.subject == "alice"

    def test_token_carries_no_account_data(self, issuer, codec):
        user = User(username="alice", email="a@example.com", hashed_password="$2b$12$secret")
        claims = codec.verify_and_decode(issuer.issue_for_user(user)).claims
        assert claims.extra == {}

    def test_refuses_secret_extra_claims(self, issuer):
        user = User(username="alice", email="a@example.com", hashed_password="h")
        with pytest.raises(ValueError, match="hashed_password"):
            issuer.issue_for_user(user, {"hashed_password": user.hashed_password})

    def test_lifetime_matches_codec(self, issuer, codec):
        assert issuer.lifetime_seconds == codec.lifetime_seconds


# ---------------------------------------------------------------------------
# UserStore
# ---------------------------------------------------------------------------


class TestUserStore:
    def test_create_and_lookup(self, user_store):
        user_id = user_store.create_user(User(username="alice", email="a@example.com", hashed_password="h"))
        by_name = user_store.get_by_username("alice")
        assert by_name.id == user_id
        assert by_name.email == "a@example.com"
        assert by_name.is_active is True
        assert by_name.created_at

    def test_lookup_is_case_sensitive(self, user_store):
        user_store.create_user(User(username="alice", email="a@example.com", hashed_password="h"))
        assert user_store.get_by_username("Alice") is None

    def test_exists(self, user_store):
        user_store.create_user(User(username="alice", email="a@example.com", hashed_password="h"))
        assert user_store.exists_by_username("alice")
        assert user_store.exists_by_email("a@example.com")
        assert not user_store.exists_by_username("bob")
        assert not user_store.exists_by_email("b@example.com")

    @pytest.mark.parametrize(
        "username, email",
        [("alice", "other@example.com"), ("other", "a@example.com")],
    )
    def test_unique_constraints(self, user_store, username, email):
        user_store.create_user(User(username="alice", email="a@example.com", hashed_password="h"))
        with pytest.raises(IntegrityError):
            user_store.create_user(User(username=username, email=email, hashed_password="h"))

    def test_set_active(self, user_store):
        user_id = user_store.create_user(User(username="alice", email="a@example.com", hashed_password="h"))
        assert user_store.set_active(user_id, False)
        assert user_store.get_by_username("alice").is_active is False
        assert user_store.set_active(9999, False) is False


# ---------------------------------------------------------------------------
# Register / login
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_issues_token_for_new_user(self, service, codec, user_store):
        result = service.register("alice", "alice@example.com", "Secret123")
        assert result.user.username == "alice"
        assert result.expires_in == 86_400
        assert codec.verify_and_decode(result.token).claims.subject == "alice"
        assert user_store.get_by_username("alice").hashed_password != "Secret123"

    def test_duplicate_username(self, service):
        service.register("alice", "alice@example.com", "Secret123")
        with pytest.raises(DuplicateUsernameError):
            service.register("alice", "other@example.com", "Secret123")

    def test_duplicate_email(self, service, user_store):
        service.register("alice", "alice@example.com", "Secret123")
        with pytest.raises(DuplicateEmailError):
            service.register("bob", "alice@example.com", "Secret123")
        assert user_store.get_by_username("bob") is None


class TestLogin:
    def test_login_issues_token(self, service, codec):
        service.register("alice", "alice@example.com", "Secret123")
        result = service.authenticate("alice", "Secret123")
        assert codec.verify_and_decode(result.token).claims.subject == "alice"

    @pytest.mark.parametrize("username, password", [("alice", "wrong-password"), ("nobody", "Secret123")])
    def test_bad_credentials(self, service, username, password):
        service.register("alice", "alice@example.com", "Secret123")
        with pytest.raises(InvalidCredentialsError):
            service.authenticate(username, password)


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_logout_revokes_until_token_expiry(self, service, registry, clock):
        token = service.register("alice", "alice@example.com", "Secret123").token
        assert service.logout([token]) == 1
        assert registry.is_revoked(token)
        clock.advance(hours=23)
        assert registry.is_revoked(token)
        clock.advance(hours=1)
        assert registry.is_revoked(token) is False

    def test_logout_revokes_every_presented_token(self, service, registry):
        first = service.register("alice", "alice@example.com", "Secret123").token
        second = service.authenticate("alice", "Secret123").token
        assert service.logout([first, second]) == 2
        assert registry.is_revoked(first) and registry.is_revoked(second)

    def test_logout_skips_invalid_tokens(self, service, registry):
        assert service.logout(["garbage", "", "  "]) == 0
        assert len(registry) == 0

    def test_logout_skips_expired_tokens(self, service, registry, clock):
        token = service.register("alice", "alice@example.com", "Secret123").token
        clock.advance(days=2)
        assert service.logout([token]) == 0
        assert len(registry) == 0

    def test_logout_survives_registry_failure(self, service, registry, monkeypatch):
        token = service.register("alice", "alice@example.com", "Secret123").token

        def broken_revoke(token, expires_at):
            raise RuntimeError("registry unavailable")

        monkeypatch.setattr(registry, "revoke", broken_revoke)
        assert service.logout([token]) == 0
