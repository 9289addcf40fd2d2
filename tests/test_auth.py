"""Tests for AuthService sign-in and token flows."""

import pytest

from storefront.auth import AuthService
from storefront.database import UnitOfWork
from storefront.errors import InvalidArgumentError, UnauthenticatedError
from storefront.schemas import UserStatus
from storefront.security import ACCESS, REFRESH, RESET_PASSWORD, VERIFY_EMAIL, TokenService
from storefront.settings import Settings


def attempt_login(db, services, identifier, password):
    with UnitOfWork(db) as uow:
        return services.auth.login(uow, identifier, password)


def fetch_user(db, services, user_id):
    with UnitOfWork(db) as uow:
        return services.users.get_user_by_id(uow, user_id)


class TestLogin:
    def test_login_by_username(self, db, services, create_user):
        user = create_user("alice")

        result = attempt_login(db, services, "alice", "password123")

        assert result.user.id == user.id
        assert result.token_type == "Bearer"
        assert result.expires_in == 3600
        assert services.auth.tokens.decode_token(result.access_token, ACCESS)["sub"] == user.id
        assert services.auth.tokens.decode_token(result.refresh_token, REFRESH)["sub"] == user.id

    def test_login_by_email(self, db, services, create_user):
        user = create_user("alice")

        result = attempt_login(db, services, "alice@example.com", "password123")

        assert result.user.id == user.id
        assert result.user.last_login_date is not None

    def test_unknown_identifier(self, db, services):
        with pytest.raises(UnauthenticatedError):
            attempt_login(db, services, "ghost", "password123")

    def test_unverified_account_cannot_sign_in(self, db, services, create_user):
        create_user("alice", verified=False)

        with pytest.raises(UnauthenticatedError, match="disabled or not verified"):
            attempt_login(db, services, "alice", "password123")

    def test_disabled_account_cannot_sign_in(self, db, services, create_user):
        user = create_user("alice")
        with UnitOfWork(db) as uow:
            services.users.toggle_enabled(uow, user.id, False)

        with pytest.raises(UnauthenticatedError):
            attempt_login(db, services, "alice", "password123")

    def test_wrong_password_is_counted_despite_failure(self, db, services, create_user):
        user = create_user("alice")

        with pytest.raises(UnauthenticatedError, match="Invalid credentials"):
            attempt_login(db, services, "alice", "wrong-password")

        assert fetch_user(db, services, user.id).failed_login_attempts == 1

    def test_fifth_wrong_password_locks_account(self, db, services, create_user):
        user = create_user("alice")

        for _ in range(5):
            with pytest.raises(UnauthenticatedError):
                attempt_login(db, services, "alice", "wrong-password")

        assert not fetch_user(db, services, user.id).is_account_non_locked()
        with pytest.raises(UnauthenticatedError, match="locked"):
            attempt_login(db, services, "alice", "password123")

    def test_success_resets_failed_attempts(self, db, services, create_user):
        user = create_user("alice")
        with pytest.raises(UnauthenticatedError):
            attempt_login(db, services, "alice", "wrong-password")

        attempt_login(db, services, "alice", "password123")

        assert fetch_user(db, services, user.id).failed_login_attempts == 0


class TestTokens:
    def test_authenticate_resolves_user(self, db, services, create_user):
        user = create_user("alice")
        result = attempt_login(db, services, "alice", "password123")

        with UnitOfWork(db) as uow:
            assert services.auth.authenticate(uow, result.access_token).id == user.id

    def test_refresh_token_is_not_an_access_token(self, db, services, create_user):
        create_user("alice")
        result = attempt_login(db, services, "alice", "password123")

        with pytest.raises(UnauthenticatedError):
            with UnitOfWork(db) as uow:
                services.auth.authenticate(uow, result.refresh_token)

    def test_garbage_token(self, db, services):
        with pytest.raises(UnauthenticatedError, match="Invalid token"):
            with UnitOfWork(db) as uow:
                services.auth.authenticate(uow, "not.a.jwt")

    def test_expired_token(self, db, services, create_user):
        user = create_user("alice")
        expired = TokenService(Settings(jwt_secret="test-secret", jwt_expires_min=-1))

        with pytest.raises(UnauthenticatedError, match="expired"):
            with UnitOfWork(db) as uow:
                services.auth.authenticate(uow, expired.create_token(user, ACCESS))

    def test_token_from_other_secret_is_rejected(self, db, services, create_user):
        user = create_user("alice")
        foreign = TokenService(Settings(jwt_secret="someone-else"))

        with pytest.raises(UnauthenticatedError):
            with UnitOfWork(db) as uow:
                services.auth.authenticate(uow, foreign.create_token(user, ACCESS))

    def test_refresh_issues_new_access_token(self, db, services, create_user):
        user = create_user("alice")
        result = attempt_login(db, services, "alice", "password123")

        with UnitOfWork(db) as uow:
            refreshed = services.auth.refresh_token(uow, result.refresh_token)

        assert refreshed.refresh_token == result.refresh_token
        assert services.auth.tokens.decode_token(refreshed.access_token, ACCESS)["sub"] == user.id

    def test_logout_revokes_token(self, db, services, create_user):
        create_user("alice")
        result = attempt_login(db, services, "alice", "password123")

        with UnitOfWork(db) as uow:
            services.auth.logout(uow, result.access_token)

        with pytest.raises(UnauthenticatedError, match="revoked"):
            with UnitOfWork(db) as uow:
                services.auth.authenticate(uow, result.access_token)

    def test_locked_user_token_stops_working(self, db, services, create_user):
        user = create_user("alice")
        result = attempt_login(db, services, "alice", "password123")
        with UnitOfWork(db) as uow:
            services.users.toggle_lock(uow, user.id, True)

        with pytest.raises(UnauthenticatedError):
            with UnitOfWork(db) as uow:
                services.auth.authenticate(uow, result.access_token)


class TestPasswordReset:
    def test_forgot_password_sends_reset_email(self, db, services, email_sender, create_user):
        create_user("alice")

        with UnitOfWork(db) as uow:
            services.auth.forgot_password(uow, "alice@example.com")

        assert len(email_sender.of_kind("password_reset")) == 1

    def test_forgot_password_unknown_email_is_silent(self, db, services, email_sender):
        with UnitOfWork(db) as uow:
            services.auth.forgot_password(uow, "nobody@example.com")

        assert email_sender.of_kind("password_reset") == []

    def test_reset_password(self, db, services, create_user):
        user = create_user("alice")
        with pytest.raises(UnauthenticatedError):
            attempt_login(db, services, "alice", "wrong-password")
        token = services.auth.tokens.create_token(user, RESET_PASSWORD)

        with UnitOfWork(db) as uow:
            services.auth.reset_password(uow, token, "brandnew123", "brandnew123")

        stored = fetch_user(db, services, user.id)
        assert stored.failed_login_attempts == 0
        assert attempt_login(db, services, "alice", "brandnew123").user.id == user.id

    def test_reset_token_is_single_use(self, db, services, create_user):
        user = create_user("alice")
        token = services.auth.tokens.create_token(user, RESET_PASSWORD)
        with UnitOfWork(db) as uow:
            services.auth.reset_password(uow, token, "brandnew123", "brandnew123")

        with pytest.raises(UnauthenticatedError):
            with UnitOfWork(db) as uow:
                services.auth.reset_password(uow, token, "another123", "another123")

    def test_reset_mismatch(self, db, services, create_user):
        user = create_user("alice")
        token = services.auth.tokens.create_token(user, RESET_PASSWORD)

        with pytest.raises(InvalidArgumentError):
            with UnitOfWork(db) as uow:
                services.auth.reset_password(uow, token, "brandnew123", "different123")

    def test_access_token_cannot_reset_password(self, db, services, create_user):
        user = create_user("alice")
        token = services.auth.tokens.create_token(user, ACCESS)

        with pytest.raises(UnauthenticatedError):
            with UnitOfWork(db) as uow:
                services.auth.reset_password(uow, token, "brandnew123", "brandnew123")


class TestVerification:
    def test_verify_email_token(self, db, services, create_user):
        user = create_user("alice", verified=False)
        token = services.auth.tokens.create_token(user, VERIFY_EMAIL)

        with UnitOfWork(db) as uow:
            verified = services.auth.verify_email(uow, token)

        assert verified.status == UserStatus.ACTIVE
        assert verified.email_verified is True

    def test_register_delegates_to_user_service(self, db, services, email_sender):
        auth = AuthService(services.users, services.auth.tokens, email_sender)

        with UnitOfWork(db) as uow:
            user = auth.register(
                uow, username="carol", email="carol@example.com", password="password123",
                first_name="Carol", last_name="Danvers",
            )

        assert user.status == UserStatus.PENDING_VERIFICATION
        assert len(email_sender.of_kind("verification")) == 1
