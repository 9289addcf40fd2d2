"""Sign-in, token refresh/revocation, password reset and email verification flows."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .database import UnitOfWork
from .errors import InvalidArgumentError, UnauthenticatedError
from .notifications import EmailSender
from .repositories import RevokedTokenRepository, UserRepository
from .schemas import User, utc_now
from .security import ACCESS, REFRESH, RESET_PASSWORD, VERIFY_EMAIL, TokenService
from .users import UserService

log = logging.getLogger(__name__)


@dataclass
class LoginResult:
    access_token: str
    refresh_token: str
    expires_in: int
    user: User
    token_type: str = "Bearer"


class AuthService:
    def __init__(self, users: UserService, tokens: TokenService, email_sender: EmailSender):
        self.users = users
        self.tokens = tokens
        self.email_sender = email_sender

    def register(self, uow: UnitOfWork, **fields) -> User:
        return self.users.create_user(uow, **fields)

    def login(self, uow: UnitOfWork, identifier: str, password: str) -> LoginResult:
        """
        Authenticate by username or email.

        Lock and enablement are checked before the password. A wrong password
        counts toward the lockout threshold; every failure surfaces as
        UnauthenticatedError.
        """
        user = UserRepository(uow).find_by_username_or_email(identifier)
        if user is None:
            raise UnauthenticatedError("Invalid credentials")

        now = utc_now()
        if not user.is_account_non_locked(now):
            raise UnauthenticatedError("Account is locked")
        if not user.is_enabled():
            raise UnauthenticatedError("Account is disabled or not verified")

        if not self.users.hasher.verify_password(password, user.password_hash):
            # separate unit of work: the attempt must stick even though this request fails
            with UnitOfWork(uow.db) as bookkeeping:
                self.users.record_failed_login(bookkeeping, identifier)
            raise UnauthenticatedError("Invalid credentials")

        user = self.users.record_successful_login(uow, user.id)
        log.info("User logged in: %s", user.username)
        return LoginResult(
            access_token=self.tokens.create_token(user, ACCESS),
            refresh_token=self.tokens.create_token(user, REFRESH),
            expires_in=self.tokens.expires_in(ACCESS),
            user=user,
        )

    def authenticate(self, uow: UnitOfWork, token: str) -> User:
        """Resolve the caller behind an access token."""
        payload = self.tokens.decode_token(token, ACCESS)
        if RevokedTokenRepository(uow).is_revoked(payload.get("jti")):
            raise UnauthenticatedError("Token revoked")
        user = UserRepository(uow).find(payload.get("sub") or "")
        if user is None or not user.can_sign_in():
            raise UnauthenticatedError("User not found or not allowed to sign in")
        return user

    def refresh_token(self, uow: UnitOfWork, refresh_token: str) -> LoginResult:
        payload = self.tokens.decode_token(refresh_token, REFRESH)
        if RevokedTokenRepository(uow).is_revoked(payload.get("jti")):
            raise UnauthenticatedError("Token revoked")
        user = UserRepository(uow).find(payload.get("sub") or "")
        if user is None or not user.can_sign_in():
            raise UnauthenticatedError("User not found or not allowed to sign in")
        return LoginResult(
            access_token=self.tokens.create_token(user, ACCESS),
            refresh_token=refresh_token,
            expires_in=self.tokens.expires_in(ACCESS),
            user=user,
        )

    def logout(self, uow: UnitOfWork, token: str) -> None:
        payload = self.tokens.decode_token(token, expected_type=None)
        RevokedTokenRepository(uow).revoke(payload["jti"], _expiry(payload))
        log.info("Token revoked for user ID: %s", payload.get("sub"))

    def forgot_password(self, uow: UnitOfWork, email: str) -> None:
        user = UserRepository(uow).find_by_email(email)
        if user is None:
            log.info("Password reset requested for unknown email")
            return
        self.email_sender.send_password_reset_email(user, self.tokens.create_token(user, RESET_PASSWORD))

    def reset_password(self, uow: UnitOfWork, token: str, new_password: str, confirm_password: str) -> None:
        payload = self.tokens.decode_token(token, RESET_PASSWORD)
        revoked = RevokedTokenRepository(uow)
        if revoked.is_revoked(payload.get("jti")):
            raise UnauthenticatedError("Token revoked")
        if new_password != confirm_password:
            raise InvalidArgumentError("New password and confirmation do not match")
        user = UserRepository(uow).get(payload["sub"])
        self.users.set_password(uow, user.id, new_password)
        revoked.revoke(payload["jti"], _expiry(payload))
        log.info("Password reset for user ID: %s", user.id)

    def verify_email(self, uow: UnitOfWork, token: str) -> User:
        payload = self.tokens.decode_token(token, VERIFY_EMAIL)
        return self.users.verify_email(uow, payload["sub"])


def _expiry(payload) -> Optional[datetime]:
    exp = payload.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc).replace(tzinfo=None)
