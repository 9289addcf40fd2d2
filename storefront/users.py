"""Account lifecycle: registration, profile, credentials, lock and enablement state."""

import logging
from typing import Iterable, Optional

from pymongo.errors import DuplicateKeyError

from .database import UnitOfWork
from .errors import ConflictError, InvalidArgumentError, NotFoundError
from .notifications import EmailSender
from .repositories import (
    AddressRepository,
    CartRepository,
    OrderRepository,
    Page,
    ProductRepository,
    ReviewRepository,
    UserRepository,
)
from .schemas import Role, ShoppingCart, User, UserStatus, utc_now
from .security import VERIFY_EMAIL, PasswordHasher, TokenService
from .settings import Settings

log = logging.getLogger(__name__)


class UserService:
    """
    Owns the account security state of a user.

    Two independent axes are tracked: ``status`` (PENDING_VERIFICATION ->
    ACTIVE -> INACTIVE/SUSPENDED, any state reachable again by an admin) and
    the lock flag with its ``lockout_time``.
    """

    def __init__(self, settings: Settings, hasher: PasswordHasher, tokens: TokenService,
                 email_sender: EmailSender):
        self.settings = settings
        self.hasher = hasher
        self.tokens = tokens
        self.email_sender = email_sender

    def create_user(self, uow: UnitOfWork, username: str, email: str, password: str,
                    first_name: str, last_name: str, phone_number: Optional[str] = None) -> User:
        log.info("Creating new user with username: %s", username)
        users = UserRepository(uow)

        if users.exists_by_username(username):
            raise ConflictError(f"Username already exists: {username}", field="username")
        if users.exists_by_email(email):
            raise ConflictError(f"Email already exists: {email}", field="email")

        try:
            user = users.insert(User(
                username=username,
                email=email,
                password_hash=self.hasher.hash_password(password),
                first_name=first_name,
                last_name=last_name,
                phone_number=phone_number,
                enabled=True,
                account_non_expired=True,
                account_non_locked=True,
                credentials_non_expired=True,
                email_verified=False,
                status=UserStatus.PENDING_VERIFICATION,
                roles=[Role.USER],
            ))
        except DuplicateKeyError:
            # a concurrent registration took the name between the checks and the insert
            if users.find_by_username(username) is not None:
                raise ConflictError(f"Username already exists: {username}", field="username")
            raise ConflictError(f"Email already exists: {email}", field="email")
        CartRepository(uow).insert(ShoppingCart(user_id=user.id))
        log.info("User created successfully with ID: %s", user.id)

        self.email_sender.send_verification_email(user, self.tokens.create_token(user, VERIFY_EMAIL))
        return user

    def get_user_by_id(self, uow: UnitOfWork, user_id: str) -> User:
        return UserRepository(uow).get(user_id)

    def get_user_by_username(self, uow: UnitOfWork, username: str) -> User:
        user = UserRepository(uow).find_by_username(username)
        if user is None:
            raise NotFoundError("User", "username", username)
        return user

    def get_user_by_email(self, uow: UnitOfWork, email: str) -> User:
        user = UserRepository(uow).find_by_email(email)
        if user is None:
            raise NotFoundError("User", "email", email)
        return user

    def update_user(self, uow: UnitOfWork, user_id: str, first_name: str, last_name: str,
                    phone_number: Optional[str] = None) -> User:
        log.info("Updating user with ID: %s", user_id)
        users = UserRepository(uow)
        users.get(user_id)
        user = users.update(user_id, {
            "first_name": first_name,
            "last_name": last_name,
            "phone_number": phone_number,
        })
        log.info("User updated successfully with ID: %s", user_id)
        return user

    def change_password(self, uow: UnitOfWork, user_id: str, current_password: str,
                        new_password: str, confirm_password: str) -> None:
        log.info("Changing password for user ID: %s", user_id)
        users = UserRepository(uow)
        user = users.get(user_id)

        if not self.hasher.verify_password(current_password, user.password_hash):
            raise InvalidArgumentError("Current password is incorrect")
        if new_password != confirm_password:
            raise InvalidArgumentError("New password and confirmation do not match")

        users.update(user_id, {"password_hash": self.hasher.hash_password(new_password)})
        log.info("Password changed successfully for user ID: %s", user_id)

    def set_password(self, uow: UnitOfWork, user_id: str, new_password: str) -> None:
        UserRepository(uow).update(user_id, {
            "password_hash": self.hasher.hash_password(new_password),
            "failed_login_attempts": 0,
        })

    def delete_user(self, uow: UnitOfWork, user_id: str) -> None:
        log.info("Deleting user with ID: %s", user_id)
        users = UserRepository(uow)
        users.get(user_id)
        reviewed = {review.product_id for review in ReviewRepository(uow).find_all({"user_id": user_id})}
        for repo in (AddressRepository(uow), CartRepository(uow), OrderRepository(uow), ReviewRepository(uow)):
            repo.delete_many({"user_id": user_id})
        products = ProductRepository(uow)
        for product_id in reviewed:
            products.refresh_rating(product_id)
        users.delete(user_id)
        log.info("User deleted successfully with ID: %s", user_id)

    def list_users(self, uow: UnitOfWork, page: int, page_size: int) -> Page[User]:
        return UserRepository(uow).search(None, page, page_size)

    def search_users(self, uow: UnitOfWork, text: Optional[str], page: int, page_size: int) -> Page[User]:
        return UserRepository(uow).search(text, page, page_size)

    def toggle_enabled(self, uow: UnitOfWork, user_id: str, enabled: bool) -> User:
        log.info("Toggling user status for ID: %s to %s", user_id, enabled)
        user = UserRepository(uow).update(user_id, {
            "enabled": enabled,
            "status": (UserStatus.ACTIVE if enabled else UserStatus.INACTIVE).value,
        })
        log.info("User status toggled successfully for ID: %s", user_id)
        return user

    def toggle_lock(self, uow: UnitOfWork, user_id: str, locked: bool) -> User:
        log.info("Toggling user lock for ID: %s to %s", user_id, locked)
        users = UserRepository(uow)
        if locked:
            user = users.lock_account(user_id, utc_now())
        else:
            user = users.unlock_account(user_id)
        log.info("User lock toggled successfully for ID: %s", user_id)
        return user

    def verify_email(self, uow: UnitOfWork, user_id: str) -> User:
        log.info("Verifying email for user ID: %s", user_id)
        user = UserRepository(uow).update(user_id, {
            "email_verified": True,
            "status": UserStatus.ACTIVE.value,
        })
        log.info("Email verified successfully for user ID: %s", user_id)
        return user

    def update_roles(self, uow: UnitOfWork, user_id: str, roles: Iterable[Role]) -> User:
        log.info("Updating roles for user ID: %s", user_id)
        values = sorted({Role(role).value for role in roles})
        return UserRepository(uow).update(user_id, {"roles": values})

    def record_successful_login(self, uow: UnitOfWork, user_id: str) -> User:
        users = UserRepository(uow)
        users.update_last_login_date(user_id, utc_now())
        return users.update_failed_login_attempts(user_id, 0)

    def record_failed_login(self, uow: UnitOfWork, identifier: str) -> Optional[User]:
        users = UserRepository(uow)
        user = users.find_by_username_or_email(identifier)
        if user is None:
            return None

        attempts = user.failed_login_attempts + 1
        user = users.update_failed_login_attempts(user.id, attempts)
        if attempts >= self.settings.lockout_threshold:
            user = users.lock_account(user.id, utc_now())
            log.warning("User account locked due to failed login attempts: %s", identifier)
        return user
