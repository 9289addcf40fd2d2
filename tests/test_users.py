"""Tests for UserService."""

import pytest
from bson import ObjectId

from storefront.database import UnitOfWork
from storefront.errors import ConflictError, InvalidArgumentError, NotFoundError
from storefront.payloads import ReviewIn
from storefront.repositories import UserRepository
from storefront.schemas import Role, UserStatus
from storefront.security import VERIFY_EMAIL, authorities
from storefront.settings import Settings
from storefront.users import UserService


def fetch_user(db, services, user_id):
    with UnitOfWork(db) as uow:
        return services.users.get_user_by_id(uow, user_id)


class TestCreateUser:
    def test_new_user_is_pending_with_user_role(self, db, services):
        with UnitOfWork(db) as uow:
            user = services.users.create_user(
                uow, username="alice", email="a@x.io", password="password123",
                first_name="Alice", last_name="Liddell",
            )

        assert user.id is not None
        assert user.status == UserStatus.PENDING_VERIFICATION
        assert user.roles == [Role.USER]
        assert user.email_verified is False
        assert user.failed_login_attempts == 0
        assert user.is_account_non_locked()
        assert not user.is_enabled()

    def test_password_is_hashed(self, db, services, create_user):
        user = create_user("alice", password="password123")

        assert user.password_hash != "password123"
        assert services.users.hasher.verify_password("password123", user.password_hash)

    def test_creates_cart(self, db, create_user):
        user = create_user("alice")

        assert db["cart"].count_documents({"user_id": user.id}) == 1

    def test_sends_one_verification_email(self, services, email_sender, create_user):
        user = create_user("alice", verified=False)

        emails = email_sender.of_kind("verification")
        assert len(emails) == 1
        assert emails[0].to == "alice@example.com"
        token = emails[0].body.rsplit(" ", 1)[-1]
        payload = services.auth.tokens.decode_token(token, VERIFY_EMAIL)
        assert payload["sub"] == user.id

    def test_duplicate_username_conflicts(self, db, services, create_user):
        create_user("alice", email="a@x.io")

        with pytest.raises(ConflictError) as exc_info:
            with UnitOfWork(db) as uow:
                services.users.create_user(
                    uow, username="alice", email="other@x.io", password="password123",
                    first_name="A", last_name="B",
                )
        assert exc_info.value.field == "username"
        assert db["user"].count_documents({}) == 1

    def test_username_conflict_reported_before_email(self, db, services, create_user):
        create_user("alice", email="a@x.io")

        with pytest.raises(ConflictError) as exc_info:
            with UnitOfWork(db) as uow:
                services.users.create_user(
                    uow, username="alice", email="a@x.io", password="password123",
                    first_name="A", last_name="B",
                )
        assert exc_info.value.field == "username"

    def test_duplicate_email_conflicts(self, db, services, create_user):
        create_user("alice", email="a@x.io")

        with pytest.raises(ConflictError) as exc_info:
            with UnitOfWork(db) as uow:
                services.users.create_user(
                    uow, username="bob", email="a@x.io", password="password123",
                    first_name="B", last_name="C",
                )
        assert exc_info.value.field == "email"
        assert "a@x.io" in str(exc_info.value)

    @pytest.mark.parametrize("username,email,field", [
        ("alice", "other@x.io", "username"),
        ("bob", "a@x.io", "email"),
    ])
    def test_unique_index_collision_is_a_conflict(self, db, services, create_user, monkeypatch, username, email, field):
        create_user("alice", email="a@x.io")
        # both existence checks miss, as when two registrations race
        monkeypatch.setattr(UserRepository, "exists_by_username", lambda self, name: False)
        monkeypatch.setattr(UserRepository, "exists_by_email", lambda self, address: False)

        with pytest.raises(ConflictError) as exc_info:
            with UnitOfWork(db) as uow:
                services.users.create_user(
                    uow, username=username, email=email, password="password123",
                    first_name="B", last_name="C",
                )
        assert exc_info.value.field == field
        assert db["user"].count_documents({}) == 1
        assert db["cart"].count_documents({}) == 1


class TestLookup:
    def test_get_by_username_and_email(self, db, services, create_user):
        user = create_user("alice")

        with UnitOfWork(db) as uow:
            assert services.users.get_user_by_username(uow, "alice").id == user.id
            assert services.users.get_user_by_email(uow, "alice@example.com").id == user.id

    def test_missing_user_raises_not_found(self, db, services):
        with UnitOfWork(db) as uow:
            with pytest.raises(NotFoundError):
                services.users.get_user_by_id(uow, str(ObjectId()))
            with pytest.raises(NotFoundError):
                services.users.get_user_by_username(uow, "nobody")
            with pytest.raises(NotFoundError):
                services.users.get_user_by_id(uow, "not-an-id")

    def test_search_is_case_insensitive(self, db, services, create_user):
        create_user("alice")
        create_user("bob")

        with UnitOfWork(db) as uow:
            page = services.users.search_users(uow, "ALI", 1, 20)
            everyone = services.users.search_users(uow, "", 1, 20)

        assert [u.username for u in page.items] == ["alice"]
        assert everyone.total == 2


class TestChangePassword:
    def test_wrong_current_password_leaves_hash_unchanged(self, db, services, create_user):
        user = create_user("alice", password="password123")

        with pytest.raises(InvalidArgumentError, match="Current password is incorrect"):
            with UnitOfWork(db) as uow:
                services.users.change_password(uow, user.id, "nope-nope", "newpassword1", "newpassword1")

        assert fetch_user(db, services, user.id).password_hash == user.password_hash

    def test_confirmation_mismatch(self, db, services, create_user):
        user = create_user("alice")

        with pytest.raises(InvalidArgumentError, match="do not match"):
            with UnitOfWork(db) as uow:
                services.users.change_password(uow, user.id, "password123", "newpassword1", "newpassword2")

    def test_success_stores_new_hash(self, db, services, create_user):
        user = create_user("alice")

        with UnitOfWork(db) as uow:
            services.users.change_password(uow, user.id, "password123", "newpassword1", "newpassword1")

        stored = fetch_user(db, services, user.id)
        assert services.users.hasher.verify_password("newpassword1", stored.password_hash)
        assert not services.users.hasher.verify_password("password123", stored.password_hash)

    def test_unknown_user(self, db, services):
        with pytest.raises(NotFoundError):
            with UnitOfWork(db) as uow:
                services.users.change_password(uow, str(ObjectId()), "a", "b", "b")


class TestFailedLogins:
    def test_four_failures_do_not_lock(self, db, services, create_user):
        user = create_user("alice")

        for _ in range(4):
            with UnitOfWork(db) as uow:
                services.users.record_failed_login(uow, "alice")

        stored = fetch_user(db, services, user.id)
        assert stored.failed_login_attempts == 4
        assert stored.is_account_non_locked()

    def test_fifth_failure_locks(self, db, services, create_user):
        user = create_user("alice")

        for _ in range(5):
            with UnitOfWork(db) as uow:
                services.users.record_failed_login(uow, "alice")

        stored = fetch_user(db, services, user.id)
        assert stored.failed_login_attempts == 5
        assert stored.account_non_locked is False
        assert stored.lockout_time is not None
        assert not stored.can_sign_in()

    def test_threshold_is_configurable(self, db, services, email_sender, create_user):
        user = create_user("alice")
        strict = UserService(Settings(lockout_threshold=2, bcrypt_rounds=4), services.users.hasher,
                             services.users.tokens, email_sender)

        for _ in range(2):
            with UnitOfWork(db) as uow:
                strict.record_failed_login(uow, "alice@example.com")

        assert not fetch_user(db, services, user.id).is_account_non_locked()

    def test_unknown_identifier_is_ignored(self, db, services):
        with UnitOfWork(db) as uow:
            assert services.users.record_failed_login(uow, "ghost") is None

    def test_successful_login_resets_counter(self, db, services, create_user):
        user = create_user("alice")
        with UnitOfWork(db) as uow:
            services.users.record_failed_login(uow, "alice")
            services.users.record_failed_login(uow, "alice")
            updated = services.users.record_successful_login(uow, user.id)

        assert updated.failed_login_attempts == 0
        assert updated.last_login_date is not None


class TestAdministration:
    def test_toggle_enabled(self, db, services, create_user):
        user = create_user("alice")

        with UnitOfWork(db) as uow:
            disabled = services.users.toggle_enabled(uow, user.id, False)
        assert disabled.enabled is False
        assert disabled.status == UserStatus.INACTIVE
        assert not disabled.is_enabled()

        with UnitOfWork(db) as uow:
            enabled = services.users.toggle_enabled(uow, user.id, True)
        assert enabled.status == UserStatus.ACTIVE
        assert enabled.is_enabled()

    def test_toggle_lock(self, db, services, create_user):
        user = create_user("alice")

        with UnitOfWork(db) as uow:
            locked = services.users.toggle_lock(uow, user.id, True)
        assert not locked.is_account_non_locked()

        with UnitOfWork(db) as uow:
            services.users.record_failed_login(uow, "alice")
            unlocked = services.users.toggle_lock(uow, user.id, False)
        assert unlocked.is_account_non_locked()
        assert unlocked.failed_login_attempts == 0

    def test_toggle_lock_unknown_user(self, db, services):
        with pytest.raises(NotFoundError):
            with UnitOfWork(db) as uow:
                services.users.toggle_lock(uow, str(ObjectId()), True)

    def test_verify_email_activates(self, db, services, create_user):
        user = create_user("alice", verified=False)

        with UnitOfWork(db) as uow:
            verified = services.users.verify_email(uow, user.id)

        assert verified.email_verified is True
        assert verified.status == UserStatus.ACTIVE
        assert verified.can_sign_in()

    def test_update_roles_replaces_set(self, db, services, create_user):
        user = create_user("alice")

        with UnitOfWork(db) as uow:
            updated = services.users.update_roles(uow, user.id, [Role.ADMIN, Role.USER, Role.ADMIN])

        assert updated.roles == [Role.ADMIN, Role.USER]
        assert authorities(updated.roles) == ["ROLE_ADMIN", "ROLE_USER"]

    def test_update_user_profile(self, db, services, create_user):
        user = create_user("alice")

        with UnitOfWork(db) as uow:
            updated = services.users.update_user(uow, user.id, "Alicia", "Keys", "555-0100")

        assert updated.full_name == "Alicia Keys"
        assert updated.phone_number == "555-0100"

    def test_delete_user_cascades(self, db, services, create_user, create_address):
        user = create_user("alice")
        create_address(user)

        with UnitOfWork(db) as uow:
            services.users.delete_user(uow, user.id)

        assert db["user"].count_documents({}) == 0
        assert db["cart"].count_documents({"user_id": user.id}) == 0
        assert db["address"].count_documents({"user_id": user.id}) == 0
        with pytest.raises(NotFoundError):
            fetch_user(db, services, user.id)

    def test_delete_user_refreshes_product_ratings(self, db, services, create_user, create_product):
        product = create_product()
        alice = create_user("alice")
        bob = create_user("bob")
        with UnitOfWork(db) as uow:
            kept = services.reviews.create_review(uow, product.id, alice.id, ReviewIn(rating=5))
            dropped = services.reviews.create_review(uow, product.id, bob.id, ReviewIn(rating=1))
            services.reviews.approve_review(uow, kept.id)
            services.reviews.approve_review(uow, dropped.id)

        with UnitOfWork(db) as uow:
            services.users.delete_user(uow, bob.id)
            rated = services.products.get_product(uow, product.id)

        assert rated.average_rating == 5.0
        assert rated.rating_count == 1
        assert db["review"].count_documents({"user_id": bob.id}) == 0
