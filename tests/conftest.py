"""Pytest fixtures for storefront tests."""

import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

from storefront.database import UnitOfWork, ensure_indexes
from storefront.main import Services, app, get_database, get_email_sender, get_settings
from storefront.notifications import EmailSender
from storefront.payloads import AddressIn, CategoryIn, ProductIn
from storefront.schemas import Role
from storefront.settings import Settings


class RecordingEmailSender(EmailSender):
    """Keeps every message instead of logging it."""

    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)

    def of_kind(self, kind):
        return [m for m in self.sent if m.kind == kind]


@pytest.fixture
def settings():
    """Low bcrypt cost keeps hashing fast in tests."""
    return Settings(jwt_secret="test-secret", bcrypt_rounds=4)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def services(settings, email_sender):
    return Services.build(settings, email_sender)


@pytest.fixture
def create_user(db, services):
    """Create an account; by default verified (ACTIVE) so it can sign in."""

    def _create(username="alice", email=None, password="password123", roles=None, verified=True):
        with UnitOfWork(db) as uow:
            user = services.users.create_user(
                uow,
                username=username,
                email=email or f"{username}@example.com",
                password=password,
                first_name=username.title(),
                last_name="Tester",
            )
            if verified:
                user = services.users.verify_email(uow, user.id)
            if roles:
                user = services.users.update_roles(uow, user.id, roles)
        return user

    return _create


@pytest.fixture
def category(db, services):
    with UnitOfWork(db) as uow:
        return services.categories.create_category(uow, CategoryIn(name="Gadgets", slug="gadgets"))


@pytest.fixture
def create_product(db, services, category):
    counter = itertools.count(1)

    def _create(price="10.00", stock=10, **fields):
        n = next(counter)
        data = {
            "name": f"Product {n}",
            "sku": f"SKU-{n}",
            "price": price,
            "stock_quantity": stock,
            "category_id": category.id,
        }
        data.update(fields)
        with UnitOfWork(db) as uow:
            return services.products.create_product(uow, ProductIn(**data))

    return _create


@pytest.fixture
def create_address(db, services):
    def _create(user, **fields):
        data = {
            "street_address": "1 Main St",
            "city": "Springfield",
            "state": "IL",
            "postal_code": "62701",
            "country": "US",
        }
        data.update(fields)
        with UnitOfWork(db) as uow:
            return services.addresses.create_address(uow, user.id, AddressIn(**data))

    return _create


@pytest.fixture
def api_client(db, settings, email_sender):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_database] = lambda: db
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(api_client):
    """Sign in through the API and return the bearer header."""

    def _login(username, password="password123"):
        response = api_client.post("/api/v1/auth/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _login


@pytest.fixture
def admin(create_user):
    return create_user("root", roles=[Role.ADMIN, Role.USER])
