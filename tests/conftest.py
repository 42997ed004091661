"""Pytest fixtures for the storefront tests."""

import copy

import mongomock
import pytest
from fastapi.testclient import TestClient

from catalog import CatalogStore
from database import ensure_indexes, get_db
from errors import PaymentNotFound
from events import EventBus
from notifications import NotificationService
from orders import OrderManager, compute_shipping
from payments import PaymentService
from schemas import Category, CreateOrderRequest, ProductCreate
from security import create_access_token
from settings import Settings, get_settings
from users import UserService

TEST_SETTINGS = Settings(
    database_name="storefront_test",
    jwt_secret="test-secret",
    paystack_secret_key="sk_test_secret",
    free_shipping_threshold=50.0,
    shipping_fee=10.0,
)

SHIPPING_ADDRESS = {
    "full_name": "Ada Obi",
    "address": "12 Marina Road",
    "city": "Lagos",
    "state": "Lagos",
    "phone": "08030000000",
}


class FakeGateway:
    """Stands in for the processor: transactions keyed by reference."""

    def __init__(self):
        self.transactions = {}
        self.errors = {}
        self.calls = []

    def add(self, reference, amount, status="success", email="ada@example.com"):
        self.transactions[reference] = {
            "id": 1000 + len(self.transactions),
            "status": status,
            "reference": reference,
            "amount": amount,
            "paid_at": "2026-10-01T10:00:00Z",
            "customer": {"email": email},
        }

    def fetch_transaction(self, reference):
        self.calls.append(reference)
        if reference in self.errors:
            raise self.errors[reference]
        if reference not in self.transactions:
            raise PaymentNotFound(reference)
        return copy.deepcopy(self.transactions[reference])


def auth_header(user, settings=TEST_SETTINGS):
    return {"Authorization": f"Bearer {create_access_token(str(user['_id']), settings)}"}


def order_payload(lines, settings=TEST_SETTINGS, **overrides):
    """Build an order body for (product doc, quantity) lines with correct totals."""
    items_price = round(sum(p["price"] * q for p, q in lines), 2)
    shipping_price = compute_shipping(items_price, settings.free_shipping_threshold, settings.shipping_fee)
    payload = {
        "order_items": [{"product_id": str(p["_id"]), "quantity": q} for p, q in lines],
        "shipping_address": dict(SHIPPING_ADDRESS),
        "payment_method": "card",
        "items_price": items_price,
        "shipping_price": shipping_price,
        "total_price": items_price + shipping_price,
    }
    payload.update(overrides)
    return payload


def order_request(lines, **overrides):
    return CreateOrderRequest(**order_payload(lines, **overrides))


@pytest.fixture
def settings():
    return TEST_SETTINGS


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def catalog(db, events):
    return CatalogStore(db, events)


@pytest.fixture
def users(db):
    return UserService(db)


@pytest.fixture
def notifications(db):
    return NotificationService(db)


@pytest.fixture
def orders(db, catalog, users, notifications, settings):
    return OrderManager(db, catalog, users, notifications, settings)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def payments(orders, gateway, settings):
    return PaymentService(orders, gateway, settings.paystack_secret_key)


@pytest.fixture
def make_product(catalog):
    def _make(**overrides):
        fields = {
            "name": "Jollof Rice",
            "description": "Party-style jollof with fried plantain",
            "price": 20.0,
            "category": Category.FOOD,
            "stock": 10,
        }
        fields.update(overrides)
        return catalog.create_product(ProductCreate(**fields))

    return _make


@pytest.fixture
def customer(users):
    return users.signup("Ada Obi", "ada@example.com", "secret123")


@pytest.fixture
def other_customer(users):
    return users.signup("Tunde Bello", "tunde@example.com", "secret456")


@pytest.fixture
def admin(users):
    return users.upsert_admin("Admin", "admin@example.com", "adminpass")


@pytest.fixture
def client(db, gateway):
    from main import app, get_payment_gateway

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
