"""Pytest fixtures for the storefront order tests."""

import copy
from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from checkout import Identity
from notifications import NotificationResult
from schemas import CheckoutRequest, User
from store import OrderStore, UserStore


SHIPPING = {
    "fullName": "Asha Verma",
    "email": "asha@example.com",
    "phone": "9876543210",
    "address": "12 MG Road",
    "city": "Pune",
    "state": "MH",
    "zipCode": "411001",
    "country": "India",
    "landmark": "Near the park",
    "addressType": "residential",
    "notes": "Ring twice",
}

CART = [
    {
        "product": {
            "_id": "prod-a",
            "name": "Product A",
            "slug": {"current": "product-a"},
            "price": 1000,
            "discount": 10,
        },
        "quantity": 2,
    }
]


def checkout_body(**overrides):
    """Wire-format checkout body for cart A (2 x 1000 at 10% off), tax 100, shipping 50."""
    body = {
        "cartItems": copy.deepcopy(CART),
        "shippingDetails": dict(SHIPPING),
        "paymentMethod": "cod",
        "totalPrice": 1950,
        "subtotal": 1800,
        "tax": 100,
        "shipping": 50,
        "discount": 0,
    }
    body.update(overrides)
    return body


# (price, discount %, quantity, subtotal, tax, shipping, totalPrice) as the storefront cart
# computes them: unrounded line values summed, then each figure rounded half-up.
# The last one rounds to a total one cent below the sum of its rounded parts.
FRACTIONAL_CARTS = [
    (499, 12.5, 2, 873.25, 87.33, 200, 1160.58),
    (33.33, 15, 100, 2833.05, 283.31, 0, 3116.36),
    (2.5, 1, 1, 2.48, 0.25, 200, 202.72),
]


def fractional_cart_body(price, discount, quantity, subtotal, tax, shipping, total):
    return {
        "cartItems": [
            {
                "product": {"_id": "prod-f", "name": "Product F", "slug": "product-f", "price": price, "discount": discount},
                "quantity": quantity,
            }
        ],
        "subtotal": subtotal,
        "tax": tax,
        "shipping": shipping,
        "discount": 0,
        "totalPrice": total,
    }


def checkout_request(**overrides) -> CheckoutRequest:
    return CheckoutRequest.model_validate(checkout_body(**overrides))


def as_utc(value):
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class RecordingNotifier:
    """Notifier stand-in that records calls and can be told to fail."""

    def __init__(self, fail=False, raise_error=False):
        self.fail = fail
        self.raise_error = raise_error
        self.confirmations = []
        self.status_updates = []

    def _result(self):
        if self.raise_error:
            raise ConnectionError("smtp transport down")
        if self.fail:
            return NotificationResult(False, "transport rejected message")
        return NotificationResult(True, "sent")

    def send_order_confirmation(self, customer_email, customer_name, order):
        self.confirmations.append((customer_email, customer_name, order["order_id"]))
        return self._result()

    def send_status_update(self, customer_email, customer_name, order, new_status, description):
        self.status_updates.append((customer_email, order["order_id"], new_status, description))
        return self._result()


@pytest.fixture
def mongo_db():
    client = mongomock.MongoClient(tz_aware=True)
    db = client["storefront_test"]
    OrderStore(db).ensure_indexes()
    yield db
    client.close()


@pytest.fixture
def orders(mongo_db):
    return OrderStore(mongo_db)


@pytest.fixture
def users(mongo_db):
    return UserStore(mongo_db)


@pytest.fixture
def notifier():
    return RecordingNotifier()


def insert_user(db, name, email, is_admin=False, password_hash=None, addresses=None):
    doc = User(
        name=name,
        email=email,
        password_hash=password_hash,
        is_admin=is_admin,
        addresses=addresses or [],
    ).model_dump()
    db["user"].insert_one(doc)
    return doc


@pytest.fixture
def customer(mongo_db):
    return insert_user(mongo_db, "Asha Verma", "asha@example.com")


@pytest.fixture
def admin(mongo_db):
    return insert_user(mongo_db, "Admin", "admin@shopease.com", is_admin=True)


@pytest.fixture
def identity(customer):
    return Identity(user_id=str(customer["_id"]), email=customer["email"])


@pytest.fixture
def client(mongo_db, notifier):
    from main import app, get_db, get_notifier

    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer_headers(customer):
    from main import token_for

    return {"Authorization": f"Bearer {token_for(customer)}"}


@pytest.fixture
def admin_headers(admin):
    from main import token_for

    return {"Authorization": f"Bearer {token_for(admin)}"}
