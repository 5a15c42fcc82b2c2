import os

import mongomock
import pytest

os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "bike_store_test"

# must be patched before database.py creates its client
mongomock.patch(servers=(("localhost", 27017),)).start()

from fastapi.testclient import TestClient  # noqa: E402

import config  # noqa: E402
from currency import RateCache, get_rate_cache  # noqa: E402
from database import db  # noqa: E402
from main import app  # noqa: E402
from utils import now_utc  # noqa: E402

PHONE = "9876543210"

ADDRESS = {
    "fullName": "Asha Rao",
    "phone": PHONE,
    "addressLine1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postalCode": "560001",
    "country": "India",
}

TEST_RATES = {"INR": 1, "USD": 0.012, "EUR": 0.011, "GBP": 0.0095}


@pytest.fixture(autouse=True)
def clean_db():
    for name in db.list_collection_names():
        db.drop_collection(name)
    app.dependency_overrides.clear()
    app.dependency_overrides[get_rate_cache] = lambda: RateCache(fetch=lambda: dict(TEST_RATES))
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def razorpay_secret(monkeypatch):
    monkeypatch.setattr(config, "RAZORPAY_KEY_ID", "rzp_test_key")
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", "test_secret")
    return "test_secret"


def make_product(name="Crash Guard", price=1000, quantity=10, **extra):
    doc = {
        "name": name,
        "price": price,
        "quantityAvailable": quantity,
        "category": extra.pop("category", "Protection"),
        "isNewArrival": False,
        "isGarageFavorite": False,
        "createdAt": now_utc(),
    }
    doc.update(extra)
    return str(db["bike_product"].insert_one(doc).inserted_id)


def make_coupon(code="SAVE20", type="Percentage", discount=20, **extra):
    doc = {
        "code": code,
        "type": type,
        "discount": discount,
        "maxDiscount": None,
        "minCartAmount": 0,
        "usageLimit": None,
        "isActive": True,
        "expiresAt": None,
        "usedCount": 0,
        "usedBy": [],
        "createdAt": now_utc(),
    }
    doc.update(extra)
    return db["coupon"].insert_one(doc).inserted_id


def stock_of(product_id):
    from bson import ObjectId
    return db["bike_product"].find_one({"_id": ObjectId(product_id)})["quantityAvailable"]


def add_items(client, items, phone=PHONE, **params):
    return client.post("/api/v1/cart/item", json={"phoneNumber": phone, "items": items}, params=params)


def set_addresses(client, phone=PHONE):
    return client.post(
        "/api/v1/cart/address",
        json={"phoneNumber": phone, "shippingAddress": ADDRESS, "billingAddress": ADDRESS},
    )
