from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import catalog
import coupons
import database
from main import app
from schemas import Coupon, Product


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    test_db = client["storefront_test"]
    database.ensure_indexes(test_db)
    return test_db


@pytest.fixture
def client(db):
    app.dependency_overrides[database.get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db):
    def _make(**fields):
        data = {"name": "Leather Wallet", "price": 100.0, "stock": 10}
        data.update(fields)
        return catalog.create_product(db, Product(**data))
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(**fields):
        now = database.utcnow()
        data = {
            "code": "SAVE10",
            "name": "Ten percent off",
            "type": "percentage",
            "value": 10,
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
        }
        data.update(fields)
        return coupons.create_coupon(db, Coupon(**data))
    return _make


def _user(db, email, is_admin=False):
    user = auth.register_user(db, "Test User", email, "secret123", is_admin=is_admin)
    return user, {"Authorization": f"Bearer {auth.create_token(user)}"}


@pytest.fixture
def shopper(db):
    return _user(db, "shopper@shop.io")


@pytest.fixture
def other_shopper(db):
    return _user(db, "other@shop.io")


@pytest.fixture
def admin(db):
    return _user(db, "admin@shop.io", is_admin=True)


@pytest.fixture
def address():
    return {
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "KA",
        "zipCode": "560001",
        "phone": "9999999999",
    }
