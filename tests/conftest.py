from datetime import datetime

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import config
import database
import main
from auth import create_token, hash_password
from schemas import CRATE_FIELDS, crate_total

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture(autouse=True)
def db(monkeypatch, tmp_path):
    mock_db = mongomock.MongoClient()["milk_distributor_test"]
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path))
    return mock_db


@pytest.fixture
def client():
    # no context manager: the lifespan (db ping, scheduler) stays off in tests
    return TestClient(main.app)


def make_user(db, email, role="customer", password="secret123", name="Ravi Kumar"):
    user = {
        "name": name,
        "email": email,
        "password_hash": hash_password(password),
        "role": role,
        "phone": "9876543210",
        "address": "12 Market Road, Pune",
        "created_at": datetime.now(),
        "updated_at": datetime.now(),
    }
    db["user"].insert_one(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_token(user)}"}


def insert_order(db, customer, delivery_at, status="Pending", **fields):
    order = {
        "customer": str(customer["_id"]),
        "shop_name": "Shree Dairy",
        "address": "4 Station Road",
        "delivery_date": datetime(delivery_at.year, delivery_at.month, delivery_at.day),
        "delivery_time": delivery_at.strftime("%H:%M"),
        "payment_screenshot": "/uploads/proof.png",
        "payment_method": "ONLINE",
        "status": status,
        "payment_status": "Unpaid",
        "status_locked": False,
        "created_at": datetime.now(),
        "updated_at": datetime.now(),
    }
    for field in CRATE_FIELDS:
        order[field] = 0
    order.update(fields)
    order.setdefault("total_amount", crate_total(order))
    db["order"].insert_one(order)
    return order


@pytest.fixture
def customer(db):
    return make_user(db, "ravi@example.com")


@pytest.fixture
def other_customer(db):
    return make_user(db, "meena@example.com", name="Meena Patil")


@pytest.fixture
def admin(db):
    return make_user(db, "owner@example.com", role="admin", name="Owner")


@pytest.fixture
def admin_account(monkeypatch):
    email = "admin@kumarmilk.com"
    monkeypatch.setattr(main, "ADMIN_EMAIL", email)
    monkeypatch.setattr(auth, "ADMIN_EMAIL", email)
    monkeypatch.setattr(main, "ADMIN_PASSWORD", "Dairy-Seed-2024")
    return email
