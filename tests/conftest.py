"""
Shared fixtures: an in-memory MongoDB, the API wired to it, and helpers for users,
courses and orders.
"""
from datetime import datetime
from typing import Any, Dict, Optional

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import create_token, hash_password
from database import ensure_indexes, get_db
from main import app


@pytest.fixture
def db():
    database = mongomock.MongoClient()["coursecart_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, name: str = "Asha Rao", email: str = "asha@example.com", phone: Optional[str] = "9876543210",
              role: str = "user") -> Dict[str, Any]:
    doc = {"name": name, "email": email, "phone": phone, "role": role, "is_active": True,
           "password_hash": hash_password("secret123")}
    doc["_id"] = db["user"].insert_one(doc).inserted_id
    return doc


def auth_header(user: Dict[str, Any]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_token(user)}"}


def make_course(db, title: str = "Python for Data Science", price: Any = 499, image: str = "/img/python.jpg") -> str:
    return str(db["course"].insert_one({"title": title, "price": price, "imageUrl": image}).inserted_id)


def insert_order(db, status: str = "pending", amount: float = 100, email: str = "asha@example.com",
                 name: str = "Asha Rao", title: str = "Python for Data Science",
                 created_at: Optional[datetime] = None, order_id: Optional[str] = None) -> str:
    created_at = created_at or datetime.utcnow()
    doc = {
        "orderId": order_id or f"ORD{ObjectId()}",
        "courseId": str(ObjectId()),
        "user": {"name": name, "email": email, "phone": "9876543210"},
        "course": {"title": title, "price": amount, "image": ""},
        "amount": amount,
        "orderStatus": status,
        "orderDate": created_at.date().isoformat(),
        "created_at": created_at,
        "updated_at": created_at,
    }
    return str(db["order"].insert_one(doc).inserted_id)


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def admin(db):
    return make_user(db, name="Admin", email="admin@example.com", role="admin")


@pytest.fixture
def course_id(db):
    return make_course(db)
