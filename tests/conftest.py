import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
from main import app
from schemas import Product

SHIPPING = {
    "firstName": "Jane",
    "lastName": "Wanjiku",
    "address": "12 Moi Avenue",
    "city": "Nairobi",
    "postalCode": "00100",
    "phone": "+254700000000",
    "email": "jane@example.com",
}


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["krystal_test"]
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(client, db):
    def _make(user_name, role="user", password="secret123"):
        resp = client.post("/auth/register", json={
            "firstName": "Test",
            "lastName": user_name.capitalize(),
            "userName": user_name,
            "email": f"{user_name}@example.com",
            "password": password,
        })
        assert resp.status_code == 201, resp.text
        data = resp.json()
        if role != "user":
            db["users"].update_one({"_id": ObjectId(data["id"])}, {"$set": {"role": role}})
        return {"id": data["id"], "headers": {"Authorization": f"Bearer {data['token']}"}}
    return _make


@pytest.fixture
def make_product(db):
    def _make(agent_id, **overrides):
        fields = {
            "name": "Leather Handbag",
            "description": "Hand-stitched leather handbag",
            "price": 1000,
            "category": "Bags",
            "brand": "Krystal",
            "stock": 10,
            "agent": agent_id,
            "reviewStatus": "approved",
        }
        doc = Product(**fields).to_document()
        doc.update(overrides)
        doc["created_at"] = doc["updated_at"] = database.now_utc()
        return str(db["products"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def agent(make_user):
    return make_user("agent_one", role="agent")


@pytest.fixture
def admin(make_user):
    return make_user("admin_one", role="admin")


@pytest.fixture
def shopper(make_user):
    return make_user("shopper")


def stock_of(db, product_id):
    return db["products"].find_one({"_id": ObjectId(product_id)})["stock"]
