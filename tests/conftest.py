import mongomock
import pytest
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from database import ensure_indexes
from main import create_app


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    with TestClient(create_app(db)) as c:
        yield c


@pytest.fixture
def pen(client):
    res = client.post("/api/products", json={"name": "Pen", "price": 10, "category": "stationery", "stock": 5})
    assert res.status_code == 201
    return res.json()


class UnavailableCollection:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise PyMongoError("store unavailable")

        return fail


class UnavailableDatabase:
    name = "unavailable"

    def __getitem__(self, name):
        return UnavailableCollection()


@pytest.fixture
def broken_client():
    with TestClient(create_app(UnavailableDatabase())) as c:
        yield c
