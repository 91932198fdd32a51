# Shared helpers for API tests.
# The fake database mirrors the slice of pymongo the store uses, so route tests
# exercise the real query documents without a running MongoDB.

from __future__ import annotations

import copy
import re
from contextlib import contextmanager
from types import SimpleNamespace
from typing import Any, Dict, Iterator, List, Optional

from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from database import MarketplaceStore
from main import create_app
from settings import Settings

_MISSING = object()


def _lookup(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, cond in query.items():
        value = _lookup(doc, key)
        if isinstance(cond, dict) and "$regex" in cond:
            flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
            if not isinstance(value, str) or not re.search(cond["$regex"], value, flags):
                return False
        elif value is _MISSING or value != cond:
            return False
    return True


def _sort_key(field: str):
    def key(doc: Dict[str, Any]):
        value = _lookup(doc, field)
        if value is _MISSING or value is None:
            return (0, 0)
        return (1, value)
    return key


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]], projection: Optional[Dict[str, int]] = None) -> None:
        self._docs = docs
        self._projection = projection

    def sort(self, field: str, direction: int = 1) -> "FakeCursor":
        self._docs = sorted(self._docs, key=_sort_key(field), reverse=direction < 0)
        return self

    def limit(self, n: int) -> "FakeCursor":
        if n:
            self._docs = self._docs[:n]
        return self

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        # MongoDB projects after sort and limit
        if not self._projection:
            return iter(self._docs)
        keep = {k for k, v in self._projection.items() if v} | {"_id"}
        return iter([{k: v for k, v in d.items() if k in keep} for d in self._docs])


class FakeCollection:
    def __init__(self, db: "FakeDatabase", name: str) -> None:
        self._db = db
        self.name = name
        self.docs: List[Dict[str, Any]] = []

    def _touch(self) -> None:
        self._db.operations += 1
        if self._db.fail:
            raise PyMongoError("simulated outage")

    def find(self, query: Optional[Dict[str, Any]] = None, projection: Optional[Dict[str, int]] = None) -> FakeCursor:
        self._touch()
        found = [copy.deepcopy(d) for d in self.docs if _matches(d, query or {})]
        return FakeCursor(found, projection)

    def find_one(self, query: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        self._touch()
        for d in self.docs:
            if _matches(d, query or {}):
                return copy.deepcopy(d)
        return None

    def insert_one(self, doc: Dict[str, Any]) -> SimpleNamespace:
        self._touch()
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(acknowledged=True, inserted_id=doc["_id"])

    def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False) -> SimpleNamespace:
        self._touch()
        changes = update.get("$set", {})
        for d in self.docs:
            if _matches(d, query):
                before = copy.deepcopy(d)
                d.update(copy.deepcopy(changes))
                return SimpleNamespace(
                    acknowledged=True, matched_count=1, modified_count=int(before != d), upserted_id=None
                )
        if upsert:
            doc = {k: v for k, v in query.items() if "." not in k and not isinstance(v, dict)}
            doc.update(copy.deepcopy(changes))
            doc.setdefault("_id", ObjectId())
            self.docs.append(doc)
            return SimpleNamespace(acknowledged=True, matched_count=0, modified_count=0, upserted_id=doc["_id"])
        return SimpleNamespace(acknowledged=True, matched_count=0, modified_count=0, upserted_id=None)

    def delete_one(self, query: Dict[str, Any]) -> SimpleNamespace:
        self._touch()
        for i, d in enumerate(self.docs):
            if _matches(d, query):
                del self.docs[i]
                return SimpleNamespace(acknowledged=True, deleted_count=1)
        return SimpleNamespace(acknowledged=True, deleted_count=0)


class FakeDatabase:
    """In-memory stand-in for a pymongo ``Database``."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.operations = 0
        self._collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(self, name)
        return self._collections[name]

    def command(self, name: str) -> Dict[str, Any]:
        if self.fail:
            raise PyMongoError("simulated outage")
        return {"ok": 1.0}

    def list_collection_names(self) -> List[str]:
        return sorted(self._collections)


def build_test_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "DATABASE_URL": "mongodb://localhost:27017",
        "DATABASE_NAME": "marketplace_test",
        "ACCESS_TOKEN_SECRET": "test-secret",
        "ENVIRONMENT": "test",
        "ALLOWED_ORIGINS": "http://localhost:5173",
    }
    values.update(overrides)
    return Settings(**values)


def make_service(email: str, name: str = "House Cleaning", price: float = 50.0, **extra: Any) -> Dict[str, Any]:
    service = {
        "serviceName": name,
        "servicePrice": price,
        "serviceImage": f"https://img.example.com/{name.lower().replace(' ', '-')}.png",
        "serviceProvider": {"email": email, "name": "Provider"},
    }
    service.update(extra)
    return service


def make_purchase(customer: str, provider: str, service_id: str, **extra: Any) -> Dict[str, Any]:
    purchase = {
        "serviceId": service_id,
        "serviceName": "House Cleaning",
        "currentUser": {"email": customer, "name": "Customer"},
        "serviceProvider": {"email": provider, "name": "Provider"},
    }
    purchase.update(extra)
    return purchase


@contextmanager
def api_test_client(db: Optional[FakeDatabase] = None, settings: Optional[Settings] = None) -> Iterator[TestClient]:
    store = MarketplaceStore(db if db is not None else FakeDatabase())
    app = create_app(settings=settings or build_test_settings(), store=store)
    with TestClient(app) as client:
        yield client


def login(client: TestClient, email: str) -> None:
    response = client.post("/jwt", json={"email": email})
    assert response.status_code == 200
