# ==============================================
# Pytest Configuration and Fixtures
# ==============================================
#
# Shared fixtures for all tests. The document store is replaced by
# FakeMongoClient: an in-memory MongoClient subclass that implements
# find() and commit_write_group() over plain dicts, with the small slice
# of the MongoDB query/update language the jobs use. fetch_page() and
# everything above it run unmodified.
#
# ==============================================

import copy
from datetime import datetime, timezone

import pytest
from bson import ObjectId

from review_reconcile.errors import StoreError
from review_reconcile.storage.mongo_client import MongoClient


COLLECTION = "reviews"

_MISSING = object()


def _get_path(document, path):
    value = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set_path(document, path, value):
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _unset_path(document, path):
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        target = target.get(part)
        if not isinstance(target, dict):
            return
    target.pop(parts[-1], None)


def _condition_holds(value, condition):
    if isinstance(condition, dict) and condition and all(key.startswith("$") for key in condition):
        for op, arg in condition.items():
            if op == "$gt":
                # Only values of the same BSON type compare
                if value is _MISSING or _sort_key(value)[0] != _sort_key(arg)[0]:
                    return False
                if not _sort_key(value) > _sort_key(arg):
                    return False
            elif op == "$ne":
                if (None if value is _MISSING else value) == arg:
                    return False
            elif op == "$in":
                if isinstance(value, list):
                    if not any(item in arg for item in value):
                        return False
                elif value is _MISSING or value not in arg:
                    return False
            elif op == "$exists":
                if (value is not _MISSING) != bool(arg):
                    return False
            else:
                raise NotImplementedError(op)
        return True
    if isinstance(value, list) and not isinstance(condition, list):
        return condition in value
    return value is not _MISSING and value == condition


def _matches(document, query):
    return all(_condition_holds(_get_path(document, key), cond) for key, cond in query.items())


def _sort_key(value):
    if value is _MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    if isinstance(value, ObjectId):
        return (4, str(value))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (5, value.timestamp())
    return (6, str(value))


class FakeMongoClient(MongoClient):
    """In-memory stand-in for the MongoDB wrapper."""

    def __init__(self, database="app"):
        super().__init__(database=database)
        self.collections = {}
        self.connected = False
        self.find_calls = []
        self.commits = []
        self.commit_attempts = 0
        self.fail_commit_attempts = set()
        self.fail_find_calls = set()
        self.fail_queries_on = set()

    def seed(self, documents, collection_name=COLLECTION):
        store = self.collections.setdefault(collection_name, {})
        for document in documents:
            store[document["_id"]] = copy.deepcopy(document)
        return self

    def get(self, record_id, collection_name=COLLECTION):
        return self.collections[collection_name][record_id]

    def connect(self):
        self.connected = True

    def disconnect(self):
        self.connected = False

    def find(self, collection_name, query, sort=None, limit=None):
        self.find_calls.append(query)
        if len(self.find_calls) in self.fail_find_calls:
            raise StoreError("simulated read failure")
        if any(key in query for key in self.fail_queries_on):
            raise StoreError("simulated query failure")

        store = self.collections.get(collection_name, {})
        documents = [copy.deepcopy(doc) for doc in store.values() if _matches(doc, query)]
        for field_name, direction in reversed(list(sort or [])):
            documents.sort(key=lambda doc: _sort_key(_get_path(doc, field_name)), reverse=direction < 0)
        if limit:
            documents = documents[:limit]
        return documents

    def commit_write_group(self, collection_name, updates):
        self.commit_attempts += 1
        if self.commit_attempts in self.fail_commit_attempts:
            raise StoreError("simulated commit failure")

        store = self.collections.setdefault(collection_name, {})
        staged = copy.deepcopy(store)
        for document_id, update in updates:
            document = staged.get(document_id)
            if document is None:
                raise StoreError(f"no document with _id {document_id!r}")
            for path, value in update.get("$set", {}).items():
                _set_path(document, path, copy.deepcopy(value))
            for path in update.get("$unset", {}):
                _unset_path(document, path)
            for path in update.get("$currentDate", {}):
                _set_path(document, path, datetime.now(timezone.utc))
        self.collections[collection_name] = staged
        self.commits.append([document_id for document_id, _ in updates])
        return len(updates)


TS = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def ts():
    return TS


@pytest.fixture
def fake_mongo():
    return FakeMongoClient()


@pytest.fixture
def canonical_review():
    """A review already in schemaVersion 2 shape."""
    return {
        "_id": "r-canonical",
        "userId": "u1",
        "restaurantId": "rest1",
        "schemaVersion": 2,
        "isDeleted": False,
        "createdAt": TS,
        "media": {"photos": []},
        "dishName": "Ramen",
    }


@pytest.fixture
def mixed_reviews():
    """One review of every interesting shape, IDs in ascending order."""
    return [
        {
            "_id": "a01",
            "restaurantId": "r1",
            "userId": "u1",
            "dish": "Pad Thai",
            "images": ["a.jpg"],
            "createdAt": "2024-01-01T00:00:00Z",
        },
        {"_id": "a02", "userId": "u1"},
        {"_id": "a03", "caption": "amazing", "images": ["x.jpg"]},
        {
            "_id": "a04",
            "userId": "u2",
            "restaurantId": "r2",
            "schemaVersion": 2,
            "isDeleted": False,
            "createdAt": TS,
            "media": {"photos": []},
            "dishName": "Ramen",
        },
        {"_id": "a05", "userId": "u3", "restaurantId": "r3", "createdAt": "not-a-date", "dish": "Pho"},
        {
            "_id": "a06",
            "userId": "u4",
            "restaurantId": "ChIJIQ2iRxBAw4gRjUzOb2f_KIE",
            "timestamp": "2023-05-05T12:00:00Z",
            "images": ["", "b.jpg", None],
        },
        {"_id": "a07", "username": "sam", "restaurantName": "Noodle Bar", "isDeleted": True,
         "normalizeError": "missing foreign key"},
    ]
