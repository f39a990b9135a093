from datetime import datetime, timedelta
from itertools import count

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from chatbot import ChatResponder
from database import get_db
from errors import UpstreamFailure

BASE_TIME = datetime(2026, 1, 1, 9, 0)
_seq = count()


class FakeMediaHost:
    def __init__(self, fail_after=None):
        self.fail_after = fail_after
        self.uploaded = []
        self.deleted = []

    def upload(self, data, kind="image"):
        if self.fail_after is not None and len(self.uploaded) >= self.fail_after:
            raise UpstreamFailure(f"Failed to upload {kind}")
        n = len(self.uploaded) + 1
        asset = {"url": f"https://cdn.test/{kind}/{n}", "public_id": f"{kind}-{n}"}
        self.uploaded.append((data, kind))
        return asset

    def delete(self, public_id, kind="image"):
        self.deleted.append((public_id, kind))

    def delete_many(self, public_ids, kind="image"):
        for public_id in public_ids:
            self.deleted.append((public_id, kind))


class FakeGenerator:
    def __init__(self, reply="Here are some homes for you.", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def generate(self, messages):
        self.calls.append(messages)
        if self.error:
            raise self.error
        return self.reply


def make_property(db, **overrides):
    """Insert a property document; later calls get later created_at values."""
    n = next(_seq)
    doc = {
        "title": f"Home {n}",
        "description": "",
        "price": 5_000_000,
        "bhk": 2,
        "bathrooms": 2,
        "city": "Pune",
        "address": "MG Road",
        "area": None,
        "amenities": ["Parking"],
        "images": [],
        "video": None,
        "videos": [],
        "status": "active",
        "featured": False,
        "featured_location": None,
        "curated_property": None,
        "collections": [],
        "created_at": BASE_TIME + timedelta(minutes=n),
        "updated_at": BASE_TIME + timedelta(minutes=n),
    }
    doc.update(overrides)
    return db["property"].insert_one(doc).inserted_id


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def media_host():
    return FakeMediaHost()


@pytest.fixture
def client(db, media_host):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[main.get_media_host] = lambda: media_host
    main.app.dependency_overrides[main.get_responder] = lambda: ChatResponder(None)
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
