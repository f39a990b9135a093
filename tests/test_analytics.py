from datetime import timedelta

import mongomock
import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

import analytics
from database import now_utc
from errors import NotFoundError, StoreFailure, ValidationError

from conftest import make_property


def add_event(db, event_type, prop=None, **fields):
    doc = {
        "event_type": event_type,
        "property_id": prop,
        "city": None,
        "price": None,
        "bhk": None,
        "session_id": "s1",
        "timestamp": now_utc(),
    }
    doc.update(fields)
    db["analytics"].insert_one(doc)


# ---------- Tracking ----------

def test_view_copies_property_snapshot(db):
    pid = make_property(db, city="Pune", price=4_000_000, bhk=3)
    event = analytics.track_property_event(db, "view", str(pid), ip_address="10.0.0.1", user_agent="pytest")

    assert event["event_type"] == "view"
    assert event["property_id"] == str(pid)
    assert (event["city"], event["price"], event["bhk"]) == ("Pune", 4_000_000, 3)
    assert event["session_id"] == "10.0.0.1"

    stored = db["analytics"].find_one()
    assert stored["property_id"] == pid


def test_snapshot_survives_property_edit(db):
    pid = make_property(db, city="Pune")
    analytics.track_property_event(db, "click", str(pid))
    db["property"].update_one({"_id": pid}, {"$set": {"city": "Goa"}})
    assert analytics.top_locations(db)[0]["city"] == "Pune"


def test_tracking_requires_existing_property(db):
    with pytest.raises(ValidationError):
        analytics.track_property_event(db, "view", None)
    with pytest.raises(ValidationError):
        analytics.track_property_event(db, "view", "not-an-id")
    with pytest.raises(NotFoundError):
        analytics.track_property_event(db, "view", "64b7f0c2a1b2c3d4e5f60718")


def test_filter_event(db):
    event = analytics.track_filter(db, city="Mumbai", max_price=8_000_000, bhk=2, session_id="abc")
    assert event["event_type"] == "filter"
    assert event["property_id"] is None
    assert event["price"] == 8_000_000
    assert event["session_id"] == "abc"


# ---------- Reports ----------

def test_price_distribution_buckets(db):
    for price in (1_000_000, 6_000_000, 11_000_000, 21_000_000, 60_000_000):
        add_event(db, "view", price=price)
    add_event(db, "filter", price=1_000_000)

    rows = analytics.price_distribution(db)
    assert [r["range"] for r in rows] == ["Under 50L", "50L - 1Cr", "1Cr - 2Cr", "2Cr - 5Cr", "Above 5Cr"]
    assert [r["count"] for r in rows] == [1, 1, 1, 1, 1]


def test_price_bucket_edges(db):
    add_event(db, "view", price=5_000_000)
    add_event(db, "click", price=50_000_000)
    counts = [r["count"] for r in analytics.price_distribution(db)]
    assert counts == [0, 1, 0, 0, 1]


def test_top_properties_joins_and_drops_deleted(db):
    a = make_property(db, title="A", images=[{"url": "https://cdn.test/a.jpg", "public_id": "a"}])
    b = make_property(db, title="B")
    gone = make_property(db, title="Gone")
    for _ in range(3):
        add_event(db, "view", a)
    add_event(db, "view", b)
    add_event(db, "click", b)
    for _ in range(5):
        add_event(db, "view", gone)
    db["property"].delete_one({"_id": gone})

    rows = analytics.top_properties(db, "view", 10)
    assert [(r["title"], r["count"]) for r in rows] == [("A", 3), ("B", 1)]
    assert rows[0]["image"] == "https://cdn.test/a.jpg"
    assert rows[1]["image"] is None
    assert rows[0]["property_id"] == str(a)

    clicks = analytics.top_properties(db, "click", 10)
    assert [r["title"] for r in clicks] == ["B"]


def test_top_locations_splits_views_and_clicks(db):
    add_event(db, "view", city="Pune")
    add_event(db, "view", city="Pune")
    add_event(db, "click", city="Pune")
    add_event(db, "filter", city="Goa")
    add_event(db, "view", city="")

    rows = analytics.top_locations(db)
    assert rows == [
        {"city": "Pune", "views": 2, "clicks": 1, "total_events": 3},
        {"city": "Goa", "views": 0, "clicks": 0, "total_events": 1},
    ]


def test_bhk_distribution_sorted_by_bhk(db):
    add_event(db, "view", bhk=3)
    add_event(db, "click", bhk=1)
    add_event(db, "view", bhk=3)
    add_event(db, "filter", bhk=2)
    assert analytics.bhk_distribution(db) == [{"bhk": 1, "count": 1}, {"bhk": 3, "count": 2}]


def test_engagement_per_day(db):
    now = now_utc()
    two_days_ago = now - timedelta(days=2)
    add_event(db, "view", timestamp=two_days_ago)
    add_event(db, "view", timestamp=two_days_ago)
    add_event(db, "click", timestamp=two_days_ago)
    add_event(db, "view", timestamp=now)
    add_event(db, "filter", timestamp=now)
    add_event(db, "view", timestamp=now - timedelta(days=45))

    rows = analytics.engagement(db, days=30)
    assert rows == [
        {"date": two_days_ago.strftime("%Y-%m-%d"), "views": 2, "clicks": 1},
        {"date": now.strftime("%Y-%m-%d"), "views": 1, "clicks": 0},
    ]


def test_engagement_rate():
    assert analytics.engagement_rate(0, 5) == 0.0
    assert analytics.engagement_rate(3, 1) == 33.33


def test_summary_on_empty_store(db):
    assert analytics.summary(db) == {
        "total_views": 0,
        "total_clicks": 0,
        "top_city": "N/A",
        "top_city_count": 0,
        "engagement_rate": 0.0,
    }


def test_summary_is_read_only(db):
    add_event(db, "view", city="Pune")
    add_event(db, "view", city="Pune")
    add_event(db, "click", city="Goa")
    first = analytics.summary(db)
    assert first == analytics.summary(db)
    assert first["top_city"] == "Pune"
    assert first["top_city_count"] == 2
    assert first["engagement_rate"] == 50.0
    assert db["analytics"].count_documents({}) == 3


# ---------- API ----------

def test_track_view_endpoint(client, db):
    pid = make_property(db)
    res = client.post("/api/analytics/view", json={"property_id": str(pid)})
    assert res.status_code == 201
    assert res.json()["data"]["event_type"] == "view"


def test_track_view_unknown_property(client):
    res = client.post("/api/analytics/view", json={"property_id": "64b7f0c2a1b2c3d4e5f60718"})
    assert res.status_code == 404
    assert res.json() == {"success": False, "message": "Property not found"}


def test_track_filter_endpoint(client, db):
    res = client.post("/api/analytics/filter", json={"city": "Pune", "price_range": {"max": 9_000_000}, "bhk": 2})
    assert res.status_code == 201
    assert db["analytics"].find_one()["price"] == 9_000_000


def test_report_endpoints(client, db):
    add_event(db, "view", city="Pune", price=1_000_000, bhk=2)
    assert client.get("/api/analytics/top-locations").json()["data"][0]["city"] == "Pune"
    assert client.get("/api/analytics/top-prices").json()["data"][0]["count"] == 1
    assert client.get("/api/analytics/top-bhk").json()["data"] == [{"bhk": 2, "count": 1}]
    assert len(client.get("/api/analytics/engagement?days=7").json()["data"]) == 1
    assert client.get("/api/analytics/summary").json()["data"]["total_views"] == 1
    assert client.get("/api/analytics/top-properties?event_type=share").status_code == 422


def test_reports_are_idempotent(db):
    pid = make_property(db, city="Pune", price=6_000_000, bhk=3)
    for event_type in ("view", "view", "click"):
        analytics.track_property_event(db, event_type, str(pid))
    analytics.track_filter(db, city="Goa", max_price=2_000_000, bhk=1)

    def run_all():
        return (
            analytics.top_properties(db, "view", 10),
            analytics.top_locations(db),
            analytics.price_distribution(db),
            analytics.bhk_distribution(db),
            analytics.engagement(db),
            analytics.summary(db),
        )

    assert run_all() == run_all()


def test_rejected_report_queries_degrade_to_empty(db, monkeypatch):
    pid = make_property(db)
    add_event(db, "view", pid, city="Pune", price=1_000_000)

    def rejected(self, *args, **kwargs):
        raise OperationFailure("bad query")

    for method in ("aggregate", "count_documents", "find"):
        monkeypatch.setattr(mongomock.collection.Collection, method, rejected)

    assert analytics.top_properties(db) == []
    assert analytics.top_locations(db) == []
    assert [r["count"] for r in analytics.price_distribution(db)] == [0, 0, 0, 0, 0]
    assert analytics.summary(db)["total_views"] == 0
    assert analytics.summary(db)["top_city"] == "N/A"


def test_lost_connection_surfaces_from_reports(db, monkeypatch):
    def down(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("no servers")

    monkeypatch.setattr(mongomock.collection.Collection, "count_documents", down)
    with pytest.raises(StoreFailure):
        analytics.price_distribution(db)
    with pytest.raises(StoreFailure):
        analytics.summary(db)


def test_join_failure_keeps_report_empty(db, monkeypatch):
    pid = make_property(db)
    add_event(db, "view", pid)
    find = mongomock.collection.Collection.find

    def property_find_rejected(self, *args, **kwargs):
        if self.name == "property":
            raise OperationFailure("bad projection")
        return find(self, *args, **kwargs)

    monkeypatch.setattr(mongomock.collection.Collection, "find", property_find_rejected)
    assert analytics.top_properties(db) == []
