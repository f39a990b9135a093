from datetime import datetime

from dashboard import dashboard_stats, growth, month_bounds

from conftest import make_property

NOW = datetime(2026, 3, 15, 12, 0)


def test_growth():
    assert growth(6, 4) == 50.0
    assert growth(1, 3) == -66.7
    assert growth(5, 0) == 100.0
    assert growth(0, 0) == 0.0


def test_month_bounds_wrap_the_year():
    this_month, last_month = month_bounds(datetime(2026, 1, 20, 8, 30))
    assert this_month == datetime(2026, 1, 1)
    assert last_month == datetime(2025, 12, 1)


def test_stats_on_empty_store(db):
    stats = dashboard_stats(db, now=NOW)
    assert stats["properties"] == {"total": 0, "this_month": 0, "last_month": 0, "growth": 0.0, "active": 0}
    assert stats["insights"] == {"popular_city": "N/A", "avg_price": 0, "popular_bhk": "N/A"}


def test_stats_counts_and_insights(db):
    make_property(db, city="Pune", bhk=2, price=4_000_000, created_at=datetime(2026, 3, 2))
    make_property(db, city="Pune", bhk=3, price=6_000_000, created_at=datetime(2026, 3, 10), status="sold")
    make_property(db, city="Goa", bhk=3, price=5_000_001, created_at=datetime(2026, 2, 20))
    make_property(db, city="Goa", bhk=3, price=9_000_000, created_at=datetime(2025, 11, 1))

    db["enquiry"].insert_many([
        {"name": "A", "status": "pending", "created_at": datetime(2026, 3, 5)},
        {"name": "B", "status": "handled", "created_at": datetime(2026, 2, 5)},
        {"name": "C", "status": "handled", "created_at": datetime(2026, 2, 6)},
    ])

    stats = dashboard_stats(db, now=NOW)

    props = stats["properties"]
    assert (props["total"], props["this_month"], props["last_month"]) == (4, 2, 1)
    assert props["growth"] == 100.0
    # created within 30 days and still active: Mar 2 and Feb 20
    assert props["active"] == 2

    enq = stats["enquiries"]
    assert (enq["total"], enq["this_month"], enq["last_month"]) == (3, 1, 2)
    assert enq["growth"] == -50.0
    assert (enq["pending"], enq["handled"]) == (1, 2)

    assert stats["insights"]["popular_city"] == "Goa"
    assert stats["insights"]["popular_bhk"] == 3
    assert stats["insights"]["avg_price"] == 6_000_000


def test_dashboard_endpoint(client, db):
    make_property(db)
    body = client.get("/api/dashboard/stats").json()
    assert body["success"] is True
    assert body["stats"]["properties"]["total"] == 1
