"""
Analytics: an append-only log of view/click/filter events and the reports
computed from it on request.

Events copy the property's city, price and bhk when they are recorded, so
reports describe what visitors saw at the time even if the listing has been
edited since. Reports never write.
"""
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import ConnectionFailure, OperationFailure

from database import now_utc, serialize_doc, to_object_id
from errors import NotFoundError, StoreFailure, ValidationError
from schemas import AnalyticsEvent

logger = logging.getLogger(__name__)

COLLECTION = "analytics"
ENGAGED = ["view", "click"]

PRICE_BUCKETS = [
    ("Under 50L", 0, 5_000_000),
    ("50L - 1Cr", 5_000_000, 10_000_000),
    ("1Cr - 2Cr", 10_000_000, 20_000_000),
    ("2Cr - 5Cr", 20_000_000, 50_000_000),
    ("Above 5Cr", 50_000_000, None),
]

HAS_CITY = {"city": {"$nin": [None, ""]}}


def _report_read(label: str, fn: Callable[[], Any], default: Any) -> Any:
    """Run a report query; a rejected query yields `default`, a lost server raises."""
    try:
        return fn()
    except ConnectionFailure as e:
        raise StoreFailure("Database unavailable") from e
    except OperationFailure as e:
        logger.warning("Analytics %s failed: %s", label, e)
        return default


def _aggregate(db: Database, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return _report_read("aggregation", lambda: list(db[COLLECTION].aggregate(pipeline)), [])


def _count(db: Database, filt: Dict[str, Any]) -> int:
    return _report_read("count", lambda: db[COLLECTION].count_documents(filt), 0)


# ---------- Tracking ----------

def _record(db: Database, event: AnalyticsEvent) -> Dict[str, Any]:
    doc = event.model_dump()
    if doc["property_id"]:
        doc["property_id"] = to_object_id(doc["property_id"])
    result = db[COLLECTION].insert_one(doc)
    doc["_id"] = result.inserted_id
    return serialize_doc(doc)


def track_property_event(
    db: Database,
    event_type: str,
    property_id: Optional[str],
    session_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """Record a view or click against an existing property."""
    if event_type not in ENGAGED:
        raise ValidationError(f"Unsupported event type: {event_type}")
    if not property_id:
        raise ValidationError("Property ID is required")
    prop = db["property"].find_one({"_id": to_object_id(property_id)}, {"city": 1, "price": 1, "bhk": 1})
    if not prop:
        raise NotFoundError("Property not found")
    event = AnalyticsEvent(
        event_type=event_type,
        property_id=str(prop["_id"]),
        city=prop.get("city"),
        price=prop.get("price"),
        bhk=prop.get("bhk"),
        session_id=session_id or ip_address,
        ip_address=ip_address,
        user_agent=user_agent,
        timestamp=now_utc(),
    )
    return _record(db, event)


def track_filter(
    db: Database,
    city: Optional[str] = None,
    max_price: Optional[float] = None,
    bhk: Optional[int] = None,
    session_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    event = AnalyticsEvent(
        event_type="filter",
        city=city or None,
        price=max_price,
        bhk=bhk,
        session_id=session_id or ip_address,
        ip_address=ip_address,
        user_agent=user_agent,
        timestamp=now_utc(),
    )
    return _record(db, event)


# ---------- Reports ----------

def top_properties(db: Database, event_type: str = "view", limit: int = 10) -> List[Dict[str, Any]]:
    pipeline = [
        {"$match": {"event_type": event_type, "property_id": {"$ne": None}}},
        {"$group": {"_id": "$property_id", "count": {"$sum": 1}, "last_activity": {"$max": "$timestamp"}}},
        {"$sort": {"count": -1, "_id": 1}},
        {"$limit": limit},
    ]
    rows = _aggregate(db, pipeline)
    ids = [r["_id"] for r in rows]
    fields = {"title": 1, "city": 1, "price": 1, "bhk": 1, "images": 1}
    found = _report_read("property join", lambda: list(db["property"].find({"_id": {"$in": ids}}, fields)), [])
    props = {p["_id"]: p for p in found}

    out = []
    for r in rows:
        p = props.get(r["_id"])
        if p is None:
            # listing deleted since; drop it like an inner join would
            continue
        images = p.get("images") or []
        out.append({
            "property_id": str(r["_id"]),
            "title": p.get("title"),
            "city": p.get("city"),
            "price": p.get("price"),
            "bhk": p.get("bhk"),
            "image": images[0].get("url") if images else None,
            "count": r["count"],
            "last_activity": r["last_activity"],
        })
    return out


def top_locations(db: Database, limit: int = 10) -> List[Dict[str, Any]]:
    pipeline = [
        {"$match": HAS_CITY},
        {"$group": {
            "_id": "$city",
            "views": {"$sum": {"$cond": [{"$eq": ["$event_type", "view"]}, 1, 0]}},
            "clicks": {"$sum": {"$cond": [{"$eq": ["$event_type", "click"]}, 1, 0]}},
            "total_events": {"$sum": 1},
        }},
        {"$sort": {"total_events": -1, "_id": 1}},
        {"$limit": limit},
    ]
    return [
        {"city": r["_id"], "views": r["views"], "clicks": r["clicks"], "total_events": r["total_events"]}
        for r in _aggregate(db, pipeline)
    ]


def price_distribution(db: Database) -> List[Dict[str, Any]]:
    """Event counts per fixed price band; bands are [min, max) and the top one is open."""
    out = []
    for label, low, high in PRICE_BUCKETS:
        price_cond: Dict[str, Any] = {"$gte": low}
        if high is not None:
            price_cond["$lt"] = high
        count = _count(db, {"price": price_cond, "event_type": {"$in": ENGAGED}})
        out.append({"range": label, "count": count})
    return out


def bhk_distribution(db: Database) -> List[Dict[str, Any]]:
    pipeline = [
        {"$match": {"bhk": {"$ne": None}, "event_type": {"$in": ENGAGED}}},
        {"$group": {"_id": "$bhk", "count": {"$sum": 1}}},
        {"$sort": {"_id": 1}},
    ]
    return [{"bhk": r["_id"], "count": r["count"]} for r in _aggregate(db, pipeline)]


def engagement(db: Database, days: int = 30) -> List[Dict[str, Any]]:
    """Views and clicks per day over the last `days` days.

    Days with no tracked events are left out rather than zero-filled.
    """
    since = now_utc() - timedelta(days=days)
    pipeline = [
        {"$match": {"timestamp": {"$gte": since}, "event_type": {"$in": ENGAGED}}},
        {"$group": {
            "_id": {
                "date": {"$dateToString": {"format": "%Y-%m-%d", "date": "$timestamp"}},
                "event_type": "$event_type",
            },
            "count": {"$sum": 1},
        }},
    ]
    by_day: Dict[str, Dict[str, Any]] = {}
    for r in _aggregate(db, pipeline):
        day = r["_id"]["date"]
        row = by_day.setdefault(day, {"date": day, "views": 0, "clicks": 0})
        row[r["_id"]["event_type"] + "s"] = r["count"]
    return [by_day[d] for d in sorted(by_day)]


def engagement_rate(views: int, clicks: int) -> float:
    if not views:
        return 0.0
    return round(clicks / views * 100, 2)


def summary(db: Database) -> Dict[str, Any]:
    total_views = _count(db, {"event_type": "view"})
    total_clicks = _count(db, {"event_type": "click"})
    top = _aggregate(db, [
        {"$match": HAS_CITY},
        {"$group": {"_id": "$city", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
        {"$limit": 1},
    ])
    return {
        "total_views": total_views,
        "total_clicks": total_clicks,
        "top_city": top[0]["_id"] if top else "N/A",
        "top_city_count": top[0]["count"] if top else 0,
        "engagement_rate": engagement_rate(total_views, total_clicks),
    }
