from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from pymongo.database import Database

from database import now_utc


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Start of the current calendar month and of the one before it."""
    this_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if this_month.month == 1:
        last_month = this_month.replace(year=this_month.year - 1, month=12)
    else:
        last_month = this_month.replace(month=this_month.month - 1)
    return this_month, last_month


def growth(this_month: int, last_month: int) -> float:
    if last_month > 0:
        return round((this_month - last_month) / last_month * 100, 1)
    return 100.0 if this_month > 0 else 0.0


def _monthly_counts(db: Database, collection: str, now: datetime) -> Dict[str, Any]:
    start_this, start_last = month_bounds(now)
    coll = db[collection]
    this_month = coll.count_documents({"created_at": {"$gte": start_this, "$lte": now}})
    last_month = coll.count_documents({"created_at": {"$gte": start_last, "$lt": start_this}})
    return {
        "total": coll.count_documents({}),
        "this_month": this_month,
        "last_month": last_month,
        "growth": growth(this_month, last_month),
    }


def _most_common(db: Database, field: str) -> Any:
    rows = list(db["property"].aggregate([
        {"$match": {field: {"$ne": None}}},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
        {"$limit": 1},
    ]))
    return rows[0]["_id"] if rows else "N/A"


def _average_price(db: Database) -> int:
    rows = list(db["property"].aggregate([
        {"$group": {"_id": None, "avg_price": {"$avg": "$price"}}},
    ]))
    if not rows or rows[0].get("avg_price") is None:
        return 0
    return int(round(rows[0]["avg_price"]))


def dashboard_stats(db: Database, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or now_utc()

    properties = _monthly_counts(db, "property", now)
    properties["active"] = db["property"].count_documents({
        "created_at": {"$gte": now - timedelta(days=30)},
        "status": "active",
    })

    enquiries = _monthly_counts(db, "enquiry", now)
    enquiries["pending"] = db["enquiry"].count_documents({"status": "pending"})
    enquiries["handled"] = db["enquiry"].count_documents({"status": "handled"})

    return {
        "properties": properties,
        "enquiries": enquiries,
        "insights": {
            "popular_city": _most_common(db, "city"),
            "avg_price": _average_price(db),
            "popular_bhk": _most_common(db, "bhk"),
        },
    }
