"""
Chat-side property search: pull filters out of free text, run them against
the property collection and, when nothing matches, walk an ordered list of
relaxed searches until one of them returns something.
"""
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import ConnectionFailure, PyMongoError

from database import get_documents
from errors import StoreFailure
from schemas import SearchCriteria

logger = logging.getLogger(__name__)

LAKH = 100_000
CRORE = 10_000_000

MATCH_LIMIT = 5
ALTERNATIVE_LIMIT = 3

GENERIC_KEYWORDS = (
    "property", "properties", "house", "flat", "apartment",
    "show", "available", "latest", "new",
)

_NUMBER = r"(\d+(?:\.\d+)?)"
_UNIT = r"(lakhs?|lacs?|l|crores?|cr)\b"

BHK_RE = re.compile(r"(\d+)\s*(?:bhk|bedroom|bed)", re.IGNORECASE)
CEILING_RE = re.compile(r"\b(?:under|below|less than|up to)\s*" + _NUMBER + r"\s*" + _UNIT, re.IGNORECASE)
RANGE_RE = re.compile(_NUMBER + r"\s*-\s*" + _NUMBER + r"\s*" + _UNIT, re.IGNORECASE)
CITY_RE = re.compile(r"\bin\s+(\w+)|(\w+)\s+city\b|\bnear\s+(\w+)", re.IGNORECASE)


def to_rupees(amount: float, unit: str) -> float:
    """Scale an amount written in lakh or crore to rupees."""
    if unit.lower().startswith("cr"):
        return amount * CRORE
    return amount * LAKH


def extract_criteria(text: str) -> SearchCriteria:
    lowered = (text or "").lower()
    criteria = SearchCriteria()

    m = BHK_RE.search(lowered)
    if m:
        criteria.bhk = int(m.group(1))

    m = CEILING_RE.search(lowered)
    if m:
        criteria.max_price = to_rupees(float(m.group(1)), m.group(2))

    # a range wins over a ceiling: it sets both bounds
    m = RANGE_RE.search(lowered)
    if m:
        criteria.min_price = to_rupees(float(m.group(1)), m.group(3))
        criteria.max_price = to_rupees(float(m.group(2)), m.group(3))

    m = CITY_RE.search(lowered)
    if m:
        criteria.city = next((g for g in m.groups() if g), None)

    if not criteria.is_empty():
        criteria.has_intent = True
    else:
        criteria.has_intent = any(k in lowered for k in GENERIC_KEYWORDS)
    return criteria


def city_filter(city: str) -> Dict[str, Any]:
    return {"$regex": re.escape(city), "$options": "i"}


def build_filter(criteria: SearchCriteria) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if criteria.bhk is not None:
        filt["bhk"] = criteria.bhk
    if criteria.min_price is not None or criteria.max_price is not None:
        price_cond = {}
        if criteria.min_price is not None:
            price_cond["$gte"] = criteria.min_price
        if criteria.max_price is not None:
            price_cond["$lte"] = criteria.max_price
        filt["price"] = price_cond
    if criteria.city:
        filt["city"] = city_filter(criteria.city)
    return filt


def _run(db: Database, filt: Dict[str, Any], sort: List[tuple], limit: int) -> List[Dict[str, Any]]:
    return get_documents(db, "property", filt, sort=sort, limit=limit)


def _soft(label: str, fn: Callable[[], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Run a lookup, returning [] on query errors.

    Losing the server altogether is not something a search can paper over,
    so connection errors still propagate as StoreFailure.
    """
    try:
        return fn()
    except ConnectionFailure as e:
        logger.error("%s: database unreachable: %s", label, e)
        raise StoreFailure("Database unavailable") from e
    except PyMongoError as e:
        logger.warning("%s failed, returning no results: %s", label, e)
        return []


def find_matches(db: Database, criteria: SearchCriteria) -> List[Dict[str, Any]]:
    """Properties matching the extracted criteria, newest first, at most five."""
    if not criteria.has_intent:
        return []
    newest = [("created_at", -1)]
    if criteria.is_empty():
        return _soft("recent properties", lambda: _run(db, {}, newest, MATCH_LIMIT))
    return _soft("property search", lambda: _run(db, build_filter(criteria), newest, MATCH_LIMIT))


def search_properties(db: Database, text: str) -> List[Dict[str, Any]]:
    return find_matches(db, extract_criteria(text))


# ---------- Alternatives ----------
# Each strategy gets the criteria and returns a list, or None when the
# criteria do not give it enough to work with.

AlternativeStrategy = Callable[[Database, SearchCriteria], Optional[List[Dict[str, Any]]]]


def _with_city(filt: Dict[str, Any], criteria: SearchCriteria) -> Dict[str, Any]:
    if criteria.city:
        filt["city"] = city_filter(criteria.city)
    return filt


def relax_budget(db: Database, criteria: SearchCriteria):
    if criteria.bhk is None or criteria.max_price is None:
        return None
    filt = _with_city({"bhk": criteria.bhk, "price": {"$lte": criteria.max_price * 1.2}}, criteria)
    return _run(db, filt, [("price", 1)], ALTERNATIVE_LIMIT)


def adjacent_bhk(db: Database, criteria: SearchCriteria):
    if criteria.bhk is None or criteria.max_price is None:
        return None
    filt = _with_city(
        {"bhk": {"$in": [criteria.bhk - 1, criteria.bhk + 1]}, "price": {"$lte": criteria.max_price}},
        criteria,
    )
    return _run(db, filt, [("bhk", 1), ("price", 1)], ALTERNATIVE_LIMIT)


def same_bhk_in_city(db: Database, criteria: SearchCriteria):
    if criteria.bhk is None or not criteria.city:
        return None
    filt = {"bhk": criteria.bhk, "city": city_filter(criteria.city)}
    return _run(db, filt, [("price", 1)], ALTERNATIVE_LIMIT)


def stretch_budget(db: Database, criteria: SearchCriteria):
    if criteria.max_price is None:
        return None
    return _run(db, {"price": {"$lte": criteria.max_price * 1.3}}, [("price", 1)], ALTERNATIVE_LIMIT)


def latest_listings(db: Database, criteria: SearchCriteria):
    return _run(db, {}, [("created_at", -1)], ALTERNATIVE_LIMIT)


ALTERNATIVE_STRATEGIES: List[AlternativeStrategy] = [
    relax_budget,
    adjacent_bhk,
    same_bhk_in_city,
    stretch_budget,
    latest_listings,
]


def find_alternatives(db: Database, text: str) -> List[Dict[str, Any]]:
    """Near matches for a query that found nothing; the first strategy with results wins."""
    criteria = extract_criteria(text)

    def walk():
        for strategy in ALTERNATIVE_STRATEGIES:
            found = strategy(db, criteria)
            if found:
                logger.info("Alternatives from %s: %d", strategy.__name__, len(found))
                return found
        return []

    return _soft("alternative suggestions", walk)
