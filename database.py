"""
MongoDB access for the listing backend.

Each collection is named after the lowercased schema class
(Property -> "property", Enquiry -> "enquiry"). Analytics events live in
"analytics".
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import get_settings
from errors import StoreFailure, ValidationError

logger = logging.getLogger(__name__)

settings = get_settings()
client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000)
db = client[settings.database_name]


def get_db() -> Database:
    return db


def now_utc() -> datetime:
    # naive UTC, the same shape pymongo hands back on reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid ID format")


def serialize_doc(doc: Any) -> Any:
    """Turn a stored document into something JSON friendly.

    `_id` becomes `id` and every nested ObjectId becomes its hex string.
    """
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, dict):
        d = {k: serialize_doc(v) for k, v in doc.items()}
        if "_id" in d:
            d["id"] = d.pop("_id")
        return d
    return doc


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now_utc()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    try:
        result = database[collection_name].insert_one(data_dict)
    except PyMongoError as e:
        logger.exception("insert into %s failed", collection_name)
        raise StoreFailure(f"Failed to write {collection_name}") from e
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[tuple]] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    """Create the indexes the queries lean on (idempotent)."""
    try:
        database["property"].create_index([("city", ASCENDING), ("price", ASCENDING)])
        database["property"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
        database["property"].create_index("collections")
        database["enquiry"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
        database["enquiry"].create_index("property_id")
        database["analytics"].create_index([("event_type", ASCENDING), ("timestamp", DESCENDING)])
        database["analytics"].create_index([("property_id", ASCENDING), ("event_type", ASCENDING)])
        database["analytics"].create_index([("city", ASCENDING), ("event_type", ASCENDING)])
    except PyMongoError as e:
        logger.warning("Could not create indexes: %s", e)
