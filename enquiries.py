import logging
from typing import Any, Dict, List, Optional

import pydantic
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_documents, now_utc, serialize_doc, to_object_id
from errors import NotFoundError, ValidationError
from schemas import AdminNote, Enquiry

logger = logging.getLogger(__name__)

STATUSES = ("pending", "handled")
PROPERTY_SUMMARY_FIELDS = {"title": 1, "price": 1, "city": 1, "address": 1, "images": 1}


def _with_property(db: Database, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach a short summary of the referenced property to each enquiry."""
    ids = {d["property_id"] for d in docs if d.get("property_id")}
    found = {}
    if ids:
        for p in db["property"].find({"_id": {"$in": list(ids)}}, PROPERTY_SUMMARY_FIELDS):
            found[p["_id"]] = p
    out = []
    for d in docs:
        d = dict(d)
        d["property"] = found.get(d.get("property_id"))
        out.append(serialize_doc(d))
    return out


def _get_or_404(db: Database, enquiry_id: str) -> Dict[str, Any]:
    doc = db["enquiry"].find_one({"_id": to_object_id(enquiry_id)})
    if not doc:
        raise NotFoundError("Enquiry not found")
    return doc


def create_enquiry(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        enquiry = Enquiry(**data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"])
        raise ValidationError(f"{field}: {first['msg']}") from e

    doc = enquiry.model_dump()
    if enquiry.property_id:
        pid = to_object_id(enquiry.property_id)
        if not db["property"].find_one({"_id": pid}, {"_id": 1}):
            raise NotFoundError("Property not found")
        doc["property_id"] = pid

    new_id = create_document(db, "enquiry", doc)
    logger.info("New enquiry %s", new_id)
    return _with_property(db, [db["enquiry"].find_one({"_id": to_object_id(new_id)})])[0]


def enquiry_stats(db: Database) -> Dict[str, int]:
    return {
        "total": db["enquiry"].count_documents({}),
        "pending": db["enquiry"].count_documents({"status": "pending"}),
        "handled": db["enquiry"].count_documents({"status": "handled"}),
    }


def list_enquiries(db: Database, status: Optional[str] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if status in STATUSES:
        filt["status"] = status
    docs = get_documents(db, "enquiry", filt, sort=[("created_at", -1)])
    items = _with_property(db, docs)
    return {"count": len(items), "stats": enquiry_stats(db), "data": items}


def recent_enquiries(db: Database, limit: int = 5) -> List[Dict[str, Any]]:
    docs = get_documents(db, "enquiry", sort=[("created_at", -1)], limit=limit)
    return _with_property(db, docs)


def update_status(db: Database, enquiry_id: str, status: Optional[str]) -> Dict[str, Any]:
    if status not in STATUSES:
        raise ValidationError("Please provide a valid status (pending or handled)")
    oid = to_object_id(enquiry_id)
    doc = db["enquiry"].find_one_and_update(
        {"_id": oid},
        {"$set": {"status": status, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Enquiry not found")
    return _with_property(db, [doc])[0]


def add_note(db: Database, enquiry_id: str, text: Optional[str], admin_id: Optional[str] = None) -> Dict[str, Any]:
    if not text or not text.strip():
        raise ValidationError("Please provide a non-empty note text")
    oid = to_object_id(enquiry_id)
    note = AdminNote(
        text=text.strip(),
        admin_id=str(to_object_id(admin_id)) if admin_id else None,
        created_at=now_utc(),
    ).model_dump()
    doc = db["enquiry"].find_one_and_update(
        {"_id": oid},
        {"$push": {"admin_notes": note}, "$set": {"updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Enquiry not found")
    return _with_property(db, [doc])[0]


def delete_enquiry(db: Database, enquiry_id: str) -> None:
    doc = _get_or_404(db, enquiry_id)
    db["enquiry"].delete_one({"_id": doc["_id"]})
    logger.info("Deleted enquiry %s", enquiry_id)
