"""
Property catalogue: CRUD with media uploads, manual tags and collections.
"""
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pydantic
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, now_utc, serialize_doc, to_object_id
from errors import NotFoundError, UpstreamFailure, ValidationError
from media import MediaHost
from schemas import COLLECTION_KEYS, MAX_IMAGES, MAX_VIDEOS, Property

logger = logging.getLogger(__name__)

COLLECTION_TITLES = {
    "new-projects": ("New Projects", "https://images.unsplash.com/photo-1505691723518-36a5ac3be353?w=1200"),
    "ready-to-move": ("Ready to Move", "https://images.unsplash.com/photo-1580587771525-78b9dba3b914?w=1200"),
    "luxury": ("Luxury Homes", "https://images.unsplash.com/photo-1512914890250-353c97c9e7e2?w=1200"),
    "budget-friendly": ("Budget Friendly", "https://images.unsplash.com/photo-1518780664697-55e3ad937233?w=1200"),
}

SORTS = {
    "newest": [("created_at", -1)],
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "bhk_asc": [("bhk", 1)],
    "bhk_desc": [("bhk", -1)],
}


@dataclass
class PropertyMedia:
    """Raw file contents received with a create/update request."""
    images: List[bytes] = field(default_factory=list)
    video: Optional[bytes] = None
    videos: List[bytes] = field(default_factory=list)
    featured_location_image: Optional[bytes] = None
    curated_property_image: Optional[bytes] = None


def parse_amenities(value: Any) -> List[str]:
    """Accept a list, a JSON array string or a comma separated string."""
    if not value:
        return []
    if isinstance(value, list):
        return [str(a).strip() for a in value if str(a).strip()]
    try:
        parsed = json.loads(value)
        if isinstance(parsed, list):
            return [str(a).strip() for a in parsed if str(a).strip()]
    except ValueError:
        pass
    return [a.strip() for a in str(value).split(",") if a.strip()]


def _validated(data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return Property(**data).model_dump()
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first["loc"])
        raise ValidationError(f"{loc}: {first['msg']}") from e


def _paginate(db: Database, filt: Dict[str, Any], sort, page: int, limit: int) -> Dict[str, Any]:
    page = max(1, page)
    limit = min(max(1, limit), 100)
    cursor = db["property"].find(filt).sort(sort).skip((page - 1) * limit).limit(limit)
    items = [serialize_doc(d) for d in cursor]
    total = db["property"].count_documents(filt)
    return {
        "count": len(items),
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit),
        "data": items,
    }


def _get_or_404(db: Database, property_id: str) -> Dict[str, Any]:
    doc = db["property"].find_one({"_id": to_object_id(property_id)})
    if not doc:
        raise NotFoundError("Property not found")
    return doc


class _Uploads:
    """Uploads files one by one; if any fails the ones already stored are removed."""

    def __init__(self, media_host: MediaHost):
        self.media_host = media_host
        self.done: List[tuple] = []

    def put(self, data: bytes, kind: str) -> Dict[str, str]:
        try:
            asset = self.media_host.upload(data, kind)
        except UpstreamFailure:
            self.rollback()
            raise
        self.done.append((asset["public_id"], kind))
        return asset

    def rollback(self) -> None:
        for public_id, kind in self.done:
            try:
                self.media_host.delete(public_id, kind)
            except UpstreamFailure:
                logger.warning("Could not remove orphaned %s %s", kind, public_id)
        self.done = []


def _existing_tag_image(db: Database, tag: str, title: str) -> Optional[Dict[str, Any]]:
    doc = db["property"].find_one(
        {f"{tag}.title": title, f"{tag}.image.url": {"$exists": True}},
        {f"{tag}.image": 1},
    )
    if doc and doc.get(tag, {}).get("image"):
        return doc[tag]["image"]
    return None


# ---------- Reads ----------

def list_properties(db: Database, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    return _paginate(db, {}, SORTS["newest"], page, limit)


def get_property(db: Database, property_id: str) -> Dict[str, Any]:
    return serialize_doc(_get_or_404(db, property_id))


def filter_properties(
    db: Database,
    city: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    bhk: Optional[int] = None,
    sort: str = "newest",
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if city:
        filt["city"] = {"$regex": re.escape(city), "$options": "i"}
    if min_price is not None or max_price is not None:
        price_cond = {}
        if min_price is not None:
            price_cond["$gte"] = min_price
        if max_price is not None:
            price_cond["$lte"] = max_price
        filt["price"] = price_cond
    if bhk is not None:
        filt["bhk"] = bhk
    return _paginate(db, filt, SORTS.get(sort, SORTS["newest"]), page, limit)


def list_cities(db: Database) -> List[str]:
    return sorted(c for c in db["property"].distinct("city") if c)


def curated_collections(db: Database) -> List[Dict[str, Any]]:
    out = []
    for key in COLLECTION_KEYS:
        title, default_image = COLLECTION_TITLES[key]
        filt = {"collections": key, "status": "active"}
        count = db["property"].count_documents(filt)
        sample = db["property"].find_one({**filt, "images": {"$exists": True, "$ne": []}}, {"images": 1})
        image = sample["images"][0]["url"] if sample else default_image
        out.append({
            "key": key,
            "title": title,
            "count": f"{count} Properties",
            "properties": count,
            "image": image,
        })
    return out


def properties_by_collection(db: Database, key: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    normalized = (key or "").strip().lower()
    if normalized not in COLLECTION_KEYS:
        raise ValidationError(f"Unknown collection key: {key}. Valid keys: {', '.join(COLLECTION_KEYS)}")
    return _paginate(db, {"collections": normalized, "status": "active"}, SORTS["newest"], page, limit)


def _tag_titles(db: Database, tag: str) -> List[Dict[str, Any]]:
    pipeline = [
        {"$match": {"status": "active", f"{tag}.title": {"$exists": True, "$nin": [None, ""]}}},
        {"$group": {
            "_id": f"${tag}.title",
            "count": {"$sum": 1},
            "image": {"$first": f"${tag}.image.url"},
        }},
        {"$sort": {"count": -1, "_id": 1}},
    ]
    return [
        {"title": row["_id"], "count": row["count"], "image": row.get("image")}
        for row in db["property"].aggregate(pipeline)
    ]


def featured_locations(db: Database) -> Dict[str, Any]:
    # only manual tags; the featured flag never creates a location by itself
    return {"manual": _tag_titles(db, "featured_location"), "cities": []}


def curated_titles(db: Database) -> List[Dict[str, Any]]:
    return _tag_titles(db, "curated_property")


# ---------- Writes ----------

def create_property(
    db: Database,
    media_host: MediaHost,
    fields: Dict[str, Any],
    media: Optional[PropertyMedia] = None,
    featured_location_title: Optional[str] = None,
    curated_property_title: Optional[str] = None,
) -> Dict[str, Any]:
    media = media or PropertyMedia()
    if len(media.images) > MAX_IMAGES:
        raise ValidationError(f"Maximum {MAX_IMAGES} images allowed")
    if len(media.videos) > MAX_VIDEOS:
        raise ValidationError(f"Maximum {MAX_VIDEOS} videos allowed")

    data = {k: v for k, v in fields.items() if v is not None}
    data["amenities"] = parse_amenities(data.get("amenities"))
    data["featured"] = False
    _validated(data)

    tags = {
        "featured_location": (featured_location_title, media.featured_location_image),
        "curated_property": (curated_property_title, media.curated_property_image),
    }
    reused = {}
    for tag, (title, image) in tags.items():
        if title and image is None:
            reused[tag] = _existing_tag_image(db, tag, title)
            if reused[tag] is None:
                label = tag.replace("_", " ")
                raise ValidationError(f"{label.capitalize()} requires an image for a new title")

    uploads = _Uploads(media_host)
    data["images"] = [uploads.put(b, "image") for b in media.images]
    data["video"] = uploads.put(media.video, "video") if media.video else None
    data["videos"] = [uploads.put(b, "video") for b in media.videos]
    for tag, (title, image) in tags.items():
        if not title:
            continue
        asset = uploads.put(image, "image") if image is not None else reused[tag]
        data[tag] = {"title": title, "image": asset}

    doc = _validated(data)
    try:
        new_id = create_document(db, "property", doc)
    except Exception:
        uploads.rollback()
        raise
    logger.info("Created property %s", new_id)
    return get_property(db, new_id)


def update_property(
    db: Database,
    media_host: MediaHost,
    property_id: str,
    fields: Dict[str, Any],
    media: Optional[PropertyMedia] = None,
    featured_location_title: Optional[str] = None,
    curated_property_title: Optional[str] = None,
    remove_featured_location: bool = False,
    remove_curated_property: bool = False,
) -> Dict[str, Any]:
    media = media or PropertyMedia()
    current = _get_or_404(db, property_id)

    update = {k: v for k, v in fields.items() if v is not None}
    if "amenities" in update:
        update["amenities"] = parse_amenities(update["amenities"])

    images = list(current.get("images") or [])
    videos = list(current.get("videos") or [])
    if len(images) + len(media.images) > MAX_IMAGES:
        raise ValidationError(f"Total images cannot exceed {MAX_IMAGES}")
    if len(videos) + len(media.videos) > MAX_VIDEOS:
        raise ValidationError(f"Total videos cannot exceed {MAX_VIDEOS}")

    merged = {k: v for k, v in current.items() if k not in ("_id", "created_at", "updated_at")}
    merged.update(update)
    clean = _validated(merged)
    update = {k: clean[k] for k in update}

    stale: List[tuple] = []
    uploads = _Uploads(media_host)

    if media.images:
        update["images"] = images + [uploads.put(b, "image") for b in media.images]
    if media.videos:
        update["videos"] = videos + [uploads.put(b, "video") for b in media.videos]
    if media.video:
        update["video"] = uploads.put(media.video, "video")
        old = (current.get("video") or {}).get("public_id")
        if old:
            stale.append((old, "video"))

    unset: Dict[str, str] = {}
    tag_changes = {
        "featured_location": (remove_featured_location, featured_location_title, media.featured_location_image),
        "curated_property": (remove_curated_property, curated_property_title, media.curated_property_image),
    }
    for tag, (remove, title, image) in tag_changes.items():
        existing = current.get(tag) or {}
        old_public_id = (existing.get("image") or {}).get("public_id")
        if remove:
            if old_public_id:
                stale.append((old_public_id, "image"))
            unset[tag] = ""
        elif title:
            if image is not None:
                update[tag] = {"title": title, "image": uploads.put(image, "image")}
                if old_public_id:
                    stale.append((old_public_id, "image"))
            else:
                update[tag] = {"title": title, "image": existing.get("image")}

    update["updated_at"] = now_utc()
    ops: Dict[str, Any] = {"$set": update}
    if unset:
        ops["$unset"] = unset
    try:
        doc = db["property"].find_one_and_update(
            {"_id": current["_id"]}, ops, return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFoundError("Property not found")
    except Exception:
        uploads.rollback()
        raise

    # replaced assets go only once the document no longer points at them
    for public_id, kind in stale:
        try:
            media_host.delete(public_id, kind)
        except UpstreamFailure:
            logger.warning("Could not remove replaced %s %s", kind, public_id)
    logger.info("Updated property %s", property_id)
    return serialize_doc(doc)


def delete_property(db: Database, media_host: MediaHost, property_id: str) -> None:
    doc = _get_or_404(db, property_id)
    image_ids = [img.get("public_id") for img in doc.get("images") or [] if img.get("public_id")]
    media_host.delete_many(image_ids, "image")
    video_ids = [v.get("public_id") for v in doc.get("videos") or [] if v.get("public_id")]
    legacy = (doc.get("video") or {}).get("public_id")
    if legacy:
        video_ids.append(legacy)
    media_host.delete_many(video_ids, "video")
    db["property"].delete_one({"_id": doc["_id"]})
    logger.info("Deleted property %s", property_id)


def delete_property_image(db: Database, media_host: MediaHost, property_id: str, index: int) -> Dict[str, Any]:
    doc = _get_or_404(db, property_id)
    images = list(doc.get("images") or [])
    if index < 0 or index >= len(images):
        raise ValidationError("Invalid image index")
    removed = images.pop(index)
    if removed.get("public_id"):
        media_host.delete(removed["public_id"], "image")
    updated = db["property"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$set": {"images": images, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(updated)


def toggle_featured(db: Database, property_id: str) -> Dict[str, Any]:
    doc = _get_or_404(db, property_id)
    updated = db["property"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$set": {"featured": not doc.get("featured", False), "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(updated)
