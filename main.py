import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import List, Optional, Literal

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import analytics
import enquiries
import properties
from chatbot import ChatResponder, CompanyInfo, handle_chat_message
from config import get_settings
from dashboard import dashboard_stats
from database import db, ensure_indexes, get_db, now_utc
from errors import RealtyError
from llm import build_text_generator
from media import MediaHost
from properties import PropertyMedia
from schemas import ChatTurn, CollectionKey, get_schema_definitions

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Listing API starting up, database=%s", settings.database_name)
    ensure_indexes(db)
    yield
    logger.info("Listing API shutting down")


app = FastAPI(title="Hi-Tech Homes API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# ---------- Errors ----------
@app.exception_handler(RealtyError)
async def handle_realty_error(request: Request, exc: RealtyError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(PyMongoError)
async def handle_store_error(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"success": False, "message": "Database error"})


# ---------- Dependencies ----------
@lru_cache()
def get_media_host() -> MediaHost:
    return MediaHost.from_settings(get_settings())


@lru_cache()
def get_responder() -> ChatResponder:
    s = get_settings()
    return ChatResponder(build_text_generator(s), CompanyInfo.from_settings(s))


def client_info(request: Request):
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")


def _read(files: Optional[List[UploadFile]]) -> List[bytes]:
    return [f.file.read() for f in files or []]


def _read_one(file: Optional[UploadFile]) -> Optional[bytes]:
    return file.file.read() if file else None


# ---------- Root & Health ----------
@app.get("/")
def read_root():
    return {
        "success": True,
        "message": "Hi-Tech Homes API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/api/health",
            "properties": "/api/properties",
            "enquiries": "/api/enquiries",
            "analytics": "/api/analytics",
            "chatbot": "/api/chatbot",
            "dashboard": "/api/dashboard",
        },
    }


@app.get("/api/health")
def health():
    return {"success": True, "message": "Server is running", "timestamp": now_utc().isoformat()}


@app.get("/test")
def test_database(database: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["database_name"] = database.name
        response["collections"] = database.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# ---------- Schema exposure ----------
@app.get("/schema")
def read_schema():
    return [s.model_dump() for s in get_schema_definitions()]


# ---------- Properties ----------
@app.get("/api/properties")
def list_properties(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    database: Database = Depends(get_db),
):
    return {"success": True, **properties.list_properties(database, page, limit)}


@app.get("/api/properties/filter")
def filter_properties(
    city: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    bhk: Optional[int] = None,
    sort: Literal["newest", "price_asc", "price_desc", "bhk_asc", "bhk_desc"] = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    database: Database = Depends(get_db),
):
    result = properties.filter_properties(database, city, min_price, max_price, bhk, sort, page, limit)
    return {"success": True, **result}


@app.get("/api/properties/cities")
def list_cities(database: Database = Depends(get_db)):
    cities = properties.list_cities(database)
    return {"success": True, "count": len(cities), "data": cities}


@app.get("/api/properties/collections/curated")
def curated_collections(database: Database = Depends(get_db)):
    return {"success": True, "data": properties.curated_collections(database)}


@app.get("/api/properties/collections/{key}")
def properties_by_collection(
    key: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    database: Database = Depends(get_db),
):
    return {"success": True, **properties.properties_by_collection(database, key, page, limit)}


@app.get("/api/properties/locations/featured")
def featured_locations(database: Database = Depends(get_db)):
    return {"success": True, "data": properties.featured_locations(database)}


@app.get("/api/properties/curated/titles")
def curated_titles(database: Database = Depends(get_db)):
    return {"success": True, "data": properties.curated_titles(database)}


@app.get("/api/properties/{property_id}")
def get_property(property_id: str, database: Database = Depends(get_db)):
    return {"success": True, "data": properties.get_property(database, property_id)}


@app.post("/api/properties", status_code=201)
def create_property(
    title: str = Form(...),
    price: float = Form(...),
    bhk: int = Form(...),
    bathrooms: int = Form(...),
    city: str = Form(...),
    description: str = Form(""),
    address: str = Form(""),
    area: Optional[str] = Form(None),
    amenities: Optional[str] = Form(None),
    status: Optional[Literal["active", "inactive", "sold"]] = Form(None),
    collections: Optional[List[CollectionKey]] = Form(None),
    featured_location_title: Optional[str] = Form(None),
    curated_property_title: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    video: Optional[UploadFile] = File(None),
    videos: Optional[List[UploadFile]] = File(None),
    featured_location_image: Optional[UploadFile] = File(None),
    curated_property_image: Optional[UploadFile] = File(None),
    database: Database = Depends(get_db),
    media_host: MediaHost = Depends(get_media_host),
):
    fields = {
        "title": title,
        "price": price,
        "bhk": bhk,
        "bathrooms": bathrooms,
        "city": city,
        "description": description,
        "address": address,
        "area": area,
        "amenities": amenities,
        "status": status,
        "collections": collections,
    }
    media = PropertyMedia(
        images=_read(images),
        video=_read_one(video),
        videos=_read(videos),
        featured_location_image=_read_one(featured_location_image),
        curated_property_image=_read_one(curated_property_image),
    )
    doc = properties.create_property(
        database, media_host, fields, media,
        featured_location_title=featured_location_title,
        curated_property_title=curated_property_title,
    )
    return {"success": True, "message": "Property created successfully", "data": doc}


@app.put("/api/properties/{property_id}")
def update_property(
    property_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    bhk: Optional[int] = Form(None),
    bathrooms: Optional[int] = Form(None),
    city: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    area: Optional[str] = Form(None),
    amenities: Optional[str] = Form(None),
    featured: Optional[bool] = Form(None),
    status: Optional[Literal["active", "inactive", "sold"]] = Form(None),
    collections: Optional[List[CollectionKey]] = Form(None),
    featured_location_title: Optional[str] = Form(None),
    curated_property_title: Optional[str] = Form(None),
    remove_featured_location: bool = Form(False),
    remove_curated_property: bool = Form(False),
    images: Optional[List[UploadFile]] = File(None),
    video: Optional[UploadFile] = File(None),
    videos: Optional[List[UploadFile]] = File(None),
    featured_location_image: Optional[UploadFile] = File(None),
    curated_property_image: Optional[UploadFile] = File(None),
    database: Database = Depends(get_db),
    media_host: MediaHost = Depends(get_media_host),
):
    fields = {
        "title": title,
        "description": description,
        "price": price,
        "bhk": bhk,
        "bathrooms": bathrooms,
        "city": city,
        "address": address,
        "area": area,
        "amenities": amenities,
        "featured": featured,
        "status": status,
        "collections": collections,
    }
    media = PropertyMedia(
        images=_read(images),
        video=_read_one(video),
        videos=_read(videos),
        featured_location_image=_read_one(featured_location_image),
        curated_property_image=_read_one(curated_property_image),
    )
    doc = properties.update_property(
        database, media_host, property_id, fields, media,
        featured_location_title=featured_location_title,
        curated_property_title=curated_property_title,
        remove_featured_location=remove_featured_location,
        remove_curated_property=remove_curated_property,
    )
    return {"success": True, "message": "Property updated successfully", "data": doc}


@app.delete("/api/properties/{property_id}")
def delete_property(
    property_id: str,
    database: Database = Depends(get_db),
    media_host: MediaHost = Depends(get_media_host),
):
    properties.delete_property(database, media_host, property_id)
    return {"success": True, "message": "Property deleted successfully"}


@app.delete("/api/properties/{property_id}/images/{image_index}")
def delete_property_image(
    property_id: str,
    image_index: int,
    database: Database = Depends(get_db),
    media_host: MediaHost = Depends(get_media_host),
):
    doc = properties.delete_property_image(database, media_host, property_id, image_index)
    return {"success": True, "message": "Image deleted successfully", "data": doc}


@app.put("/api/properties/{property_id}/toggle-featured")
def toggle_featured(property_id: str, database: Database = Depends(get_db)):
    doc = properties.toggle_featured(database, property_id)
    return {"success": True, "message": "Property featured status toggled successfully", "data": doc}


# ---------- Enquiries ----------
class EnquiryCreate(BaseModel):
    name: str
    email: str
    phone: str
    message: str
    property_id: Optional[str] = None


class EnquiryStatusUpdate(BaseModel):
    status: Optional[str] = None


class EnquiryNoteCreate(BaseModel):
    text: Optional[str] = None
    admin_id: Optional[str] = None


@app.post("/api/enquiries", status_code=201)
def create_enquiry(req: EnquiryCreate, database: Database = Depends(get_db)):
    doc = enquiries.create_enquiry(database, req.model_dump())
    return {
        "success": True,
        "message": "Enquiry submitted successfully. We will contact you soon!",
        "data": doc,
    }


@app.get("/api/enquiries/all")
def list_enquiries(
    status: Optional[Literal["pending", "handled"]] = None,
    database: Database = Depends(get_db),
):
    return {"success": True, **enquiries.list_enquiries(database, status)}


@app.get("/api/enquiries/recent")
def recent_enquiries(database: Database = Depends(get_db)):
    items = enquiries.recent_enquiries(database)
    return {"success": True, "count": len(items), "data": items}


@app.put("/api/enquiries/{enquiry_id}")
def update_enquiry_status(enquiry_id: str, body: EnquiryStatusUpdate, database: Database = Depends(get_db)):
    doc = enquiries.update_status(database, enquiry_id, body.status)
    return {"success": True, "message": "Enquiry status updated successfully", "data": doc}


@app.put("/api/enquiries/{enquiry_id}/notes")
def add_enquiry_note(enquiry_id: str, body: EnquiryNoteCreate, database: Database = Depends(get_db)):
    doc = enquiries.add_note(database, enquiry_id, body.text, body.admin_id)
    return {"success": True, "message": "Note added", "data": doc}


@app.delete("/api/enquiries/{enquiry_id}")
def delete_enquiry(enquiry_id: str, database: Database = Depends(get_db)):
    enquiries.delete_enquiry(database, enquiry_id)
    return {"success": True, "message": "Enquiry deleted successfully", "data": {"id": enquiry_id}}


# ---------- Analytics ----------
class TrackRequest(BaseModel):
    property_id: Optional[str] = None
    session_id: Optional[str] = None


class PriceRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class FilterTrackRequest(BaseModel):
    city: Optional[str] = None
    price_range: Optional[PriceRange] = None
    bhk: Optional[int] = None
    session_id: Optional[str] = None


def _track(event_type: str, req: TrackRequest, request: Request, database: Database):
    ip, agent = client_info(request)
    return analytics.track_property_event(
        database, event_type, req.property_id,
        session_id=req.session_id, ip_address=ip, user_agent=agent,
    )


@app.post("/api/analytics/view", status_code=201)
def track_view(req: TrackRequest, request: Request, database: Database = Depends(get_db)):
    return {"success": True, "data": _track("view", req, request, database)}


@app.post("/api/analytics/click", status_code=201)
def track_click(req: TrackRequest, request: Request, database: Database = Depends(get_db)):
    return {"success": True, "data": _track("click", req, request, database)}


@app.post("/api/analytics/filter", status_code=201)
def track_filter(req: FilterTrackRequest, request: Request, database: Database = Depends(get_db)):
    ip, agent = client_info(request)
    doc = analytics.track_filter(
        database,
        city=req.city,
        max_price=req.price_range.max if req.price_range else None,
        bhk=req.bhk,
        session_id=req.session_id,
        ip_address=ip,
        user_agent=agent,
    )
    return {"success": True, "data": doc}


@app.get("/api/analytics/top-properties")
def top_properties(
    event_type: Literal["view", "click"] = "view",
    limit: int = Query(10, ge=1, le=100),
    database: Database = Depends(get_db),
):
    rows = analytics.top_properties(database, event_type, limit)
    return {"success": True, "count": len(rows), "data": rows}


@app.get("/api/analytics/top-locations")
def top_locations(limit: int = Query(10, ge=1, le=100), database: Database = Depends(get_db)):
    rows = analytics.top_locations(database, limit)
    return {"success": True, "count": len(rows), "data": rows}


@app.get("/api/analytics/top-prices")
def top_prices(database: Database = Depends(get_db)):
    return {"success": True, "data": analytics.price_distribution(database)}


@app.get("/api/analytics/top-bhk")
def top_bhk(database: Database = Depends(get_db)):
    return {"success": True, "data": analytics.bhk_distribution(database)}


@app.get("/api/analytics/engagement")
def engagement(days: int = Query(30, ge=1, le=365), database: Database = Depends(get_db)):
    return {"success": True, "data": analytics.engagement(database, days)}


@app.get("/api/analytics/summary")
def analytics_summary(database: Database = Depends(get_db)):
    return {"success": True, "data": analytics.summary(database)}


# ---------- Chatbot ----------
class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    conversation_history: List[ChatTurn] = []


@app.post("/api/chatbot/message")
def chatbot_message(
    req: ChatRequest,
    database: Database = Depends(get_db),
    responder: ChatResponder = Depends(get_responder),
):
    logger.info("Chat message received (%d chars)", len(req.message))
    result = handle_chat_message(database, responder, req.message, req.conversation_history)
    return {"success": True, **result}


# ---------- Dashboard ----------
@app.get("/api/dashboard/stats")
def get_dashboard_stats(database: Database = Depends(get_db)):
    return {"success": True, "stats": dashboard_stats(database)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
