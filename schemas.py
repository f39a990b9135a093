"""
Database Schemas for the Hi-Tech Homes listing platform

Each Pydantic model represents a collection in MongoDB. The collection name
is the lowercase of the class name (e.g., Property -> "property"), except
AnalyticsEvent which is stored in "analytics".
"""
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, EmailStr, field_validator
from datetime import datetime

CollectionKey = Literal["new-projects", "ready-to-move", "luxury", "budget-friendly"]
COLLECTION_KEYS = ["new-projects", "ready-to-move", "luxury", "budget-friendly"]

MAX_IMAGES = 15
MAX_VIDEOS = 2

# -----------------------------
# Core domain models
# -----------------------------

class MediaAsset(BaseModel):
    url: str
    public_id: Optional[str] = None

class TaggedImage(BaseModel):
    """A manual tag (featured location, curated property) with its picture."""
    title: str
    image: Optional[MediaAsset] = None

class Property(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = Field("", max_length=2000)
    price: float = Field(..., ge=0)
    bhk: int = Field(..., ge=1, le=10)
    bathrooms: int = Field(..., ge=1, le=10)
    city: str
    address: str = ""
    area: Optional[str] = None
    amenities: List[str] = []
    images: List[MediaAsset] = Field(default_factory=list, max_length=MAX_IMAGES)
    video: Optional[MediaAsset] = None
    videos: List[MediaAsset] = Field(default_factory=list, max_length=MAX_VIDEOS)
    status: Literal["active", "inactive", "sold"] = "active"
    featured: bool = False
    featured_location: Optional[TaggedImage] = None
    curated_property: Optional[TaggedImage] = None
    collections: List[CollectionKey] = []

    @field_validator("title", "city", "address")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

class AdminNote(BaseModel):
    text: str = Field(..., min_length=1)
    admin_id: Optional[str] = Field(None, description="Hex id of the admin who wrote the note")
    created_at: datetime

class Enquiry(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone: str = Field(..., pattern=r"^[0-9]{10}$")
    message: str = Field(..., min_length=1, max_length=1000)
    property_id: Optional[str] = None
    status: Literal["pending", "handled"] = "pending"
    admin_notes: List[AdminNote] = []

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()

class AnalyticsEvent(BaseModel):
    event_type: Literal["view", "click", "filter"]
    property_id: Optional[str] = None
    city: Optional[str] = None
    price: Optional[float] = None
    bhk: Optional[int] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime


class SearchCriteria(BaseModel):
    """Filters pulled out of a free-text chat message."""
    bhk: Optional[int] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    city: Optional[str] = None
    has_intent: bool = False

    def is_empty(self) -> bool:
        return (
            self.bhk is None
            and self.min_price is None
            and self.max_price is None
            and self.city is None
        )

class ChatTurn(BaseModel):
    type: Literal["user", "bot", "system"] = "user"
    text: str

# Simple schema exposure for tooling
class SchemaInfo(BaseModel):
    name: str
    fields: dict


def get_schema_definitions():
    return [
        SchemaInfo(name="property", fields=Property.model_json_schema()),
        SchemaInfo(name="enquiry", fields=Enquiry.model_json_schema()),
        SchemaInfo(name="analytics", fields=AnalyticsEvent.model_json_schema()),
    ]
