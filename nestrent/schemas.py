# Pydantic models (request/response DTOs) used by the API layer.
# Keep models minimal and serializable; business logic lives in services/DB.
from pydantic import BaseModel, Field, ConfigDict, field_validator, EmailStr
from typing import Dict, List, Literal, Optional
from datetime import date, datetime

from .availability import to_utc_date
from .errors import ServiceError

ApartmentType = Literal["apartment", "house", "studio"]
ModerationStatus = Literal["PENDING", "APPROVED", "REJECTED"]
BookingStatus = Literal["PENDING", "CONFIRMED", "CANCELLED", "COMPLETED"]


def _strip(v):
    if isinstance(v, str):
        v = v.strip()
    return v


def _calendar_day(v):
    # Accept YYYY-MM-DD or full timestamps; timestamps are reduced to their UTC calendar day
    if v is None:
        return v
    try:
        return to_utc_date(v)
    except ServiceError as exc:
        raise ValueError(exc.detail) from exc


# Users
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)

    # Normalize email input to lowercase without surrounding whitespace
    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return _strip(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v


class UserRead(BaseModel):
    id: int
    email: EmailStr
    name: str
    phone: Optional[str] = None
    role: Literal["user", "admin"]

    model_config = ConfigDict(from_attributes=True)


# OAuth2-style token response bundled with the current user profile
class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


# Apartments
class ApartmentBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=10000)
    price: int = Field(..., ge=1)
    type: ApartmentType = "apartment"
    district: str = Field(..., min_length=1, max_length=120)
    address: str = Field(..., min_length=1, max_length=500)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    rooms: Optional[int] = Field(None, ge=0)
    area: Optional[int] = Field(None, ge=1)
    floor: Optional[int] = None
    amenities: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    min_stay: int = Field(1, ge=1)

    @field_validator("title", "district", "address", mode="before")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return _strip(v)


class ApartmentCreate(ApartmentBase):
    pass


# Partial update by the host; any edit sends the listing back to moderation
class ApartmentUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    price: Optional[int] = Field(None, ge=1)
    type: Optional[ApartmentType] = None
    district: Optional[str] = Field(None, min_length=1, max_length=120)
    address: Optional[str] = Field(None, min_length=1, max_length=500)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    rooms: Optional[int] = Field(None, ge=0)
    area: Optional[int] = Field(None, ge=1)
    floor: Optional[int] = None
    amenities: Optional[List[str]] = None
    images: Optional[List[str]] = None
    min_stay: Optional[int] = Field(None, ge=1)


class ApartmentRead(ApartmentBase):
    id: int
    host_id: int
    status: ModerationStatus
    is_published: bool
    is_promoted: bool = False
    rejection_reason: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ApartmentSearchResult(ApartmentRead):
    relevance_score: float


class ModerationAction(BaseModel):
    action: Literal["approve", "reject"]
    reason: Optional[str] = Field(None, max_length=500)


# Pricing and availability
class PricingRuleUpsert(BaseModel):
    date: date
    price: Optional[int] = Field(None, ge=0)
    is_blocked: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, v):
        return _calendar_day(v)


class PricingRuleRead(BaseModel):
    id: int
    apartment_id: int
    date: date
    price: Optional[int] = None
    is_blocked: bool

    model_config = ConfigDict(from_attributes=True)


class PricingRead(BaseModel):
    apartment_id: int
    base_price: int
    pricing_rules: List[PricingRuleRead]
    booked_dates: List[date]


class CalendarRead(BaseModel):
    apartment_id: int
    base_price: int
    min_stay: int
    price_map: Dict[date, int]
    blocked_dates: List[date]
    booked_dates: List[date]
    available: Optional[bool] = None
    total_price: Optional[int] = None
    message: Optional[str] = None


# Bookings
class BookingCreate(BaseModel):
    apartment_id: int = Field(..., ge=1)
    check_in: date
    check_out: date
    comment: Optional[str] = Field(None, max_length=1000)

    @field_validator("check_in", "check_out", mode="before")
    @classmethod
    def normalize_dates(cls, v):
        return _calendar_day(v)


class BookingRead(BaseModel):
    id: int
    apartment_id: int
    tenant_id: int
    start_date: date
    end_date: date
    total_price: int
    status: BookingStatus
    comment: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Chats
class ChatCreate(BaseModel):
    apartment_id: int = Field(..., ge=1)


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)

    # Trim surrounding whitespace before validation
    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v: str) -> str:
        return _strip(v)


class MessageRead(BaseModel):
    id: int
    chat_id: int
    sender_id: int
    content: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatRead(BaseModel):
    id: int
    apartment_id: int
    tenant_id: int
    host_id: int
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ChatSummary(ChatRead):
    apartment_title: str
    last_message: Optional[MessageRead] = None
    unread_count: int = 0


class ChatDetail(ChatRead):
    messages: List[MessageRead]


class TypingUpdate(BaseModel):
    is_typing: bool


class TypingState(BaseModel):
    is_typing: bool
    user_id: Optional[int] = None


# Reviews
class ReviewCreate(BaseModel):
    host_id: int = Field(..., ge=1)
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)
    apartment_id: Optional[int] = Field(None, ge=1)
    chat_id: Optional[int] = Field(None, ge=1)


class ReviewRead(BaseModel):
    id: int
    author_id: int
    host_id: int
    apartment_id: Optional[int] = None
    chat_id: Optional[int] = None
    rating: int
    comment: Optional[str] = None
    status: ModerationStatus
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReviewModerate(BaseModel):
    status: Literal["APPROVED", "REJECTED"]


class ReviewCheck(BaseModel):
    has_reviewed: bool


# Favorites
class FavoriteCreate(BaseModel):
    apartment_id: int = Field(..., ge=1)


class FavoriteRead(BaseModel):
    id: int
    apartment_id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class FavoriteStatus(BaseModel):
    is_favorite: bool
