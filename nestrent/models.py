# SQLAlchemy ORM models for the marketplace tables.
# Keep business logic out of models; availability and booking rules live in availability/booking_service.
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_mixin

from .db import Base

# Booking states that occupy dates; CANCELLED and COMPLETED never participate in conflicts
ACTIVE_BOOKING_STATUSES = ("PENDING", "CONFIRMED")
BOOKING_STATUSES = ("PENDING", "CONFIRMED", "CANCELLED", "COMPLETED")
MODERATION_STATUSES = ("PENDING", "APPROVED", "REJECTED")
APARTMENT_TYPES = ("apartment", "house", "studio")


def one_of(column: str, values) -> str:
    """SQL CHECK expression restricting a string column to a fixed set of values."""
    return f"{column} IN (" + ", ".join(f"'{v}'" for v in values) + ")"


@declarative_mixin
class TimestampMixin:
    """Common UTC-aware timestamps automatically managed by the database.

    - created_at: set on insert
    - updated_at: set on insert and updated on each modification
    """
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class User(Base, TimestampMixin):
    """Marketplace account.

    Any user may list apartments (acting as host) and book others' listings (acting as tenant).
    Role 'admin' grants moderation of listings and reviews.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user", index=True)  # "user" or "admin"


class Apartment(Base, TimestampMixin):
    """Rental listing submitted by a host.

    Created as PENDING and unpublished; only APPROVED + published listings are visible and bookable.
    """
    __tablename__ = "apartments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Integer, nullable=False)  # base nightly price, whole currency units
    type = Column(String(20), nullable=False, default="apartment")
    district = Column(String(120), nullable=False, default="")
    address = Column(String(500), nullable=False, default="")
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    rooms = Column(Integer, nullable=True)
    area = Column(Integer, nullable=True)
    floor = Column(Integer, nullable=True)
    amenities = Column(JSON, nullable=False, default=list)
    images = Column(JSON, nullable=False, default=list)
    min_stay = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    is_published = Column(Boolean, nullable=False, default=False)
    is_promoted = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(String(500), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_apartments_status_published", "status", "is_published"),
        CheckConstraint(one_of("status", MODERATION_STATUSES), name="ck_apartments_status"),
        CheckConstraint(one_of("type", APARTMENT_TYPES), name="ck_apartments_type"),
    )


class PricingRule(Base, TimestampMixin):
    """Per-date override of an apartment's price and/or blocked flag.

    price=None keeps the base price for that date (a pure block).
    """
    __tablename__ = "pricing_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    price = Column(Integer, nullable=True)
    is_blocked = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("apartment_id", "date", name="uq_pricing_rules_apartment_date"),
    )


class Booking(Base, TimestampMixin):
    """Reservation of an apartment for the half-open range [start_date, end_date).

    Status transitions:
    PENDING -> CONFIRMED -> COMPLETED
       └── CANCELLED (by tenant, host, or expiry)

    'version' is bumped on each status change.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_price = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    comment = Column(String(1000), nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_bookings_range"),
        CheckConstraint(one_of("status", BOOKING_STATUSES), name="ck_bookings_status"),
        Index("ix_bookings_apartment_status", "apartment_id", "status"),
        Index("ix_bookings_apartment_start", "apartment_id", "start_date"),
        Index("ix_bookings_apartment_end", "apartment_id", "end_date"),
    )


class Chat(Base, TimestampMixin):
    """Conversation between a tenant and the host about one apartment."""
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("apartment_id", "tenant_id", "host_id", name="uq_chats_triple"),
    )


class Message(Base):
    """Append-only chat message; is_read flips when the other participant opens the chat."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    chat_id = Column(Integer, ForeignKey("chats.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(String(2000), nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_messages_chat_created_at", "chat_id", "created_at"),
    )


class Review(Base, TimestampMixin):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id"), nullable=True, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(String(2000), nullable=True)
    status = Column(String(20), nullable=False, default="PENDING", index=True)

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
        CheckConstraint(one_of("status", MODERATION_STATUSES), name="ck_reviews_status"),
    )


class Favorite(Base, TimestampMixin):
    """Saved apartment; removal only clears is_active so favoriting history is kept."""
    __tablename__ = "favorites"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("user_id", "apartment_id", name="uq_favorites_user_apartment"),
    )
