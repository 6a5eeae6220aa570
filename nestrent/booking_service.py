# Booking workflows: availability lookup, atomic booking creation, and status changes.
# Route handlers stay thin; everything here raises nestrent.errors types.
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .availability import (
    DateLike,
    booked_dates,
    build_calendar,
    check_availability,
    has_conflict,
    index_rules,
    resolve_price,
    to_utc_date,
    today_utc,
    validate_range,
)
from .config import BOOKING_LOCK_TTL_MS, BOOKING_LOCK_WAIT_MS, MAX_STAY_NIGHTS, is_sqlite
from .errors import (
    BookingConflictError,
    BookingValidationError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    ResourceBusyError,
    ServiceError,
)
from .locks import apartment_lock

logger = logging.getLogger("nestrent.bookings")

# Name of the PostgreSQL exclusion constraint created by the migrations
OVERLAP_CONSTRAINT = "ex_bookings_no_overlap"
UNAVAILABLE = "Selected dates are unavailable"


@dataclass
class CalendarView:
    base_price: int
    min_stay: int
    price_map: Dict[date, int] = field(default_factory=dict)
    blocked_dates: List[date] = field(default_factory=list)
    booked_dates: List[date] = field(default_factory=list)


@dataclass
class AvailabilityView(CalendarView):
    available: bool = False
    total_price: Optional[int] = None
    message: Optional[str] = None


# ----------------
# Lookups
# ----------------
def get_visible_apartment(db: Session, apartment_id: int) -> models.Apartment:
    """Return an APPROVED, published apartment or raise NotFoundError."""
    apartment = (
        db.query(models.Apartment)
        .filter(
            models.Apartment.id == apartment_id,
            models.Apartment.status == "APPROVED",
            models.Apartment.is_published.is_(True),
        )
        .first()
    )
    if apartment is None:
        raise NotFoundError("Apartment not found")
    return apartment


def active_bookings(db: Session, apartment_id: int) -> List[models.Booking]:
    return (
        db.query(models.Booking)
        .filter(
            models.Booking.apartment_id == apartment_id,
            models.Booking.status.in_(models.ACTIVE_BOOKING_STATUSES),
        )
        .all()
    )


def upcoming_rules(db: Session, apartment_id: int, since: Optional[date] = None) -> List[models.PricingRule]:
    since = since or today_utc()
    return (
        db.query(models.PricingRule)
        .filter(models.PricingRule.apartment_id == apartment_id, models.PricingRule.date >= since)
        .order_by(models.PricingRule.date.asc())
        .all()
    )


def _begin_booking_write(db: Session, apartment_id: int) -> None:
    """
    Open the write transaction for a check-and-insert so other processes are serialized.

    SQLite has no row locks: BEGIN IMMEDIATE takes the database write lock up front, so a
    second writer waits (up to the connect timeout) until this transaction ends. Server
    databases lock the apartment row with SELECT ... FOR UPDATE instead.
    """
    if is_sqlite(str(db.bind.url)):
        db.connection().exec_driver_sql("BEGIN IMMEDIATE")
        return
    db.query(models.Apartment.id).filter(models.Apartment.id == apartment_id).with_for_update().first()


# ----------------
# Availability
# ----------------
def apartment_calendar(db: Session, apartment_id: int) -> CalendarView:
    """Base price, per-date overrides from today, and occupied dates of one listing."""
    apartment = get_visible_apartment(db, apartment_id)
    rules = upcoming_rules(db, apartment_id)
    rules_by_date = index_rules(rules)
    return CalendarView(
        base_price=apartment.price,
        min_stay=apartment.min_stay,
        price_map={d: resolve_price(d, apartment.price, rules_by_date).price for d in rules_by_date},
        blocked_dates=[r.date for r in rules if r.is_blocked],
        booked_dates=booked_dates(active_bookings(db, apartment_id)),
    )


def resolve_availability(db: Session, apartment_id: int, check_in: DateLike, check_out: DateLike) -> AvailabilityView:
    """
    Whether [check_in, check_out) can be booked and at what total price.

    Invalid or past ranges raise BookingValidationError; an unavailable stay is reported
    as available=False with a message rather than raised.
    """
    check_in, check_out = _normalize_range(check_in, check_out)
    apartment = get_visible_apartment(db, apartment_id)
    bookings = active_bookings(db, apartment_id)
    rules = upcoming_rules(db, apartment_id)
    occupied = booked_dates(bookings)

    days = build_calendar(check_in, check_out, apartment.price, index_rules(rules), set(occupied))
    result = check_availability(check_in, check_out, days, apartment.min_stay)
    return AvailabilityView(
        base_price=apartment.price,
        min_stay=apartment.min_stay,
        price_map={d: info.price for d, info in days.items()},
        blocked_dates=[r.date for r in rules if r.is_blocked],
        booked_dates=occupied,
        available=result.available,
        total_price=result.total_price if result.available else None,
        message=result.message,
    )


def _normalize_range(check_in: DateLike, check_out: DateLike):
    if check_in is None or check_out is None:
        raise BookingValidationError("Check-in and check-out dates are required")
    start, end = to_utc_date(check_in), to_utc_date(check_out)
    validate_range(start, end)
    if (end - start).days > MAX_STAY_NIGHTS:
        raise BookingValidationError(f"Stays are limited to {MAX_STAY_NIGHTS} nights")
    if start < today_utc():
        raise BookingValidationError("Check-in date cannot be in the past")
    return start, end


# ----------------
# Booking creation
# ----------------
def create_booking(
    db: Session,
    apartment_id: int,
    user_id: int,
    check_in: DateLike,
    check_out: DateLike,
    comment: Optional[str] = None,
) -> models.Booking:
    """
    Admit or reject a booking request; on success a PENDING booking is committed.

    The conflict check and insert run under a per-apartment lock (in-process always,
    Redis across processes when enabled) inside a database write transaction:
    BEGIN IMMEDIATE on SQLite, a row lock on the apartment on server databases.
    On PostgreSQL the exclusion constraint rejects any overlap that slips through;
    that rejection is reported as BookingConflictError like any other overlap.
    """
    check_in, check_out = _normalize_range(check_in, check_out)

    # Unknown or hidden listings are rejected before any lock is taken
    get_visible_apartment(db, apartment_id)

    # Start from a fresh transaction so reads below see rows committed by the previous lock holder
    db.rollback()

    with apartment_lock(apartment_id, ttl_ms=BOOKING_LOCK_TTL_MS, wait_ms=BOOKING_LOCK_WAIT_MS) as locked:
        if not locked:
            raise ResourceBusyError("Apartment is being booked by another request; retry shortly")
        try:
            _begin_booking_write(db, apartment_id)
            apartment = get_visible_apartment(db, apartment_id)
            if apartment.host_id == user_id:
                raise BookingValidationError("You cannot book your own apartment")

            nights = (check_out - check_in).days
            if nights < apartment.min_stay:
                raise BookingValidationError(f"Minimum stay is {apartment.min_stay} nights")

            bookings = active_bookings(db, apartment_id)
            if has_conflict(check_in, check_out, bookings):
                raise BookingConflictError(UNAVAILABLE)

            rules = index_rules(upcoming_rules(db, apartment_id, since=check_in))
            days = build_calendar(check_in, check_out, apartment.price, rules, set(booked_dates(bookings)))
            result = check_availability(check_in, check_out, days, apartment.min_stay)
            if not result.available:
                raise BookingConflictError(result.message or UNAVAILABLE)

            obj = models.Booking(
                apartment_id=apartment_id,
                tenant_id=user_id,
                start_date=check_in,
                end_date=check_out,
                total_price=result.total_price,
                status="PENDING",
                comment=comment,
                version=1,
            )
            db.add(obj)
            db.commit()
            db.refresh(obj)
        except ServiceError:
            db.rollback()
            raise
        except IntegrityError as exc:
            db.rollback()
            if OVERLAP_CONSTRAINT in str(getattr(exc, "orig", exc)):
                raise BookingConflictError(UNAVAILABLE) from exc
            logger.exception("booking.create.integrity_error", extra={"apartment_id": apartment_id})
            raise PersistenceError("Failed to create booking") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("booking.create.failed", extra={"apartment_id": apartment_id})
            raise PersistenceError("Failed to create booking") from exc

    logger.info(
        "booking.created",
        extra={
            "booking_id": obj.id,
            "apartment_id": apartment_id,
            "tenant_id": user_id,
            "nights": nights,
            "total_price": obj.total_price,
        },
    )
    return obj


# ----------------
# Status changes
# ----------------
def _get_booking(db: Session, booking_id: int) -> models.Booking:
    obj = db.get(models.Booking, booking_id)
    if obj is None:
        raise NotFoundError("Booking not found")
    return obj


def _commit_status(db: Session, obj: models.Booking, action: str) -> models.Booking:
    obj.version = (obj.version or 1) + 1
    try:
        db.add(obj)
        db.commit()
        db.refresh(obj)
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to {action} booking") from exc
    logger.info(f"booking.{action}", extra={"booking_id": obj.id, "status": obj.status})
    return obj


def confirm_booking(db: Session, booking_id: int, host_id: int) -> models.Booking:
    """Host accepts a PENDING request."""
    obj = _get_booking(db, booking_id)
    apartment = db.get(models.Apartment, obj.apartment_id)
    if apartment is None or apartment.host_id != host_id:
        raise PermissionDeniedError("Only the host can confirm this booking")
    if obj.status != "PENDING":
        raise BookingValidationError("Only pending bookings can be confirmed")
    others = [b for b in active_bookings(db, obj.apartment_id) if b.id != obj.id]
    if has_conflict(obj.start_date, obj.end_date, others):
        raise BookingConflictError(UNAVAILABLE)
    obj.status = "CONFIRMED"
    return _commit_status(db, obj, "confirm")


def cancel_booking(db: Session, booking_id: int, user_id: int, reason: Optional[str] = None) -> models.Booking:
    """
    Tenant or host cancels a booking, releasing its dates.

    Idempotent for already cancelled bookings; completed stays cannot be cancelled.
    """
    obj = _get_booking(db, booking_id)
    apartment = db.get(models.Apartment, obj.apartment_id)
    is_host = apartment is not None and apartment.host_id == user_id
    if obj.tenant_id != user_id and not is_host:
        raise PermissionDeniedError("Not allowed to cancel this booking")
    if obj.status == "CANCELLED":
        return obj
    if obj.status == "COMPLETED":
        raise BookingValidationError("Completed bookings cannot be cancelled")
    obj.status = "CANCELLED"
    obj.cancel_reason = reason or ("cancelled_by_host" if is_host else "cancelled_by_tenant")
    return _commit_status(db, obj, "cancel")


def list_bookings(db: Session, user_id: int, as_host: bool = False, limit: int = 20, offset: int = 0) -> List[models.Booking]:
    if as_host:
        q = (
            db.query(models.Booking)
            .join(models.Apartment, models.Apartment.id == models.Booking.apartment_id)
            .filter(models.Apartment.host_id == user_id)
        )
    else:
        q = db.query(models.Booking).filter(models.Booking.tenant_id == user_id)
    return (
        q.order_by(models.Booking.start_date.desc(), models.Booking.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
