# Booking endpoints: request, confirm, cancel, and list bookings.
# Admission rules and concurrency control live in booking_service; errors surface via ServiceError.
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import booking_service, models, schemas
from ..db import get_db
from ..rate_limit import rate_limit
from .auth import get_current_user

router = APIRouter()


@router.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_booking(
    payload: schemas.BookingCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    """
    Request a stay. The booking is created PENDING with its total computed from
    per-date prices; overlapping or blocked dates are rejected with 409.
    """
    user_id = user.id
    return booking_service.create_booking(
        db,
        apartment_id=payload.apartment_id,
        user_id=user_id,
        check_in=payload.check_in,
        check_out=payload.check_out,
        comment=payload.comment,
    )


@router.get("/bookings/me", response_model=List[schemas.BookingRead])
def list_my_bookings(
    as_host: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Booking]:
    """Bookings made by the caller, or with as_host=true, bookings of the caller's listings."""
    return booking_service.list_bookings(db, user.id, as_host=as_host, limit=limit, offset=offset)


@router.post(
    "/bookings/{booking_id}/confirm",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def confirm_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return booking_service.confirm_booking(db, booking_id, host_id=user.id)


@router.delete(
    "/bookings/{booking_id}",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def cancel_booking(
    booking_id: int,
    reason: Optional[str] = Query(None, max_length=255),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    # Idempotent: cancelling a cancelled booking returns it unchanged
    return booking_service.cancel_booking(db, booking_id, user_id=user.id, reason=reason)
