# Availability calendar (public) and per-date pricing management (host only).
import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..availability import booked_dates, ranges_overlap, today_utc, to_utc_date
from ..booking_service import active_bookings, apartment_calendar, resolve_availability, upcoming_rules
from ..db import get_db
from .. import models, schemas
from ..rate_limit import rate_limit
from .apartments import get_owned_apartment
from .auth import get_current_user

router = APIRouter()
logger = logging.getLogger("nestrent.pricing")


def _find_rule(db: Session, apartment_id: int, day: date) -> Optional[models.PricingRule]:
    return (
        db.query(models.PricingRule)
        .filter(models.PricingRule.apartment_id == apartment_id, models.PricingRule.date == day)
        .first()
    )


def save_pricing_rule(
    db: Session, apartment_id: int, day: date, price: Optional[int], is_blocked: bool
) -> models.PricingRule:
    """Insert or overwrite the rule for one date; last writer wins."""
    rule = _find_rule(db, apartment_id, day)
    if rule is None:
        rule = models.PricingRule(apartment_id=apartment_id, date=day)
        db.add(rule)
    rule.price = price
    rule.is_blocked = is_blocked
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request created the same date first; overwrite that row
        db.rollback()
        rule = _find_rule(db, apartment_id, day)
        if rule is None:
            raise
        rule.price = price
        rule.is_blocked = is_blocked
        db.commit()
    db.refresh(rule)
    return rule


@router.get("/apartments/{apartment_id}/calendar", response_model=schemas.CalendarRead)
def get_calendar(
    apartment_id: int,
    check_in: Optional[date] = Query(None),
    check_out: Optional[date] = Query(None),
    db: Session = Depends(get_db),
) -> schemas.CalendarRead:
    """
    Prices and occupied dates of a listing.

    With check_in and check_out, also answers whether that stay is bookable and its total;
    price_map then covers every night of the stay.
    """
    if (check_in is None) != (check_out is None):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provide both check_in and check_out")
    if check_in is None:
        view = apartment_calendar(db, apartment_id)
        return schemas.CalendarRead(apartment_id=apartment_id, **vars(view))
    view = resolve_availability(db, apartment_id, check_in, check_out)
    return schemas.CalendarRead(apartment_id=apartment_id, **vars(view))


@router.get("/apartments/{apartment_id}/pricing", response_model=schemas.PricingRead)
def get_pricing(
    apartment_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.PricingRead:
    """Host view: base price, rules from today on, and dates held by active bookings."""
    apartment = get_owned_apartment(db, apartment_id, user)
    return schemas.PricingRead(
        apartment_id=apartment.id,
        base_price=apartment.price,
        pricing_rules=upcoming_rules(db, apartment.id),
        booked_dates=booked_dates(active_bookings(db, apartment.id)),
    )


@router.put(
    "/apartments/{apartment_id}/pricing",
    response_model=schemas.PricingRuleRead,
    dependencies=[Depends(rate_limit("write"))],
)
def upsert_pricing_rule(
    apartment_id: int,
    payload: schemas.PricingRuleUpsert,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.PricingRule:
    """
    Create or replace the override for one date.

    Dates already held by a PENDING/CONFIRMED booking cannot be repriced or blocked.
    """
    apartment = get_owned_apartment(db, apartment_id, user)
    day = to_utc_date(payload.date)
    if day < today_utc():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change prices for past dates")

    next_day = day + timedelta(days=1)
    if any(ranges_overlap(day, next_day, b.start_date, b.end_date) for b in active_bookings(db, apartment.id)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Cannot change pricing on booked dates")

    rule = save_pricing_rule(db, apartment.id, day, payload.price, payload.is_blocked)
    logger.info(
        "pricing.rule.saved",
        extra={"apartment_id": apartment.id, "date": day.isoformat(), "price": rule.price, "blocked": rule.is_blocked},
    )
    return rule


@router.delete(
    "/apartments/{apartment_id}/pricing/{day}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_pricing_rule(
    apartment_id: int,
    day: date,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> None:
    """Drop the override for a date so the base price applies again."""
    apartment = get_owned_apartment(db, apartment_id, user)
    rule = _find_rule(db, apartment.id, day)
    if rule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No pricing rule for this date")
    db.delete(rule)
    db.commit()
