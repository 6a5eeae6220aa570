# Background sweepers for periodic booking maintenance.
# Invoked from the startup thread in main, or directly from tests/cron.
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from .availability import today_utc
from .db import SessionLocal
from . import models

logger = logging.getLogger("nestrent.sweepers")


def sweep_bookings(db: Optional[Session] = None, today: Optional[date] = None) -> int:
    """
    Move bookings whose dates have passed into a terminal state.

    - CONFIRMED with end_date <= today -> COMPLETED
    - PENDING with start_date <= today -> CANCELLED (cancel_reason='expired'); the host never answered
      and the tenant can no longer check in.

    Idempotent across repeated runs. Accepts an optional Session; otherwise creates and closes its own.

    Returns:
    - Number of bookings updated.
    """
    created_session = False
    if db is None:
        db = SessionLocal()
        created_session = True

    today = today or today_utc()
    try:
        finished = (
            db.query(models.Booking)
            .filter(models.Booking.status == "CONFIRMED", models.Booking.end_date <= today)
            .all()
        )
        stale = (
            db.query(models.Booking)
            .filter(models.Booking.status == "PENDING", models.Booking.start_date <= today)
            .all()
        )
        for obj in finished:
            obj.status = "COMPLETED"
            obj.version = (obj.version or 1) + 1
        for obj in stale:
            obj.status = "CANCELLED"
            obj.cancel_reason = obj.cancel_reason or "expired"
            obj.version = (obj.version or 1) + 1
        if finished or stale:
            db.commit()
            logger.info("bookings.swept", extra={"completed": len(finished), "expired": len(stale)})
        return len(finished) + len(stale)
    except Exception:
        db.rollback()
        raise
    finally:
        if created_session:
            db.close()
