# Date availability, per-date pricing, and booking overlap rules.
# Pure functions over calendar dates; persistence and locking live in booking_service.
#
# All ranges are half-open [start, end): the end date is the checkout day, which is
# neither charged nor considered occupied.
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set, Union

from .errors import BookingValidationError
from .models import ACTIVE_BOOKING_STATUSES

DateLike = Union[date, datetime, str]


def to_utc_date(value: DateLike) -> date:
    """
    Normalize a date, datetime, or ISO-8601 string to a calendar date in UTC.

    - date: returned unchanged
    - aware datetime: converted to UTC, then truncated
    - naive datetime: treated as UTC
    - str: parsed as YYYY-MM-DD or a full ISO timestamp ('Z' suffix accepted)
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise BookingValidationError("Date is required")
        try:
            if len(raw) == 10:
                return date.fromisoformat(raw)
            return to_utc_date(datetime.fromisoformat(raw.replace("Z", "+00:00")))
        except ValueError as exc:
            raise BookingValidationError(f"Invalid date: {value!r}") from exc
    raise BookingValidationError(f"Invalid date: {value!r}")


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def iter_nights(start: date, end: date) -> Iterator[date]:
    # Every occupied date of [start, end); empty when start >= end
    day = start
    while day < end:
        yield day
        day += timedelta(days=1)


# ----------------
# Price resolution
# ----------------
@dataclass(frozen=True)
class DayPrice:
    price: int
    is_blocked: bool


def index_rules(rules: Iterable) -> Dict[date, object]:
    """Key pricing rules by their normalized calendar date; later rules win on duplicates."""
    return {to_utc_date(rule.date): rule for rule in rules}


def resolve_price(day: date, base_price: int, rules_by_date: Mapping[date, object]) -> DayPrice:
    """
    Effective nightly price and blocked flag for one date.

    A rule for the exact date takes precedence; a rule with price=None only blocks/unblocks
    and keeps the base price. Without a rule the base price applies and the date is open.
    """
    rule = rules_by_date.get(day)
    if rule is None:
        return DayPrice(price=base_price, is_blocked=False)
    price = rule.price if rule.price is not None else base_price
    return DayPrice(price=price, is_blocked=bool(rule.is_blocked))


# ----------------
# Availability
# ----------------
@dataclass(frozen=True)
class DayAvailability:
    date: date
    price: int
    is_blocked: bool
    is_booked: bool


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    total_price: int = 0
    message: Optional[str] = None


def build_calendar(
    start: date,
    end: date,
    base_price: int,
    rules_by_date: Mapping[date, object],
    booked_dates: Set[date],
) -> Dict[date, DayAvailability]:
    """Per-date availability for every night of [start, end)."""
    days: Dict[date, DayAvailability] = {}
    for day in iter_nights(start, end):
        resolved = resolve_price(day, base_price, rules_by_date)
        days[day] = DayAvailability(
            date=day,
            price=resolved.price,
            is_blocked=resolved.is_blocked,
            is_booked=day in booked_dates,
        )
    return days


def check_availability(
    check_in: date,
    check_out: date,
    days: Mapping[date, DayAvailability],
    min_stay: int = 1,
) -> AvailabilityResult:
    """
    Accept a stay and total its price, or reject it with a readable reason.

    Rejects first on the night count versus min_stay, then scans each night of
    [check_in, check_out) in order and fails on the first blocked, booked, or unknown date.
    """
    nights = (check_out - check_in).days
    if nights < min_stay:
        return AvailabilityResult(available=False, message=f"Minimum stay is {min_stay} nights")

    total = 0
    for day in iter_nights(check_in, check_out):
        info = days.get(day)
        if info is None or info.is_blocked or info.is_booked:
            return AvailabilityResult(available=False, message=f"Date {day.isoformat()} is unavailable")
        total += info.price
    return AvailabilityResult(available=True, total_price=total)


# ----------------
# Conflicts
# ----------------
def validate_range(start: Optional[date], end: Optional[date]) -> None:
    if start is None or end is None:
        raise BookingValidationError("Check-in and check-out dates are required")
    if start >= end:
        raise BookingValidationError("Check-in must be before check-out")


def ranges_overlap(s1: date, e1: date, s2: date, e2: date) -> bool:
    # Half-open intersection: touching endpoints do not overlap
    return s1 < e2 and s2 < e1


def _is_active(booking) -> bool:
    return getattr(booking, "status", "PENDING") in ACTIVE_BOOKING_STATUSES


def has_conflict(start: date, end: date, bookings: Iterable) -> bool:
    """
    True if [start, end) intersects any PENDING/CONFIRMED booking.

    The range is validated before any comparison; invalid ranges raise BookingValidationError.
    """
    validate_range(start, end)
    return any(
        ranges_overlap(start, end, b.start_date, b.end_date)
        for b in bookings
        if _is_active(b)
    )


def booked_dates(bookings: Iterable) -> List[date]:
    """Sorted, de-duplicated occupied dates of all active bookings (checkout days excluded)."""
    days: Set[date] = set()
    for b in bookings:
        if _is_active(b):
            days.update(iter_nights(b.start_date, b.end_date))
    return sorted(days)
