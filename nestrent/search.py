# Listing search: hard filters plus a relevance score used for ordering.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple


@dataclass
class SearchCriteria:
    property_type: str = "all"  # "all" | "apartment" | "house" | "studio"
    room_count: str = "any"  # "any" | "1" | "2" | "3" | "4+"
    house_floors: Optional[int] = None
    house_area: Optional[int] = None
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    district: str = "all"
    amenities: List[str] = field(default_factory=list)

    def desired_rooms(self) -> Optional[int]:
        if not self.room_count or self.room_count == "any":
            return None
        if self.room_count == "4+":
            return 4
        return int(self.room_count)


def matches(apartment, criteria: SearchCriteria) -> bool:
    """Hard filters: every constraint given in the criteria must hold."""
    if criteria.property_type != "all" and apartment.type != criteria.property_type:
        return False

    rooms = criteria.desired_rooms()
    if rooms is not None and apartment.type in ("apartment", "studio"):
        if apartment.rooms is None or apartment.rooms < rooms:
            return False

    if criteria.price_min is not None and apartment.price < criteria.price_min:
        return False
    if criteria.price_max is not None and apartment.price > criteria.price_max:
        return False

    if criteria.district != "all" and apartment.district != criteria.district:
        return False

    if criteria.amenities:
        have = set(apartment.amenities or [])
        if not all(a in have for a in criteria.amenities):
            return False
    return True


def relevance_score(apartment, criteria: SearchCriteria) -> float:
    """
    Weighted match score in [0, 10].

    type 4 (a mismatch scores 0 overall), rooms or house floors 3, area 2, amenity ratio 1.
    """
    if criteria.property_type != "all" and apartment.type != criteria.property_type:
        return 0.0
    score = 4.0

    if apartment.type == "house" and criteria.house_floors:
        actual = apartment.floor or 1
        if actual == criteria.house_floors:
            score += 3
        elif abs(actual - criteria.house_floors) == 1:
            score += 1
    elif apartment.type in ("apartment", "studio"):
        rooms = criteria.desired_rooms()
        if rooms is not None and (apartment.rooms or 1) == rooms:
            score += 3

    if criteria.house_area and apartment.area:
        diff = abs(apartment.area - criteria.house_area) / criteria.house_area
        if diff <= 0.1:
            score += 2
        elif diff <= 0.2:
            score += 1

    if criteria.amenities and apartment.amenities:
        matched = sum(1 for a in criteria.amenities if a in apartment.amenities)
        score += matched / len(criteria.amenities)

    return min(10.0, score)


def search(apartments: Sequence, criteria: SearchCriteria) -> List[Tuple[object, float]]:
    """
    Filter, score, and order listings: promoted first, then by score descending.

    Input order is kept between equal entries (callers pass newest first).
    """
    scored = []
    for apartment in apartments:
        if not matches(apartment, criteria):
            continue
        score = relevance_score(apartment, criteria)
        if score > 0:
            scored.append((apartment, score))
    scored.sort(key=lambda item: (not item[0].is_promoted, -item[1]))
    return scored
