# Listing endpoints.
# Hosts submit and edit their own listings; everyone browses APPROVED + published ones.
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..rate_limit import rate_limit
from ..search import SearchCriteria, search
from .auth import get_current_user, get_current_user_optional

router = APIRouter()
logger = logging.getLogger("nestrent.apartments")


def visible_apartments(db: Session):
    return db.query(models.Apartment).filter(
        models.Apartment.status == "APPROVED",
        models.Apartment.is_published.is_(True),
    )


def get_owned_apartment(db: Session, apartment_id: int, user: models.User) -> models.Apartment:
    """Fetch any listing (regardless of moderation state) that the caller hosts."""
    obj = db.get(models.Apartment, apartment_id)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Apartment not found")
    if obj.host_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not the host of this apartment")
    return obj


@router.get("/apartments", response_model=List[schemas.ApartmentRead])
def list_apartments(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[models.Apartment]:
    """Public catalogue, newest first."""
    return (
        visible_apartments(db)
        .order_by(models.Apartment.created_at.desc(), models.Apartment.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/apartments/search", response_model=List[schemas.ApartmentSearchResult])
def search_apartments(
    property_type: str = Query("all", pattern="^(all|apartment|house|studio)$"),
    room_count: str = Query("any", pattern="^(any|1|2|3|4\\+)$"),
    house_floors: Optional[int] = Query(None, ge=1),
    house_area: Optional[int] = Query(None, ge=1),
    price_min: Optional[int] = Query(None, ge=0),
    price_max: Optional[int] = Query(None, ge=0),
    district: str = Query("all"),
    amenities: Optional[List[str]] = Query(None),
    db: Session = Depends(get_db),
) -> List[schemas.ApartmentSearchResult]:
    """
    Filter visible listings and order them by relevance.

    Promoted listings come first; ties keep newest-first order.
    """
    criteria = SearchCriteria(
        property_type=property_type,
        room_count=room_count,
        house_floors=house_floors,
        house_area=house_area,
        price_min=price_min,
        price_max=price_max,
        district=district,
        amenities=amenities or [],
    )
    candidates = visible_apartments(db).order_by(models.Apartment.created_at.desc(), models.Apartment.id.desc()).all()
    results = [
        schemas.ApartmentSearchResult(
            **schemas.ApartmentRead.model_validate(apartment).model_dump(),
            relevance_score=score,
        )
        for apartment, score in search(candidates, criteria)
    ]
    logger.info("apartments.search", extra={"candidates": len(candidates), "results": len(results)})
    return results


@router.get("/apartments/my", response_model=List[schemas.ApartmentRead])
def my_apartments(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)) -> List[models.Apartment]:
    """All listings of the caller, in any moderation state."""
    return (
        db.query(models.Apartment)
        .filter(models.Apartment.host_id == user.id)
        .order_by(models.Apartment.created_at.desc(), models.Apartment.id.desc())
        .all()
    )


@router.get("/apartments/host/{host_id}", response_model=List[schemas.ApartmentRead])
def host_apartments(host_id: int, db: Session = Depends(get_db)) -> List[models.Apartment]:
    return (
        visible_apartments(db)
        .filter(models.Apartment.host_id == host_id)
        .order_by(models.Apartment.created_at.desc(), models.Apartment.id.desc())
        .all()
    )


@router.get("/apartments/{apartment_id}", response_model=schemas.ApartmentRead)
def get_apartment(
    apartment_id: int,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_current_user_optional),
) -> models.Apartment:
    """Visible listings for everyone; hosts and admins also see their unpublished ones."""
    obj = db.get(models.Apartment, apartment_id)
    visible = obj is not None and obj.status == "APPROVED" and obj.is_published
    privileged = obj is not None and user is not None and (user.id == obj.host_id or user.role == "admin")
    if not (visible or privileged):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Apartment not found")
    return obj


@router.post(
    "/apartments",
    response_model=schemas.ApartmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_apartment(
    payload: schemas.ApartmentCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Apartment:
    """Submit a listing for moderation; it stays hidden until an admin approves it."""
    obj = models.Apartment(**payload.model_dump(), host_id=user.id, status="PENDING", is_published=False)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    logger.info("apartment.submitted", extra={"apartment_id": obj.id, "host_id": user.id})
    return obj


@router.patch(
    "/apartments/{apartment_id}",
    response_model=schemas.ApartmentRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_apartment(
    apartment_id: int,
    payload: schemas.ApartmentUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Apartment:
    obj = get_owned_apartment(db, apartment_id, user)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for key, value in changes.items():
        setattr(obj, key, value)
    if changes:
        # Edited listings go back through moderation
        obj.status = "PENDING"
        obj.is_published = False
        obj.rejection_reason = None
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj
