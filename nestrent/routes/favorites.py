# Saved listings. Removing a favorite only deactivates it.
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from .auth import get_current_user, get_current_user_optional

router = APIRouter()


def _find(db: Session, user_id: int, apartment_id: int) -> Optional[models.Favorite]:
    return (
        db.query(models.Favorite)
        .filter(models.Favorite.user_id == user_id, models.Favorite.apartment_id == apartment_id)
        .first()
    )


@router.get("/favorites", response_model=List[schemas.ApartmentRead])
def list_favorites(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)) -> List[models.Apartment]:
    return (
        db.query(models.Apartment)
        .join(models.Favorite, models.Favorite.apartment_id == models.Apartment.id)
        .filter(models.Favorite.user_id == user.id, models.Favorite.is_active.is_(True))
        .order_by(models.Favorite.updated_at.desc(), models.Favorite.id.desc())
        .all()
    )


@router.post("/favorites", response_model=schemas.FavoriteRead)
def add_favorite(
    payload: schemas.FavoriteCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Favorite:
    """Idempotent: re-adding reactivates the existing row instead of inserting another."""
    if not db.get(models.Apartment, payload.apartment_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Apartment not found")
    fav = _find(db, user.id, payload.apartment_id)
    if fav is None:
        fav = models.Favorite(user_id=user.id, apartment_id=payload.apartment_id, is_active=True)
    elif fav.is_active:
        return fav
    else:
        fav.is_active = True
    db.add(fav)
    db.commit()
    db.refresh(fav)
    return fav


@router.get("/favorites/{apartment_id}", response_model=schemas.FavoriteStatus)
def favorite_status(
    apartment_id: int,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_current_user_optional),
) -> schemas.FavoriteStatus:
    # Anonymous callers simply have no favorites
    if user is None:
        return schemas.FavoriteStatus(is_favorite=False)
    fav = _find(db, user.id, apartment_id)
    return schemas.FavoriteStatus(is_favorite=bool(fav and fav.is_active))


@router.delete("/favorites/{apartment_id}", response_model=schemas.FavoriteStatus)
def remove_favorite(
    apartment_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.FavoriteStatus:
    fav = _find(db, user.id, apartment_id)
    if fav is None or not fav.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not in favorites")
    fav.is_active = False
    db.add(fav)
    db.commit()
    return schemas.FavoriteStatus(is_favorite=False)
