# Moderation endpoints for listings and reviews (admin role only).
from datetime import datetime, timezone
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from .auth import require_admin

router = APIRouter()
logger = logging.getLogger("nestrent.moderation")


@router.get("/admin/apartments", response_model=List[schemas.ApartmentRead])
def moderation_queue(
    status_filter: str = Query("PENDING", alias="status", pattern="^(ALL|PENDING|APPROVED|REJECTED)$"),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> List[models.Apartment]:
    q = db.query(models.Apartment)
    if status_filter != "ALL":
        q = q.filter(models.Apartment.status == status_filter)
    return q.order_by(models.Apartment.created_at.desc(), models.Apartment.id.desc()).all()


@router.post("/admin/apartments/{apartment_id}/moderate", response_model=schemas.ApartmentRead)
def moderate_apartment(
    apartment_id: int,
    payload: schemas.ModerationAction,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> models.Apartment:
    """
    approve: APPROVED + published (published_at stamped)
    reject:  REJECTED + unpublished, with the reason shown to the host
    """
    obj = db.get(models.Apartment, apartment_id)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Apartment not found")

    if payload.action == "approve":
        obj.status = "APPROVED"
        obj.is_published = True
        obj.rejection_reason = None
        obj.published_at = datetime.now(timezone.utc)
    else:
        if not payload.reason:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A rejection reason is required")
        obj.status = "REJECTED"
        obj.is_published = False
        obj.rejection_reason = payload.reason
    db.add(obj)
    db.commit()
    db.refresh(obj)
    logger.info("apartment.moderated", extra={"apartment_id": obj.id, "action": payload.action, "admin_id": admin.id})
    return obj


@router.get("/admin/reviews", response_model=List[schemas.ReviewRead])
def list_reviews(
    status_filter: Optional[str] = Query("ALL", alias="status", pattern="^(ALL|PENDING|APPROVED|REJECTED)$"),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> List[models.Review]:
    q = db.query(models.Review)
    if status_filter and status_filter != "ALL":
        q = q.filter(models.Review.status == status_filter)
    return q.order_by(models.Review.created_at.desc(), models.Review.id.desc()).all()


@router.patch("/admin/reviews/{review_id}", response_model=schemas.ReviewRead)
def moderate_review(
    review_id: int,
    payload: schemas.ReviewModerate,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> models.Review:
    """PENDING -> APPROVED | REJECTED. Decisions are final."""
    review = db.get(models.Review, review_id)
    if not review:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Review not found")
    if review.status != "PENDING":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Review has already been moderated")
    review.status = payload.status
    db.add(review)
    db.commit()
    db.refresh(review)
    logger.info("review.moderated", extra={"review_id": review.id, "status": review.status, "admin_id": admin.id})
    return review
