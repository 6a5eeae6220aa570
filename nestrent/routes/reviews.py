# Host reviews: submitted by users, visible once an admin approves them.
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..rate_limit import rate_limit
from .auth import get_current_user

router = APIRouter()
logger = logging.getLogger("nestrent.reviews")


def _existing_review(db: Session, author_id: int, host_id: int, chat_id: Optional[int]):
    q = db.query(models.Review).filter(models.Review.author_id == author_id, models.Review.host_id == host_id)
    if chat_id is not None:
        q = q.filter(models.Review.chat_id == chat_id)
    return q.first()


@router.post(
    "/reviews",
    response_model=schemas.ReviewRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_review(
    payload: schemas.ReviewCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Review:
    """
    Leave a review for a host. Starts PENDING until moderated.

    When chat_id is given, that chat must be between the author and the host.
    One review per author, host, and chat.
    """
    if payload.host_id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot review yourself")
    if not db.get(models.User, payload.host_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Host not found")
    if payload.apartment_id is not None and not db.get(models.Apartment, payload.apartment_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Apartment not found")

    if payload.chat_id is not None:
        chat = db.get(models.Chat, payload.chat_id)
        if not chat or {chat.tenant_id, chat.host_id} != {user.id, payload.host_id}:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A review requires a conversation with the host")

    if _existing_review(db, user.id, payload.host_id, payload.chat_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="You have already reviewed this host")

    review = models.Review(
        author_id=user.id,
        host_id=payload.host_id,
        apartment_id=payload.apartment_id,
        chat_id=payload.chat_id,
        rating=payload.rating,
        comment=payload.comment,
        status="PENDING",
    )
    db.add(review)
    db.commit()
    db.refresh(review)
    logger.info("review.submitted", extra={"review_id": review.id, "host_id": review.host_id, "author_id": user.id})
    return review


@router.get("/reviews/host/{host_id}", response_model=List[schemas.ReviewRead])
def host_reviews(host_id: int, db: Session = Depends(get_db)) -> List[models.Review]:
    """Approved reviews of a host, newest first."""
    return (
        db.query(models.Review)
        .filter(models.Review.host_id == host_id, models.Review.status == "APPROVED")
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
        .all()
    )


@router.get("/reviews/check", response_model=schemas.ReviewCheck)
def check_review(
    host_id: int = Query(..., ge=1),
    chat_id: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.ReviewCheck:
    return schemas.ReviewCheck(has_reviewed=_existing_review(db, user.id, host_id, chat_id) is not None)
