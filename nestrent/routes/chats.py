# Host-tenant conversations: open a chat, read history, send messages, typing state.
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..booking_service import get_visible_apartment
from ..cache import TypingIndicator
from ..db import get_db
from .. import models, schemas
from ..rate_limit import rate_limit
from .auth import get_current_user

router = APIRouter()
logger = logging.getLogger("nestrent.chat")


def get_typing_indicator(request: Request) -> TypingIndicator:
    # Created once in main and stored on app.state
    return request.app.state.typing


def get_participant_chat(db: Session, chat_id: int, user: models.User) -> models.Chat:
    """Chat the caller takes part in; 404 otherwise so chat ids are not probeable."""
    chat = db.get(models.Chat, chat_id)
    if not chat or user.id not in (chat.tenant_id, chat.host_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return chat


@router.post("/chats", response_model=schemas.ChatRead, dependencies=[Depends(rate_limit("write"))])
def open_chat(
    payload: schemas.ChatCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Chat:
    """Return the caller's chat with the host of an apartment, creating it on first contact."""
    # Only listings visible to the public can be asked about
    apartment = get_visible_apartment(db, payload.apartment_id)
    if apartment.host_id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot start a chat with yourself")

    def _existing() -> Optional[models.Chat]:
        return (
            db.query(models.Chat)
            .filter(
                models.Chat.apartment_id == apartment.id,
                models.Chat.tenant_id == user.id,
                models.Chat.host_id == apartment.host_id,
            )
            .first()
        )

    chat = _existing()
    if chat:
        return chat
    chat = models.Chat(apartment_id=apartment.id, tenant_id=user.id, host_id=apartment.host_id)
    db.add(chat)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent first contact created the same triple; use that row
        db.rollback()
        chat = _existing()
        if chat is None:
            raise
        return chat
    db.refresh(chat)
    logger.info("chat.opened", extra={"chat_id": chat.id, "apartment_id": apartment.id, "user_id": user.id})
    return chat


@router.get("/chats", response_model=List[schemas.ChatSummary])
def list_chats(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)) -> List[schemas.ChatSummary]:
    """Chats of the caller, most recently active first, with last message and unread count."""
    chats = (
        db.query(models.Chat)
        .filter((models.Chat.tenant_id == user.id) | (models.Chat.host_id == user.id))
        .order_by(models.Chat.updated_at.desc(), models.Chat.id.desc())
        .all()
    )
    if not chats:
        return []
    chat_ids = [c.id for c in chats]

    unread = dict(
        db.query(models.Message.chat_id, func.count(models.Message.id))
        .filter(
            models.Message.chat_id.in_(chat_ids),
            models.Message.is_read.is_(False),
            models.Message.sender_id != user.id,
        )
        .group_by(models.Message.chat_id)
        .all()
    )
    titles = dict(
        db.query(models.Apartment.id, models.Apartment.title)
        .filter(models.Apartment.id.in_({c.apartment_id for c in chats}))
        .all()
    )

    out: List[schemas.ChatSummary] = []
    for chat in chats:
        last = (
            db.query(models.Message)
            .filter(models.Message.chat_id == chat.id)
            .order_by(models.Message.created_at.desc(), models.Message.id.desc())
            .first()
        )
        out.append(
            schemas.ChatSummary(
                **schemas.ChatRead.model_validate(chat).model_dump(),
                apartment_title=titles.get(chat.apartment_id, ""),
                last_message=schemas.MessageRead.model_validate(last) if last else None,
                unread_count=unread.get(chat.id, 0),
            )
        )
    return out


@router.get("/chats/{chat_id}", response_model=schemas.ChatDetail)
def read_chat(chat_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)) -> schemas.ChatDetail:
    """
    Full history in chronological order.

    Opening a chat marks every message from the other participant as read.
    """
    chat = get_participant_chat(db, chat_id, user)
    messages = (
        db.query(models.Message)
        .filter(models.Message.chat_id == chat.id)
        .order_by(models.Message.created_at.asc(), models.Message.id.asc())
        .all()
    )
    detail = schemas.ChatDetail(
        **schemas.ChatRead.model_validate(chat).model_dump(),
        messages=[schemas.MessageRead.model_validate(m) for m in messages],
    )

    flipped = (
        db.query(models.Message)
        .filter(
            models.Message.chat_id == chat.id,
            models.Message.is_read.is_(False),
            models.Message.sender_id != user.id,
        )
        .update({models.Message.is_read: True}, synchronize_session=False)
    )
    db.commit()
    if flipped:
        logger.info("chat.read", extra={"chat_id": chat.id, "user_id": user.id, "marked": flipped})
    return detail


@router.get("/chats/{chat_id}/messages", response_model=List[schemas.MessageRead])
def list_messages(
    chat_id: int,
    limit: int = Query(50, ge=1, le=100),
    since_id: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Message]:
    """
    Incremental history for polling clients.

    Ascending by created_at, then id; since_id returns messages with id strictly greater.
    Does not change read state.
    """
    chat = get_participant_chat(db, chat_id, user)
    q = db.query(models.Message).filter(models.Message.chat_id == chat.id)
    if since_id is not None:
        q = q.filter(models.Message.id > since_id)
    items = q.order_by(models.Message.created_at.asc(), models.Message.id.asc()).limit(limit).all()

    logger.info(
        "messages.history",
        extra={"chat_id": chat.id, "since_id": since_id, "limit": limit, "count": len(items), "user_id": user.id},
    )
    return items


@router.post(
    "/chats/{chat_id}/messages",
    response_model=schemas.MessageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("message"))],
)
def send_message(
    chat_id: int,
    payload: schemas.MessageCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    typing: TypingIndicator = Depends(get_typing_indicator),
) -> models.Message:
    chat = get_participant_chat(db, chat_id, user)
    msg = models.Message(chat_id=chat.id, sender_id=user.id, content=payload.content)
    db.add(msg)
    # Touch the chat so it sorts first in both participants' lists
    chat.updated_at = func.now()
    db.add(chat)
    db.commit()
    db.refresh(msg)
    typing.set_typing(chat.id, user.id, False)
    logger.info("chat.message", extra={"chat_id": chat.id, "user_id": user.id, "message_id": msg.id})
    return msg


@router.post("/chats/{chat_id}/typing", response_model=schemas.TypingState)
def update_typing(
    chat_id: int,
    payload: schemas.TypingUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    typing: TypingIndicator = Depends(get_typing_indicator),
) -> schemas.TypingState:
    chat = get_participant_chat(db, chat_id, user)
    typing.set_typing(chat.id, user.id, payload.is_typing)
    return schemas.TypingState(is_typing=payload.is_typing, user_id=user.id if payload.is_typing else None)


@router.get("/chats/{chat_id}/typing", response_model=schemas.TypingState)
def get_typing(
    chat_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    typing: TypingIndicator = Depends(get_typing_indicator),
) -> schemas.TypingState:
    """Whether someone is typing; entries lapse after the configured expiry."""
    chat = get_participant_chat(db, chat_id, user)
    typist = typing.get_typing(chat.id)
    return schemas.TypingState(is_typing=typist is not None, user_id=typist)
