# Minimal account endpoints and the auth dependencies other routers use.
# Tokens are HS256 JWTs carrying the user id; any user may host and rent, admins moderate.
from __future__ import annotations

import time
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Header, status
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import JWT_SECRET, JWT_TTL_SECONDS
from ..db import get_db
from ..rate_limit import rate_limit
from .. import models, schemas

router = APIRouter()

JWT_ALG: str = "HS256"
# bcrypt_sha256 lifts bcrypt's 72-byte input limit
pwd_context = CryptContext(schemes=["bcrypt_sha256"], deprecated="auto")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


# ----------------
# Passwords and tokens
# ----------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(*, user: models.User) -> str:
    issued = int(time.time())
    claims = {"sub": str(user.id), "role": user.role, "iat": issued, "exp": issued + JWT_TTL_SECONDS}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("Invalid token") from exc


def _token_response(user: models.User) -> schemas.TokenResponse:
    return schemas.TokenResponse(access_token=create_access_token(user=user), user=schemas.UserRead.model_validate(user))


# ----------------
# Dependencies
# ----------------
def bearer_token_from_auth_header(authorization: Optional[str]) -> str:
    if not authorization:
        raise _unauthorized("Authorization header missing")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Invalid Authorization header")
    return token


def _user_from_token(db: Session, token: str) -> models.User:
    subject = decode_token(token).get("sub")
    if not subject or not str(subject).isdigit():
        raise _unauthorized("Invalid token payload")
    user = db.get(models.User, int(subject))
    if user is None:
        raise _unauthorized("User not found")
    return user


def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> models.User:
    return _user_from_token(db, bearer_token_from_auth_header(authorization))


def get_current_user_optional(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Optional[models.User]:
    """Caller if a valid bearer token is present; anonymous (None) for missing or bad tokens."""
    if not authorization:
        return None
    try:
        return _user_from_token(db, bearer_token_from_auth_header(authorization))
    except HTTPException:
        return None


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


# ----------------
# Routes
# ----------------
@router.post(
    "/auth/signup",
    response_model=schemas.TokenResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("signup"))],
)
def signup(payload: schemas.UserCreate, db: Session = Depends(get_db)) -> schemas.TokenResponse:
    if db.query(models.User.id).filter(models.User.email == payload.email).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    # Self-registration never grants admin
    user = models.User(
        email=payload.email,
        name=payload.name,
        phone=payload.phone,
        password_hash=hash_password(payload.password),
        role="user",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return _token_response(user)


@router.post("/auth/login", response_model=schemas.TokenResponse, dependencies=[Depends(rate_limit("login"))])
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)) -> schemas.TokenResponse:
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if user is None or not verify_password(payload.password, user.password_hash):
        raise _unauthorized("Invalid credentials")
    return _token_response(user)


@router.get("/auth/me", response_model=schemas.UserRead)
def me(user: models.User = Depends(get_current_user)) -> models.User:
    return user
