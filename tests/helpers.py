# Shared helpers for API tests: accounts, listings, and future booking dates.
from __future__ import annotations

from datetime import date, timedelta
from typing import Tuple

from fastapi.testclient import TestClient

from nestrent import models
from nestrent.db import SessionLocal
from nestrent.routes.auth import hash_password

PASSWORD = "changeme123"

# January 1st of next year: always in the future, so past-date checks never trip
BASE_DAY = date(date.today().year + 1, 1, 1)


def day(offset: int) -> date:
    return BASE_DAY + timedelta(days=offset)


def iso(offset: int) -> str:
    return day(offset).isoformat()


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# Create a user and return (access_token, user JSON)
def signup(client: TestClient, email: str, name: str = "Test User") -> Tuple[str, dict]:
    r = client.post("/auth/signup", json={"email": email, "password": PASSWORD, "name": name})
    assert r.status_code == 201, r.text
    data = r.json()
    return data["access_token"], data["user"]


def login(client: TestClient, email: str) -> Tuple[str, dict]:
    r = client.post("/auth/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.text
    data = r.json()
    return data["access_token"], data["user"]


# Admins cannot self-register; insert one directly and log in
def make_admin(client: TestClient, email: str = "admin@example.com") -> str:
    db = SessionLocal()
    try:
        db.add(models.User(email=email, name="Admin", password_hash=hash_password(PASSWORD), role="admin"))
        db.commit()
    finally:
        db.close()
    token, _ = login(client, email)
    return token


def create_apartment(client: TestClient, token: str, **overrides) -> dict:
    payload = {
        "title": "Sunny flat",
        "description": "Close to the river",
        "price": 1000,
        "type": "apartment",
        "district": "Central",
        "address": "1 Main St",
        "rooms": 2,
        "area": 50,
        "amenities": ["wifi", "kitchen"],
        "min_stay": 1,
    }
    payload.update(overrides)
    r = client.post("/api/v1/apartments", headers=auth_headers(token), json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def approve(client: TestClient, admin_token: str, apartment_id: int) -> dict:
    r = client.post(
        f"/api/v1/admin/apartments/{apartment_id}/moderate",
        headers=auth_headers(admin_token),
        json={"action": "approve"},
    )
    assert r.status_code == 200, r.text
    return r.json()


def published_apartment(client: TestClient, host_token: str, admin_token: str, **overrides) -> dict:
    apt = create_apartment(client, host_token, **overrides)
    return approve(client, admin_token, apt["id"])


def book(client: TestClient, token: str, apartment_id: int, check_in: str, check_out: str, **extra):
    return client.post(
        "/api/v1/bookings",
        headers=auth_headers(token),
        json={"apartment_id": apartment_id, "check_in": check_in, "check_out": check_out, **extra},
    )
