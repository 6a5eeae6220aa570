# Listing lifecycle (submit, moderate, edit) and relevance search.
from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from nestrent import models
from nestrent.db import SessionLocal
from nestrent.search import SearchCriteria, relevance_score, search

from helpers import approve, auth_headers, create_apartment, make_admin, published_apartment, signup


def test_new_listing_waits_for_moderation(client: TestClient):
    admin_token = make_admin(client)
    host_token, host = signup(client, "host@example.com")
    apt = create_apartment(client, host_token)
    assert apt["status"] == "PENDING"
    assert apt["is_published"] is False
    assert apt["host_id"] == host["id"]

    assert client.get("/api/v1/apartments").json() == []
    # Anonymous callers cannot see it; the host can
    assert client.get(f"/api/v1/apartments/{apt['id']}").status_code == 404
    assert client.get(f"/api/v1/apartments/{apt['id']}", headers=auth_headers(host_token)).status_code == 200

    r = client.get("/api/v1/admin/apartments", headers=auth_headers(admin_token))
    assert [a["id"] for a in r.json()] == [apt["id"]]

    approved = approve(client, admin_token, apt["id"])
    assert approved["status"] == "APPROVED"
    assert approved["is_published"] is True
    assert approved["published_at"] is not None
    assert [a["id"] for a in client.get("/api/v1/apartments").json()] == [apt["id"]]


def test_reject_requires_reason(client: TestClient):
    admin_token = make_admin(client)
    host_token, _ = signup(client, "host@example.com")
    apt = create_apartment(client, host_token)
    url = f"/api/v1/admin/apartments/{apt['id']}/moderate"

    r = client.post(url, headers=auth_headers(admin_token), json={"action": "reject"})
    assert r.status_code == 400
    r = client.post(url, headers=auth_headers(admin_token), json={"action": "reject", "reason": "Blurry photos"})
    assert r.status_code == 200
    assert r.json()["status"] == "REJECTED"
    assert r.json()["rejection_reason"] == "Blurry photos"


def test_moderation_is_admin_only(client: TestClient):
    host_token, _ = signup(client, "host@example.com")
    apt = create_apartment(client, host_token)
    r = client.post(
        f"/api/v1/admin/apartments/{apt['id']}/moderate",
        headers=auth_headers(host_token),
        json={"action": "approve"},
    )
    assert r.status_code == 403
    assert client.get("/api/v1/admin/apartments", headers=auth_headers(host_token)).status_code == 403


def test_edit_sends_listing_back_to_moderation(client: TestClient):
    admin_token = make_admin(client)
    host_token, _ = signup(client, "host@example.com")
    other_token, _ = signup(client, "other@example.com")
    apt = published_apartment(client, host_token, admin_token)

    r = client.patch(f"/api/v1/apartments/{apt['id']}", headers=auth_headers(other_token), json={"price": 1})
    assert r.status_code == 403

    r = client.patch(f"/api/v1/apartments/{apt['id']}", headers=auth_headers(host_token), json={"price": 1200})
    assert r.status_code == 200
    data = r.json()
    assert data["price"] == 1200
    assert data["status"] == "PENDING"
    assert data["is_published"] is False

    mine = client.get("/api/v1/apartments/my", headers=auth_headers(host_token)).json()
    assert [a["id"] for a in mine] == [apt["id"]]


def test_host_listing_page_shows_only_visible(client: TestClient):
    admin_token = make_admin(client)
    host_token, host = signup(client, "host@example.com")
    visible = published_apartment(client, host_token, admin_token)
    create_apartment(client, host_token, title="Draft")
    r = client.get(f"/api/v1/apartments/host/{host['id']}")
    assert [a["id"] for a in r.json()] == [visible["id"]]


def test_search_filters_and_orders(client: TestClient):
    admin_token = make_admin(client)
    host_token, _ = signup(client, "host@example.com")
    two_rooms = published_apartment(client, host_token, admin_token, title="Two rooms", rooms=2, price=1000)
    three_rooms = published_apartment(client, host_token, admin_token, title="Three rooms", rooms=3, price=2000)
    published_apartment(client, host_token, admin_token, title="House", type="house", floor=2, price=3000)

    r = client.get("/api/v1/apartments/search", params={"property_type": "apartment", "room_count": "2"})
    assert r.status_code == 200, r.text
    results = r.json()
    # Exact room match scores higher than a larger flat
    assert [a["id"] for a in results] == [two_rooms["id"], three_rooms["id"]]
    assert results[0]["relevance_score"] > results[1]["relevance_score"]

    r = client.get("/api/v1/apartments/search", params={"price_max": 1500})
    assert [a["id"] for a in r.json()] == [two_rooms["id"]]

    r = client.get("/api/v1/apartments/search", params=[("amenities", "wifi"), ("amenities", "pool")])
    assert r.json() == []

    r = client.get("/api/v1/apartments/search", params={"property_type": "castle"})
    assert r.status_code == 422


def apt(**kw):
    base = dict(
        type="apartment", rooms=2, floor=None, area=50, price=1000,
        district="Central", amenities=["wifi"], is_promoted=False,
    )
    base.update(kw)
    return SimpleNamespace(**base)


def test_relevance_score_weights():
    criteria = SearchCriteria(property_type="apartment", room_count="2", house_area=50, amenities=["wifi", "pool"])
    # type 4 + rooms 3 + area 2 + half the amenities
    assert relevance_score(apt(), criteria) == 9.5
    assert relevance_score(apt(type="house"), criteria) == 0.0

    house = SearchCriteria(property_type="house", house_floors=2)
    assert relevance_score(apt(type="house", floor=2), house) == 7.0
    assert relevance_score(apt(type="house", floor=3), house) == 5.0


def test_search_puts_promoted_first():
    plain = apt(rooms=2)
    promoted = apt(rooms=5, is_promoted=True)
    ordered = [a for a, _ in search([plain, promoted], SearchCriteria(room_count="2"))]
    assert ordered == [promoted, plain]


@pytest.mark.parametrize("field,value", [("type", "castle"), ("status", "ARCHIVED")])
def test_database_rejects_unknown_enumerated_values(client: TestClient, field: str, value: str):
    _, host = signup(client, "host@example.com", "Host")
    db = SessionLocal()
    try:
        apartment = models.Apartment(host_id=host["id"], title="Loft", price=1000)
        setattr(apartment, field, value)
        db.add(apartment)
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
    finally:
        db.close()
