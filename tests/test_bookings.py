# Booking API test suite: admission rules, pricing totals, status changes, the expiry sweeper,
# and serialization of concurrent requests for the same apartment.
from __future__ import annotations

import multiprocessing
import threading

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError, OperationalError

from nestrent import booking_service, locks, models
from nestrent.config import MAX_STAY_NIGHTS
from nestrent.db import SessionLocal
from nestrent.errors import BookingConflictError, BookingValidationError, NotFoundError, PersistenceError
from nestrent.sweepers import sweep_bookings

from helpers import auth_headers, book, create_apartment, day, iso, make_admin, published_apartment, signup


@pytest.fixture()
def world(client: TestClient) -> dict:
    """A host with one published listing (base price 1000), a tenant, and an admin."""
    admin_token = make_admin(client)
    host_token, host = signup(client, "host@example.com", "Host")
    tenant_token, tenant = signup(client, "guest@example.com", "Guest")
    apt = published_apartment(client, host_token, admin_token, price=1000)
    return {
        "admin": admin_token,
        "host": host_token,
        "host_user": host,
        "tenant": tenant_token,
        "tenant_user": tenant,
        "apt": apt,
    }


def test_create_booking_pending_with_total(client: TestClient, world: dict):
    r = book(client, world["tenant"], world["apt"]["id"], iso(10), iso(13), comment="Late arrival")
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["status"] == "PENDING"
    assert data["start_date"] == iso(10)
    assert data["end_date"] == iso(13)
    assert data["total_price"] == 3000
    assert data["tenant_id"] == world["tenant_user"]["id"]
    assert data["comment"] == "Late arrival"


def test_touching_ranges_are_allowed(client: TestClient, world: dict):
    assert book(client, world["tenant"], world["apt"]["id"], iso(10), iso(12)).status_code == 201
    # Check-in on the previous checkout day
    assert book(client, world["tenant"], world["apt"]["id"], iso(12), iso(14)).status_code == 201
    # Checkout on the first booking's check-in day
    assert book(client, world["tenant"], world["apt"]["id"], iso(8), iso(10)).status_code == 201


@pytest.mark.parametrize("start,end", [(10, 12), (9, 11), (11, 13), (8, 14)])
def test_overlapping_request_conflicts(client: TestClient, world: dict, start: int, end: int):
    assert book(client, world["tenant"], world["apt"]["id"], iso(10), iso(12)).status_code == 201
    other_token, _ = signup(client, "other@example.com")
    r = book(client, other_token, world["apt"]["id"], iso(start), iso(end))
    assert r.status_code == 409, r.text
    assert r.json()["detail"] == "Selected dates are unavailable"


def test_pricing_override_applies_to_total(client: TestClient, world: dict):
    apt_id = world["apt"]["id"]
    r = client.put(
        f"/api/v1/apartments/{apt_id}/pricing",
        headers=auth_headers(world["host"]),
        json={"date": iso(1), "price": 1500},
    )
    assert r.status_code == 200, r.text
    r = book(client, world["tenant"], apt_id, iso(0), iso(2))
    assert r.status_code == 201, r.text
    assert r.json()["total_price"] == 2500


def test_blocked_date_inside_stay_conflicts(client: TestClient, world: dict):
    apt_id = world["apt"]["id"]
    r = client.put(
        f"/api/v1/apartments/{apt_id}/pricing",
        headers=auth_headers(world["host"]),
        json={"date": iso(2), "is_blocked": True},
    )
    assert r.status_code == 200, r.text

    r = book(client, world["tenant"], apt_id, iso(0), iso(3))
    assert r.status_code == 409
    assert r.json()["detail"] == f"Date {iso(2)} is unavailable"

    # Blocked date as checkout day is fine
    assert book(client, world["tenant"], apt_id, iso(0), iso(2)).status_code == 201


def test_min_stay_enforced(client: TestClient, world: dict):
    apt = published_apartment(client, world["host"], world["admin"], min_stay=3)
    r = book(client, world["tenant"], apt["id"], iso(0), iso(2))
    assert r.status_code == 400
    assert r.json()["detail"] == "Minimum stay is 3 nights"
    assert book(client, world["tenant"], apt["id"], iso(0), iso(3)).status_code == 201


@pytest.mark.parametrize("start,end", [(5, 5), (6, 5)])
def test_empty_or_inverted_range_rejected(client: TestClient, world: dict, start: int, end: int):
    r = book(client, world["tenant"], world["apt"]["id"], iso(start), iso(end))
    assert r.status_code == 400


def test_malformed_date_rejected(client: TestClient, world: dict):
    r = book(client, world["tenant"], world["apt"]["id"], "not-a-date", iso(3))
    assert r.status_code == 422


def test_past_check_in_rejected(client: TestClient, world: dict):
    r = book(client, world["tenant"], world["apt"]["id"], "2000-01-01", "2000-01-03")
    assert r.status_code == 400
    assert "past" in r.json()["detail"]


def test_unknown_or_unpublished_apartment_not_found(client: TestClient, world: dict):
    assert book(client, world["tenant"], 9999, iso(0), iso(2)).status_code == 404
    pending = create_apartment(client, world["host"], title="Not yet approved")
    assert book(client, world["tenant"], pending["id"], iso(0), iso(2)).status_code == 404


def test_host_cannot_book_own_apartment(client: TestClient, world: dict):
    r = book(client, world["host"], world["apt"]["id"], iso(0), iso(2))
    assert r.status_code == 400


def test_booking_requires_auth(client: TestClient, world: dict):
    r = client.post(
        "/api/v1/bookings",
        json={"apartment_id": world["apt"]["id"], "check_in": iso(0), "check_out": iso(2)},
    )
    assert r.status_code == 401


def test_timestamps_are_reduced_to_utc_day(client: TestClient, world: dict):
    r = book(client, world["tenant"], world["apt"]["id"], f"{iso(0)}T22:00:00-05:00", f"{iso(3)}T01:00:00Z")
    assert r.status_code == 201, r.text
    # 22:00 at UTC-05:00 is the next UTC day
    assert r.json()["start_date"] == iso(1)
    assert r.json()["end_date"] == iso(3)


def test_confirm_and_cancel_flow(client: TestClient, world: dict):
    apt_id = world["apt"]["id"]
    booking = book(client, world["tenant"], apt_id, iso(0), iso(2)).json()

    # Only the host may confirm
    r = client.post(f"/api/v1/bookings/{booking['id']}/confirm", headers=auth_headers(world["tenant"]))
    assert r.status_code == 403
    r = client.post(f"/api/v1/bookings/{booking['id']}/confirm", headers=auth_headers(world["host"]))
    assert r.status_code == 200
    assert r.json()["status"] == "CONFIRMED"

    # Confirming twice is invalid
    r = client.post(f"/api/v1/bookings/{booking['id']}/confirm", headers=auth_headers(world["host"]))
    assert r.status_code == 400

    r = client.delete(f"/api/v1/bookings/{booking['id']}", headers=auth_headers(world["tenant"]))
    assert r.status_code == 200
    assert r.json()["status"] == "CANCELLED"
    assert r.json()["cancel_reason"] == "cancelled_by_tenant"

    # Idempotent
    r = client.delete(f"/api/v1/bookings/{booking['id']}", headers=auth_headers(world["tenant"]))
    assert r.status_code == 200

    # Dates are free again
    other_token, _ = signup(client, "other@example.com")
    assert book(client, other_token, apt_id, iso(0), iso(2)).status_code == 201


def test_stranger_cannot_cancel(client: TestClient, world: dict):
    booking = book(client, world["tenant"], world["apt"]["id"], iso(0), iso(2)).json()
    stranger_token, _ = signup(client, "stranger@example.com")
    r = client.delete(f"/api/v1/bookings/{booking['id']}", headers=auth_headers(stranger_token))
    assert r.status_code == 403
    r = client.delete("/api/v1/bookings/9999", headers=auth_headers(stranger_token))
    assert r.status_code == 404


def test_host_cancel_records_reason(client: TestClient, world: dict):
    booking = book(client, world["tenant"], world["apt"]["id"], iso(0), iso(2)).json()
    r = client.delete(
        f"/api/v1/bookings/{booking['id']}",
        headers=auth_headers(world["host"]),
        params={"reason": "maintenance"},
    )
    assert r.status_code == 200
    assert r.json()["cancel_reason"] == "maintenance"


def test_list_bookings_as_tenant_and_host(client: TestClient, world: dict):
    book(client, world["tenant"], world["apt"]["id"], iso(0), iso(2))
    book(client, world["tenant"], world["apt"]["id"], iso(5), iso(6))

    r = client.get("/api/v1/bookings/me", headers=auth_headers(world["tenant"]))
    assert r.status_code == 200
    # Latest stay first
    assert [b["start_date"] for b in r.json()] == [iso(5), iso(0)]

    assert client.get("/api/v1/bookings/me", headers=auth_headers(world["host"])).json() == []
    r = client.get("/api/v1/bookings/me", headers=auth_headers(world["host"]), params={"as_host": True})
    assert len(r.json()) == 2


def test_sweeper_completes_and_expires(client: TestClient, world: dict):
    apt_id = world["apt"]["id"]
    confirmed = book(client, world["tenant"], apt_id, iso(0), iso(2)).json()
    client.post(f"/api/v1/bookings/{confirmed['id']}/confirm", headers=auth_headers(world["host"]))
    pending = book(client, world["tenant"], apt_id, iso(3), iso(5)).json()
    future = book(client, world["tenant"], apt_id, iso(20), iso(22)).json()

    db = SessionLocal()
    try:
        assert sweep_bookings(db, today=day(3)) == 2
        assert db.get(models.Booking, confirmed["id"]).status == "COMPLETED"
        expired = db.get(models.Booking, pending["id"])
        assert expired.status == "CANCELLED"
        assert expired.cancel_reason == "expired"
        assert db.get(models.Booking, future["id"]).status == "PENDING"
        # Second run finds nothing to do
        assert sweep_bookings(db, today=day(3)) == 0
    finally:
        db.close()

    r = client.delete(f"/api/v1/bookings/{confirmed['id']}", headers=auth_headers(world["tenant"]))
    assert r.status_code == 400


def test_service_rejects_with_domain_errors(client: TestClient, world: dict):
    db = SessionLocal()
    try:
        tenant_id = world["tenant_user"]["id"]
        with pytest.raises(NotFoundError):
            booking_service.create_booking(db, 9999, tenant_id, day(0), day(1))
        with pytest.raises(BookingValidationError):
            booking_service.create_booking(db, world["apt"]["id"], tenant_id, day(3), day(1))
        booking_service.create_booking(db, world["apt"]["id"], tenant_id, day(0), day(2))
        with pytest.raises(BookingConflictError):
            booking_service.create_booking(db, world["apt"]["id"], tenant_id, day(1), day(3))
    finally:
        db.close()


def test_concurrent_requests_admit_exactly_one(client: TestClient, world: dict):
    apt_id = world["apt"]["id"]
    tenant_id = world["tenant_user"]["id"]
    results: list = []
    barrier = threading.Barrier(8)

    def worker() -> None:
        db = SessionLocal()
        try:
            barrier.wait()
            booking_service.create_booking(db, apt_id, tenant_id, day(10), day(14))
            results.append("ok")
        except BookingConflictError:
            results.append("conflict")
        finally:
            db.close()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert results.count("conflict") == 7

    db = SessionLocal()
    try:
        active = booking_service.active_bookings(db, apt_id)
        assert len(active) == 1
    finally:
        db.close()


def test_separate_processes_cannot_double_book(client: TestClient, world: dict):
    from booking_worker import book_in_subprocess

    apt_id = world["apt"]["id"]
    tenant_id = world["tenant_user"]["id"]
    ctx = multiprocessing.get_context("spawn")
    barrier = ctx.Barrier(2)
    results = ctx.Queue()
    procs = [
        ctx.Process(target=book_in_subprocess, args=(apt_id, tenant_id, day(10), day(14), barrier, results, 0.5))
        for _ in range(2)
    ]
    for p in procs:
        p.start()
    outcomes = sorted(results.get(timeout=60) for _ in procs)
    for p in procs:
        p.join(timeout=60)

    assert outcomes == ["conflict", "ok"]
    db = SessionLocal()
    try:
        assert len(booking_service.active_bookings(db, apt_id)) == 1
    finally:
        db.close()


def _raising_commit(exc: Exception):
    def commit() -> None:
        raise exc

    return commit


@pytest.mark.parametrize(
    "exc,expected",
    [
        (
            IntegrityError(
                "INSERT INTO bookings",
                {},
                Exception('conflicting key value violates exclusion constraint "ex_bookings_no_overlap"'),
            ),
            BookingConflictError,
        ),
        (IntegrityError("INSERT INTO bookings", {}, Exception("FOREIGN KEY constraint failed")), PersistenceError),
        (OperationalError("INSERT INTO bookings", {}, Exception("disk I/O error")), PersistenceError),
    ],
)
def test_failed_commit_leaves_no_booking(client: TestClient, world: dict, monkeypatch, exc, expected):
    db = SessionLocal()
    try:
        monkeypatch.setattr(db, "commit", _raising_commit(exc))
        with pytest.raises(expected):
            booking_service.create_booking(db, world["apt"]["id"], world["tenant_user"]["id"], day(0), day(2))
    finally:
        db.close()

    db = SessionLocal()
    try:
        assert db.query(models.Booking).count() == 0
    finally:
        db.close()
    # The dates are still bookable
    assert book(client, world["tenant"], world["apt"]["id"], iso(0), iso(2)).status_code == 201


def test_stay_length_is_capped(client: TestClient, world: dict):
    r = book(client, world["tenant"], world["apt"]["id"], iso(0), iso(MAX_STAY_NIGHTS + 1))
    assert r.status_code == 400
    assert r.json()["detail"] == f"Stays are limited to {MAX_STAY_NIGHTS} nights"
    assert book(client, world["tenant"], world["apt"]["id"], iso(0), iso(MAX_STAY_NIGHTS)).status_code == 201


def test_unknown_apartments_leave_no_locks_behind(client: TestClient, world: dict):
    db = SessionLocal()
    try:
        for apartment_id in range(100000, 100050):
            with pytest.raises(NotFoundError):
                booking_service.create_booking(db, apartment_id, world["tenant_user"]["id"], day(0), day(1))
        booking_service.create_booking(db, world["apt"]["id"], world["tenant_user"]["id"], day(0), day(1))
    finally:
        db.close()
    assert locks._local_locks == {}


def test_unknown_booking_status_rejected_by_database(client: TestClient, world: dict):
    db = SessionLocal()
    try:
        db.add(
            models.Booking(
                apartment_id=world["apt"]["id"],
                tenant_id=world["tenant_user"]["id"],
                start_date=day(0),
                end_date=day(1),
                total_price=1000,
                status="ON_HOLD",
            )
        )
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
    finally:
        db.close()
