import json

from sqlalchemy import select

from tablebook.core.security import create_access_token
from tablebook.models.audit_log import AuditLog

TUESDAY = "2026-01-06"


def slots(client, venue, service):
    response = client.get(
        f"/api/public/venues/{venue.slug}/availability",
        params={"service_id": service.id, "party_size": 2, "date": TUESDAY},
    )
    return response.json()["slots_by_date"][TUESDAY]


def test_staff_token_required(client):
    assert client.get("/api/admin/locks").status_code == 401

    bad = client.get("/api/admin/locks", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401
    assert bad.json()["code"] == "unauthorized"

    guest = create_access_token("someone", "guest")
    forbidden = client.get("/api/admin/locks", headers={"Authorization": f"Bearer {guest}"})
    assert forbidden.status_code == 403


def test_admin_role_passes(client):
    token = create_access_token("boss", "admin")
    assert client.get("/api/admin/locks", headers={"Authorization": f"Bearer {token}"}).status_code == 200


def test_block_lifecycle_refreshes_availability(client, db, dinner, staff_headers):
    venue, service, _ = dinner
    assert slots(client, venue, service)[0] == "18:00"

    created = client.post(
        "/api/admin/blocks",
        json={
            "venue_id": venue.id,
            "block_date": TUESDAY,
            "start_time": "18:00",
            "end_time": "23:00",
            "reason": "Private hire",
        },
        headers=staff_headers,
    )
    assert created.status_code == 201
    assert slots(client, venue, service) == []

    listed = client.get("/api/admin/blocks", params={"venue_id": venue.id}, headers=staff_headers)
    assert [b["id"] for b in listed.json()] == [created.json()["id"]]

    deleted = client.delete(f"/api/admin/blocks/{created.json()['id']}", headers=staff_headers)
    assert deleted.status_code == 200
    assert slots(client, venue, service)[0] == "18:00"

    actions = db.execute(select(AuditLog.action_type).order_by(AuditLog.created_at)).scalars().all()
    assert actions == ["BLOCK_CREATE", "BLOCK_DELETE"]


def test_block_time_range_validated(client, dinner, staff_headers):
    venue, _, _ = dinner
    response = client.post(
        "/api/admin/blocks",
        json={"venue_id": venue.id, "block_date": TUESDAY, "start_time": "19:00", "end_time": "19:00"},
        headers=staff_headers,
    )
    assert response.status_code == 400


def test_force_release_lock(client, dinner, staff_headers):
    venue, service, _ = dinner
    token = client.post(
        "/api/public/locks",
        json={"venue_slug": venue.slug, "service_id": service.id, "date": TUESDAY, "time": "19:00", "party_size": 2},
    ).json()["lock_token"]

    active = client.get("/api/admin/locks", params={"venue_id": venue.id}, headers=staff_headers).json()
    assert len(active) == 1
    assert "lock_token" not in active[0]

    released = client.post("/api/admin/locks/release", json={"lock_token": token}, headers=staff_headers)
    assert released.json()["released"] is True
    assert client.get("/api/admin/locks", headers=staff_headers).json() == []

    reaped = client.post("/api/admin/locks/reap", headers=staff_headers)
    assert reaped.json()["expired"] == 0


def test_cancel_reservation(client, dinner, staff_headers):
    venue, service, _ = dinner
    booking = client.post(
        "/api/public/bookings",
        json={
            "venue_slug": venue.slug,
            "service_id": service.id,
            "date": TUESDAY,
            "time": "19:00",
            "party_size": 2,
            "guest_name": "Ada Guest",
            "email": "ada@example.com",
        },
    ).json()["booking"]
    assert "19:00" not in slots(client, venue, service)

    response = client.post(f"/api/admin/reservations/{booking['reference']}/cancel", headers=staff_headers)
    assert response.json()["status"] == "cancelled"
    assert "19:00" in slots(client, venue, service)

    missing = client.post("/api/admin/reservations/BK-2026-999999/cancel", headers=staff_headers)
    assert missing.status_code == 404

    expired = client.post("/api/admin/reservations/expire-pending", headers=staff_headers)
    assert expired.json()["expired"] == 0


def test_pos_webhook_and_review_queue(client, staff_headers):
    event = {
        "event_id": "evt-http-1",
        "type": "order.created",
        "location_id": "LOC-NOWHERE",
        "data": {"id": "O-9", "object": {"order_created": {"order_id": "O-9", "location_id": "LOC-NOWHERE"}}},
    }
    raw = json.dumps(event)

    first = client.post("/api/webhooks/pos", content=raw, headers={"Content-Type": "application/json"})
    again = client.post("/api/webhooks/pos", content=raw, headers={"Content-Type": "application/json"})
    assert first.status_code == 200
    assert first.json()["duplicate"] is False
    assert again.status_code == 200
    assert again.json()["duplicate"] is True

    drained = client.post("/api/admin/reconciliation/drain", headers=staff_headers)
    assert drained.json()["processed"] == 1

    reviews = client.get("/api/admin/reconciliation/reviews", headers=staff_headers).json()
    assert len(reviews) == 1
    assert reviews[0]["reason"] == "no_venue_mapping"

    resolved = client.post(
        f"/api/admin/reconciliation/reviews/{reviews[0]['id']}/resolve",
        json={"dismiss": True, "resolution": "Test order"},
        headers=staff_headers,
    )
    assert resolved.json()["status"] == "dismissed"
    assert client.get("/api/admin/reconciliation/reviews", headers=staff_headers).json() == []


def test_malformed_webhook_body(client):
    response = client.post("/api/webhooks/pos", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_input"
