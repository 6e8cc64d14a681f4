"""
Tests for back-office authentication, booking actions, bulk operations,
delivery slot management and contract versions.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from rental_booking.domain.state_machine import BookingStatus
from rental_booking.models.admin import AuditLog
from rental_booking.models.booking import Booking
from rental_booking.models.delivery import DeliverySlot, SlotHold
from rental_booking.models.payment import PaymentRecord
from rental_booking.services.reservation_service import reserve_slot


async def seed_booking(db_session, status: BookingStatus, **fields) -> Booking:
    booking = Booking(status=status.value, current_step=6, **fields)
    db_session.add(booking)
    await db_session.commit()
    return booking


# ---------------------------------------------------------------- auth


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, admin_user):
    response = await client.post(
        "/api/v1/admin/auth/login",
        json={"email": "owner@example.com", "password": "adminpassword123"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, admin_user):
    response = await client.post(
        "/api/v1/admin/auth/login",
        json={"email": "owner@example.com", "password": "wrongpassword"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_deactivated_account(client: AsyncClient, db_session, staff_user):
    staff_user.is_active = False
    await db_session.commit()
    response = await client.post(
        "/api/v1/admin/auth/login",
        json={"email": "dispatch@example.com", "password": "adminpassword123"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_login_is_rate_limited(client: AsyncClient, admin_user):
    for _ in range(5):
        await client.post(
            "/api/v1/admin/auth/login",
            json={"email": "owner@example.com", "password": "wrongpassword"},
        )
    response = await client.post(
        "/api/v1/admin/auth/login",
        json={"email": "owner@example.com", "password": "adminpassword123"},
    )
    assert response.status_code == 429


@pytest.mark.asyncio
async def test_admin_routes_require_token(client: AsyncClient, db_session):
    booking = await seed_booking(db_session, BookingStatus.DRAFT)
    response = await client.get(f"/api/v1/admin/bookings/{booking.id}")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_booking_token_is_not_an_admin_token(client: AsyncClient, new_booking):
    booking = await new_booking()
    response = await client.get(
        f"/api/v1/admin/bookings/{booking.id}",
        headers={"Authorization": f"Bearer {booking.token}"},
    )
    assert response.status_code == 401


# ---------------------------------------------------------------- booking actions


@pytest.mark.asyncio
async def test_get_booking_detail(client: AsyncClient, db_session, staff_headers):
    booking = await seed_booking(db_session, BookingStatus.ACTIVE, provider_subscription_id="sub_1")
    response = await client.get(f"/api/v1/admin/bookings/{booking.id}", headers=staff_headers)
    assert response.status_code == 200
    assert response.json()["provider_subscription_id"] == "sub_1"


@pytest.mark.asyncio
async def test_mark_active_from_contract_signed(client: AsyncClient, db_session, staff_headers, staff_user):
    booking = await seed_booking(db_session, BookingStatus.CONTRACT_SIGNED)
    response = await client.patch(
        f"/api/v1/admin/bookings/{booking.id}", json={"action": "mark_active"}, headers=staff_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "ACTIVE"

    audit = (
        await db_session.execute(select(AuditLog).where(AuditLog.target_id == booking.id))
    ).scalar_one()
    assert audit.action == "booking.mark_active"
    assert audit.admin_user_id == staff_user.id
    assert audit.details == {"previous_status": "CONTRACT_SIGNED"}


@pytest.mark.asyncio
async def test_illegal_transition_is_conflict(client: AsyncClient, db_session, staff_headers):
    booking = await seed_booking(db_session, BookingStatus.DRAFT)
    response = await client.patch(
        f"/api/v1/admin/bookings/{booking.id}", json={"action": "mark_active"}, headers=staff_headers
    )
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_transition"


@pytest.mark.asyncio
async def test_cancel_releases_holds(client: AsyncClient, db_session, session_factory, staff_headers, delivery_slot):
    booking = await seed_booking(db_session, BookingStatus.QUALIFIED)
    hold = await reserve_slot(session_factory, booking.id, delivery_slot.id)

    response = await client.patch(
        f"/api/v1/admin/bookings/{booking.id}",
        json={"action": "cancel", "notes": "Customer moved"},
        headers=staff_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELED"

    async with session_factory() as session:
        assert (await session.get(SlotHold, hold.id)).released is True


@pytest.mark.asyncio
async def test_update_notes(client: AsyncClient, db_session, staff_headers):
    booking = await seed_booking(db_session, BookingStatus.SCHEDULED)
    response = await client.patch(
        f"/api/v1/admin/bookings/{booking.id}",
        json={"action": "update_notes", "notes": "Call before arriving"},
        headers=staff_headers,
    )
    assert response.status_code == 200
    assert response.json()["admin_notes"] == "Call before arriving"
    assert response.json()["status"] == "SCHEDULED"


@pytest.mark.asyncio
async def test_closed_booking_cannot_be_cancelled(client: AsyncClient, db_session, staff_headers):
    booking = await seed_booking(db_session, BookingStatus.CLOSED)
    response = await client.patch(
        f"/api/v1/admin/bookings/{booking.id}", json={"action": "cancel"}, headers=staff_headers
    )
    assert response.status_code == 409


# ---------------------------------------------------------------- bulk operations


@pytest.mark.asyncio
async def test_bulk_cancel(client: AsyncClient, db_session, staff_headers):
    draft = await seed_booking(db_session, BookingStatus.DRAFT)
    active = await seed_booking(db_session, BookingStatus.ACTIVE)
    closed = await seed_booking(db_session, BookingStatus.CLOSED)

    response = await client.post(
        "/api/v1/admin/bookings/bulk-cancel",
        json={"ids": [draft.id, active.id, closed.id, "missing", draft.id]},
        headers=staff_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert sorted(data["canceled"]) == sorted([draft.id, active.id])
    assert {"id": closed.id, "reason": "Cannot cancel from CLOSED"} in data["skipped"]
    assert {"id": "missing", "reason": "Not found"} in data["skipped"]


@pytest.mark.asyncio
async def test_bulk_delete_requires_admin_role(client: AsyncClient, db_session, staff_headers):
    booking = await seed_booking(db_session, BookingStatus.CANCELED)
    response = await client.post(
        "/api/v1/admin/bookings/bulk-delete", json={"ids": [booking.id]}, headers=staff_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_bulk_delete(client: AsyncClient, db_session, session_factory, admin_headers):
    canceled = await seed_booking(db_session, BookingStatus.CANCELED)
    live = await seed_booking(db_session, BookingStatus.SCHEDULED)
    db_session.add(
        PaymentRecord(
            booking_id=canceled.id, provider_invoice_id="in_old", amount_cents=100, currency="usd", status="paid",
        )
    )
    await db_session.commit()

    response = await client.post(
        "/api/v1/admin/bookings/bulk-delete",
        json={"ids": [canceled.id, live.id]},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["deleted"] == [canceled.id]
    assert data["skipped"] == [{"id": live.id, "reason": "Cannot delete: status is SCHEDULED"}]

    async with session_factory() as session:
        assert await session.get(Booking, canceled.id) is None
        assert await session.get(Booking, live.id) is not None
        records = (await session.execute(select(PaymentRecord))).scalars().all()
        assert records == []


@pytest.mark.asyncio
async def test_bulk_request_bounds(client: AsyncClient, admin_headers):
    response = await client.post("/api/v1/admin/bookings/bulk-cancel", json={"ids": []}, headers=admin_headers)
    assert response.status_code == 422


# ---------------------------------------------------------------- delivery slots


@pytest.mark.asyncio
async def test_create_and_list_slots(client: AsyncClient, staff_headers):
    start = (datetime.now(timezone.utc) + timedelta(days=5)).replace(hour=13, minute=0, second=0, microsecond=0)
    response = await client.post(
        "/api/v1/admin/delivery-slots",
        json={
            "date": start.date().isoformat(),
            "window_label": "1pm - 5pm",
            "window_start": start.isoformat(),
            "window_end": (start + timedelta(hours=4)).isoformat(),
            "capacity": 3,
        },
        headers=staff_headers,
    )
    assert response.status_code == 201
    slot_id = response.json()["id"]

    listing = await client.get("/api/v1/admin/delivery-slots", headers=staff_headers)
    assert listing.status_code == 200
    created = next(s for s in listing.json() if s["id"] == slot_id)
    assert created["remaining"] == 3
    assert created["booked"] == 0


@pytest.mark.asyncio
async def test_create_slot_rejects_inverted_window(client: AsyncClient, staff_headers):
    start = datetime.now(timezone.utc) + timedelta(days=5)
    response = await client.post(
        "/api/v1/admin/delivery-slots",
        json={
            "date": start.date().isoformat(),
            "window_label": "backwards",
            "window_start": start.isoformat(),
            "window_end": (start - timedelta(hours=1)).isoformat(),
            "capacity": 1,
        },
        headers=staff_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_slot_bumps_version(client: AsyncClient, session_factory, staff_headers, delivery_slot):
    response = await client.patch(
        f"/api/v1/admin/delivery-slots/{delivery_slot.id}",
        json={"capacity": 4, "is_active": False},
        headers=staff_headers,
    )
    assert response.status_code == 200
    assert response.json()["capacity"] == 4
    assert response.json()["is_active"] is False

    async with session_factory() as session:
        slot = await session.get(DeliverySlot, delivery_slot.id)
        assert slot.version == delivery_slot.version + 1


@pytest.mark.asyncio
async def test_update_slot_with_nothing_is_bad_request(client: AsyncClient, staff_headers, delivery_slot):
    response = await client.patch(
        f"/api/v1/admin/delivery-slots/{delivery_slot.id}", json={}, headers=staff_headers
    )
    assert response.status_code == 400


# ---------------------------------------------------------------- contract versions


@pytest.mark.asyncio
async def test_contract_versions(client: AsyncClient, admin_headers, staff_headers, contract_version):
    payload = {
        "version": "2025.1",
        "title": "Residential Rental Agreement",
        "effective_date": datetime.now(timezone.utc).isoformat(),
    }
    assert (
        await client.post("/api/v1/admin/contract-versions", json=payload, headers=staff_headers)
    ).status_code == 403

    created = await client.post("/api/v1/admin/contract-versions", json=payload, headers=admin_headers)
    assert created.status_code == 201

    listing = await client.get("/api/v1/admin/contract-versions", headers=staff_headers)
    assert [c["version"] for c in listing.json()] == ["2025.1", "2024.1"]
