"""
Tests for the booking wizard endpoints: creation, access tokens, step
ordering, validation, delivery scheduling and checkout.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from rental_booking.core.config import get_settings
from rental_booking.domain.state_machine import BookingStatus
from rental_booking.models.booking import Booking
from rental_booking.models.delivery import SlotHold
from rental_booking.services.booking_service import RELEASE_HOLD_JOB


@pytest.mark.asyncio
async def test_create_booking(client: AsyncClient):
    """New bookings start in DRAFT at step 1 with an access token cookie."""
    response = await client.post("/api/v1/bookings")
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "DRAFT"
    assert data["current_step"] == 1
    assert data["access_token"]
    assert "booking_token" in response.cookies


@pytest.mark.asyncio
async def test_get_booking_requires_token(client: AsyncClient, new_booking):
    booking = await new_booking()
    response = await client.get(f"/api/v1/bookings/{booking.id}")
    assert response.status_code == 401
    assert response.json()["code"] == "unauthorized"


@pytest.mark.asyncio
async def test_get_booking_with_token(client: AsyncClient, new_booking):
    booking = await new_booking()
    response = await client.get(f"/api/v1/bookings/{booking.id}", headers=booking.headers)
    assert response.status_code == 200
    assert response.json()["id"] == booking.id


@pytest.mark.asyncio
async def test_token_for_another_booking_is_forbidden(client: AsyncClient, new_booking):
    mine = await new_booking()
    theirs = await new_booking()
    response = await client.get(f"/api/v1/bookings/{theirs.id}", headers=mine.headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_garbage_token_is_unauthorized(client: AsyncClient, new_booking):
    booking = await new_booking()
    response = await client.get(
        f"/api/v1/bookings/{booking.id}", headers={"X-Booking-Token": "not-a-token"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_step1_qualifies_booking(new_booking, submit_step, payloads):
    booking = await new_booking()
    response = await submit_step(booking, 1, payloads()[1])
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "QUALIFIED"
    assert data["current_step"] == 2
    assert data["service_zip"] == "77005"


@pytest.mark.asyncio
async def test_step1_rejects_zip_outside_service_area(new_booking, submit_step):
    booking = await new_booking()
    response = await submit_step(booking, 1, {"serviceZip": "90210", "hasHookups": True})
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_failed"
    messages = [m for field_messages in body["errors"].values() for m in field_messages]
    assert "Sorry, we don't service this area yet" in messages


@pytest.mark.asyncio
async def test_step1_requires_hookups(new_booking, submit_step):
    booking = await new_booking()
    response = await submit_step(booking, 1, {"serviceZip": "77005", "hasHookups": False})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_step_ahead_of_status_is_conflict(new_booking, submit_step, payloads):
    """A DRAFT booking cannot jump to step 3."""
    booking = await new_booking()
    response = await submit_step(booking, 3, payloads()[3])
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_unknown_step_is_bad_request(new_booking, submit_step):
    booking = await new_booking()
    response = await submit_step(booking, 9, {})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_step8_has_no_payload_handler(new_booking, submit_step, advance_booking):
    booking = await new_booking()
    await advance_booking(booking, through=1)
    response = await submit_step(booking, 8, {})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_step2_prices_on_term_selection(new_booking, submit_step, advance_booking):
    booking = await new_booking()
    await advance_booking(booking, through=1)

    response = await submit_step(booking, 2, {"packageType": "WASHER_ONLY"})
    assert response.status_code == 200
    assert response.json()["monthly_price_cents"] is None

    response = await submit_step(booking, 2, {"termType": "TWELVE_MONTH"})
    data = response.json()
    assert data["monthly_price_cents"] == 3600
    assert data["setup_fee_cents"] == 0
    assert data["minimum_term_months"] == 12
    assert data["current_step"] == 3


@pytest.mark.asyncio
async def test_step2_term_before_package_is_bad_request(new_booking, submit_step, advance_booking):
    booking = await new_booking()
    await advance_booking(booking, through=1)
    response = await submit_step(booking, 2, {"termType": "SIX_MONTH"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_step2_changing_package_clears_price(new_booking, submit_step, advance_booking):
    booking = await new_booking()
    await advance_booking(booking, through=2)

    response = await submit_step(booking, 2, {"packageType": "DRYER_ONLY"})
    data = response.json()
    assert data["package_type"] == "DRYER_ONLY"
    assert data["term_type"] is None
    assert data["monthly_price_cents"] is None
    # Progress never moves backwards
    assert data["current_step"] == 3


@pytest.mark.asyncio
async def test_step3_creates_customer(new_booking, submit_step, advance_booking, payloads):
    booking = await new_booking()
    data = await advance_booking(booking, through=3)
    assert data["customer"]["email"] == "jane@example.com"
    assert data["state"] == "TX"
    assert data["current_step"] == 4

    # Resubmitting updates the same customer
    update = {**payloads()[3], "customerName": "Jane Q. Doe"}
    response = await submit_step(booking, 3, update)
    assert response.json()["customer"]["id"] == data["customer"]["id"]
    assert response.json()["customer"]["name"] == "Jane Q. Doe"


@pytest.mark.asyncio
async def test_step3_rejects_bad_phone(new_booking, submit_step, advance_booking, payloads):
    booking = await new_booking()
    await advance_booking(booking, through=2)
    response = await submit_step(booking, 3, {**payloads()[3], "customerPhone": "call me maybe!!"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_step5_schedules_and_holds_slot(
    new_booking, advance_booking, delivery_slot, task_queue, db_session
):
    booking = await new_booking()
    data = await advance_booking(booking, through=5, slot_id=delivery_slot.id)

    assert data["status"] == "SCHEDULED"
    assert data["current_step"] == 6
    assert data["delivery_slot_id"] == delivery_slot.id
    assert data["delivery_slot"]["window_label"] == "8am - 12pm"

    hold = (
        await db_session.execute(select(SlotHold).where(SlotHold.booking_id == booking.id))
    ).scalar_one()
    jobs = task_queue.find(RELEASE_HOLD_JOB)
    assert len(jobs) == 1
    assert jobs[0].job_id == f"release-{hold.id}"
    assert jobs[0].payload == {"hold_id": hold.id, "booking_id": booking.id, "slot_id": delivery_slot.id}
    assert jobs[0].defer_until is not None


@pytest.mark.asyncio
async def test_step5_full_slot_is_conflict(new_booking, advance_booking, submit_step, single_slot, payloads):
    first = await new_booking()
    await advance_booking(first, through=5, slot_id=single_slot.id)

    second = await new_booking()
    await advance_booking(second, through=4)
    response = await submit_step(second, 5, payloads(single_slot.id)[5])

    assert response.status_code == 409
    assert response.json()["code"] == "slot_full"
    assert response.json()["error"] == "This delivery window is full. Please pick another."


@pytest.mark.asyncio
async def test_step5_unknown_slot_is_not_found(new_booking, advance_booking, submit_step):
    booking = await new_booking()
    await advance_booking(booking, through=4)
    response = await submit_step(booking, 5, {"deliverySlotId": "00000000-0000-4000-8000-000000000000"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_step6_records_consent(new_booking, advance_booking, delivery_slot):
    booking = await new_booking()
    data = await advance_booking(booking, through=6, slot_id=delivery_slot.id)
    assert data["recurring_authorized_at"] is not None
    assert data["status"] == "SCHEDULED"
    assert data["current_step"] == 6


@pytest.mark.asyncio
async def test_step7_requires_paid_setup(new_booking, advance_booking, submit_step, delivery_slot, payloads):
    booking = await new_booking()
    await advance_booking(booking, through=6, slot_id=delivery_slot.id)
    response = await submit_step(booking, 7, payloads()[7])
    assert response.status_code == 409


async def set_status(db_session, booking_id: str, status: BookingStatus) -> None:
    booking = await db_session.get(Booking, booking_id)
    booking.status = status.value
    await db_session.commit()


@pytest.mark.asyncio
async def test_step7_without_contract_version_is_server_error(
    new_booking, advance_booking, submit_step, delivery_slot, payloads, db_session
):
    booking = await new_booking()
    await advance_booking(booking, through=6, slot_id=delivery_slot.id)
    await set_status(db_session, booking.id, BookingStatus.PAID_SETUP)

    response = await submit_step(booking, 7, payloads()[7])
    assert response.status_code == 500
    assert response.json()["error"] == "No contract version available"


@pytest.mark.asyncio
async def test_step7_signs_latest_contract(
    new_booking, advance_booking, submit_step, delivery_slot, payloads, db_session, contract_version
):
    booking = await new_booking()
    await advance_booking(booking, through=6, slot_id=delivery_slot.id)
    await set_status(db_session, booking.id, BookingStatus.PAID_SETUP)

    response = await submit_step(booking, 7, payloads()[7])
    assert response.status_code == 200
    assert response.json()["status"] == "CONTRACT_SIGNED"
    assert response.json()["current_step"] == 8


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [BookingStatus.CANCELED, BookingStatus.CLOSED])
async def test_steps_on_closed_out_booking_are_conflict(new_booking, submit_step, payloads, db_session, status):
    booking = await new_booking()
    await set_status(db_session, booking.id, status)

    response = await submit_step(booking, 1, payloads()[1])
    assert response.status_code == 409
    assert response.json()["error"] == "Booking is no longer active"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data",
    [{"packageType": "WASHER_DRYER", "termType": "TWELVE_MONTH"}, {}],
    ids=["both", "neither"],
)
async def test_step2_needs_exactly_one_choice(new_booking, submit_step, advance_booking, data):
    booking = await new_booking()
    await advance_booking(booking, through=1)
    response = await submit_step(booking, 2, data)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_current_step_never_moves_back(new_booking, advance_booking, submit_step, delivery_slot, payloads):
    booking = await new_booking()
    await advance_booking(booking, through=6, slot_id=delivery_slot.id)

    for step, data in [(1, payloads()[1]), (4, payloads()[4]), (3, payloads()[3])]:
        response = await submit_step(booking, step, data)
        assert response.status_code == 200
        assert response.json()["current_step"] == 6
        assert response.json()["status"] == "SCHEDULED"


@pytest.mark.asyncio
async def test_rate_limit_on_step_submission(new_booking, submit_step, payloads, monkeypatch):
    monkeypatch.setattr(get_settings(), "RATE_LIMIT_UPDATE_MAX", 3)
    booking = await new_booking()
    for _ in range(3):
        assert (await submit_step(booking, 1, payloads()[1])).status_code == 200

    response = await submit_step(booking, 1, payloads()[1])
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0

    # Other bookings keep their own budget
    other = await new_booking()
    assert (await submit_step(other, 1, payloads()[1])).status_code == 200


@pytest.mark.asyncio
async def test_rate_limit_on_booking_creation(client: AsyncClient):
    for _ in range(5):
        assert (await client.post("/api/v1/bookings")).status_code == 201

    response = await client.post("/api/v1/bookings")
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0
    assert response.json()["retry_after"] > 0


@pytest.mark.asyncio
async def test_checkout_before_scheduling_is_conflict(client: AsyncClient, new_booking, advance_booking):
    booking = await new_booking()
    await advance_booking(booking, through=4)
    response = await client.post(f"/api/v1/bookings/{booking.id}/checkout", headers=booking.headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_checkout_session(client: AsyncClient, new_booking, advance_booking, delivery_slot, payment_provider):
    booking = await new_booking()
    await advance_booking(booking, through=6, slot_id=delivery_slot.id)

    response = await client.post(f"/api/v1/bookings/{booking.id}/checkout", headers=booking.headers)
    assert response.status_code == 200
    assert response.json() == {"session_id": "cs_test_1", "url": "https://checkout.test/cs_test_1"}

    request = payment_provider.checkout_requests[0]
    assert request.booking_id == booking.id
    assert request.customer_email == "jane@example.com"
    monthly, setup = request.line_items
    assert monthly.recurring_monthly and monthly.amount_cents == 6500
    assert not setup.recurring_monthly and setup.amount_cents == 3900


@pytest.mark.asyncio
async def test_delivery_slot_listing(client: AsyncClient, delivery_slot, single_slot, inactive_slot):
    response = await client.get("/api/v1/delivery-slots")
    assert response.status_code == 200
    slots = response.json()
    assert [s["id"] for s in slots] == [delivery_slot.id, single_slot.id]
    assert slots[0]["remaining"] == 2
