"""
Booking wizard orchestration.

Each call to `apply_step` validates and applies exactly one wizard step:

  1. booking must exist and not be CANCELED / CLOSED
  2. the step must have a rule and the booking must be at least the rule's
     required status (state_machine.STEP_RULES)
  3. the payload must pass the step schema (schemas/steps.py)
  4. the step handler mutates the booking; status only moves through
     `can_transition`, and `current_step` only moves up

Re-submitting a step with the same data is safe: status changes are gated
by the transition table and step numbers are max()-ed.

Step 5 is the one step that leaves the request transaction: the slot hold is
taken by the reservation engine in its own serializable transaction, and the
matching expiry job is scheduled before the booking is linked to the slot.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_booking.core.errors import (
    AppError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    ServerError,
    ValidationFailedError,
)
from rental_booking.core.logging import get_logger
from rental_booking.core.metrics import record_step
from rental_booking.db.base import as_utc, utcnow
from rental_booking.domain.pricing import get_pricing
from rental_booking.domain.state_machine import (
    FINAL_STEP,
    STEP_RULES,
    BookingStatus,
    can_transition,
    is_at_least,
    is_terminal,
)
from rental_booking.models.admin import ContractVersion
from rental_booking.models.booking import Booking, Customer
from rental_booking.schemas.steps import STEP_SCHEMAS
from rental_booking.services.interfaces.task_queue import TaskQueue
from rental_booking.services.reservation_service import reserve_slot

logger = get_logger(__name__)

RELEASE_HOLD_JOB = "release_slot_hold_task"


@dataclass
class Requester:
    ip: str = "unknown"
    user_agent: str = "unknown"


@dataclass
class StepContext:
    session_factory: async_sessionmaker
    task_queue: TaskQueue
    requester: Requester


StepHandler = Callable[[AsyncSession, Booking, Any, StepContext], Awaitable[None]]


async def create_booking(db: AsyncSession) -> Booking:
    booking = Booking(status=BookingStatus.DRAFT.value, current_step=1)
    db.add(booking)
    await db.commit()
    logger.info("booking_created", booking_id=booking.id)
    return await get_booking(db, booking.id)


async def get_booking(db: AsyncSession, booking_id: str) -> Booking:
    """Load a booking with customer and slot, bypassing any stale identity-map copy."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def validate_step_payload(step: int, payload: dict[str, Any]) -> Optional[BaseModel]:
    schema = STEP_SCHEMAS.get(step)
    if schema is None:
        return None
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        errors: dict[str, list[str]] = {}
        for issue in e.errors():
            field = ".".join(str(part) for part in issue["loc"]) or "_root"
            message = issue["msg"]
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            errors.setdefault(field, []).append(message)
        raise ValidationFailedError(errors)


def _advance_status(booking: Booking, target: BookingStatus) -> None:
    if can_transition(booking.status, target):
        booking.status = target.value


def _advance_step(booking: Booking, step: int) -> None:
    booking.current_step = max(booking.current_step, step)


async def _apply_eligibility(db, booking, data, ctx) -> None:
    booking.service_zip = data.service_zip
    booking.has_hookups = data.has_hookups
    _advance_status(booking, BookingStatus.QUALIFIED)
    _advance_step(booking, 2)


async def _apply_selection(db, booking, data, ctx) -> None:
    if data.package_type and data.term_type:
        raise BadRequestError("Provide either packageType or termType, not both")

    if data.package_type:
        # A new package invalidates any earlier priced snapshot
        booking.package_type = data.package_type.value
        booking.term_type = None
        booking.monthly_price_cents = None
        booking.setup_fee_cents = None
        booking.minimum_term_months = None
        _advance_step(booking, 2)
    elif data.term_type:
        if not booking.package_type:
            raise BadRequestError("Must select a package before choosing a term")
        quote = get_pricing(booking.package_type, data.term_type)
        booking.term_type = quote.term_type.value
        booking.monthly_price_cents = quote.monthly_price_cents
        booking.setup_fee_cents = quote.setup_fee_cents
        booking.minimum_term_months = quote.minimum_term_months
        _advance_step(booking, 3)
    else:
        raise BadRequestError("Must provide packageType or termType")


async def _apply_customer(db, booking, data, ctx) -> None:
    if booking.customer_id:
        customer = await db.get(Customer, booking.customer_id)
    else:
        customer = Customer()
        db.add(customer)
    customer.name = data.customer_name
    customer.email = str(data.customer_email)
    customer.phone = data.customer_phone
    await db.flush()

    booking.customer_id = customer.id
    booking.address_line1 = data.address_line1
    booking.address_line2 = data.address_line2 or ""
    booking.city = data.city
    booking.state = data.state.upper()
    booking.zip = data.zip
    booking.floor = data.floor
    booking.has_elevator = data.has_elevator
    booking.gate_code = data.gate_code or ""
    booking.entry_notes = data.entry_notes or ""
    booking.delivery_notes = data.delivery_notes or ""
    _advance_step(booking, 4)


async def _apply_hookups(db, booking, data, ctx) -> None:
    booking.dryer_plug_type = data.dryer_plug_type.value
    booking.has_hot_cold_valves = data.has_hot_cold_valves
    booking.has_drain_access = data.has_drain_access
    _advance_step(booking, 5)


async def _apply_delivery(db, booking, data, ctx) -> None:
    slot_id = str(data.delivery_slot_id)
    booking_id = booking.id

    # Nothing is pending here; end the read transaction before the reservation
    # engine takes its own lock.
    await db.commit()

    hold = await reserve_slot(ctx.session_factory, booking_id, slot_id)
    await ctx.task_queue.enqueue(
        RELEASE_HOLD_JOB,
        {"hold_id": hold.id, "booking_id": booking_id, "slot_id": slot_id},
        job_id=f"release-{hold.id}",
        defer_until=as_utc(hold.expires_at),
    )

    booking = await get_booking(db, booking_id)
    booking.delivery_slot_id = slot_id
    _advance_status(booking, BookingStatus.SCHEDULED)
    _advance_step(booking, 6)


async def _apply_payment_consent(db, booking, data, ctx) -> None:
    booking.recurring_authorized_at = utcnow()
    booking.pay_at_delivery = data.pay_at_delivery
    _advance_step(booking, 6)


async def _apply_contract(db, booking, data, ctx) -> None:
    result = await db.execute(
        select(ContractVersion).order_by(ContractVersion.effective_date.desc()).limit(1)
    )
    contract = result.scalar_one_or_none()
    if not contract:
        raise ServerError("No contract version available")

    booking.contract_version_id = contract.id
    booking.contract_signed_at = utcnow()
    booking.contract_signer_name = data.signer_name.strip()
    booking.contract_signer_ip = ctx.requester.ip
    booking.contract_signer_agent = ctx.requester.user_agent[:512]
    _advance_status(booking, BookingStatus.CONTRACT_SIGNED)
    booking.current_step = FINAL_STEP


_STEP_HANDLERS: dict[int, StepHandler] = {
    1: _apply_eligibility,
    2: _apply_selection,
    3: _apply_customer,
    4: _apply_hookups,
    5: _apply_delivery,
    6: _apply_payment_consent,
    7: _apply_contract,
}


async def apply_step(
    db: AsyncSession,
    booking_id: str,
    step: int,
    payload: dict[str, Any],
    ctx: StepContext,
) -> Booking:
    """Validate and apply one wizard step, returning the refreshed booking."""
    try:
        booking = await get_booking(db, booking_id)

        if is_terminal(booking.status):
            raise ConflictError("Booking is no longer active")

        rule = STEP_RULES.get(step)
        if rule is None:
            raise BadRequestError("Invalid step")

        if not is_at_least(booking.status, rule.required_status):
            raise ConflictError(
                f"Booking must be at least {rule.required_status.value} for step {step} "
                f"(current status: {booking.status})"
            )

        handler = _STEP_HANDLERS.get(step)
        if handler is None:
            raise BadRequestError("Invalid step")

        data = validate_step_payload(step, payload)
        await handler(db, booking, data, ctx)
        await db.commit()
    except AppError as e:
        await db.rollback()
        record_step(step, e.code)
        raise

    record_step(step, "ok")
    updated = await get_booking(db, booking_id)
    logger.info(
        "booking_step_saved",
        booking_id=booking_id,
        step=step,
        status=updated.status,
        current_step=updated.current_step,
    )
    return updated
