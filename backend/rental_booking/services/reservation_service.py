"""
Delivery slot reservation with strict capacity enforcement.

CONCURRENCY STRATEGY: Serializable transaction behind a per-slot write lock
===========================================================================

Problem:
  Two customers pick the last unit of capacity in the same delivery window.
  Both count "1 remaining", both insert a hold. Result: overbooking.

Solution:
  Each reservation runs in its own SERIALIZABLE transaction whose first
  statement is

    UPDATE delivery_slots SET version = version + 1 WHERE id = :slot_id

  That write takes the slot's row lock (PostgreSQL) or the database write
  lock (SQLite) before anything is counted, so concurrent reservations for
  one slot queue up behind each other and every count sees the holds the
  previous winner committed. Serializable isolation is the backstop: if two
  transactions still interleave, one of them fails with a serialization
  error (40001 / 40P01, or "database is locked" on SQLite) and is retried
  from the top, up to RESERVATION_MAX_RETRIES times.

  Counting rules:
  - bookings on the slot whose status is not CANCELED, CLOSED or DRAFT,
    excluding the reserving booking itself
  - unreleased, unexpired holds on the slot owned by other bookings

  A booking's own hold can briefly count alongside another booking's slot
  reference; this errs on the side of refusing, never overselling.

Availability listing uses the same counting queries, but outside the lock:
it is a display hint, and the reservation path re-checks.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_booking.core.config import get_settings
from rental_booking.core.errors import SlotFullError, SlotNotFoundError, TransientError
from rental_booking.core.logging import get_logger
from rental_booking.core.metrics import record_reservation, reservation_latency, reservation_retries
from rental_booking.db.base import utcnow
from rental_booking.domain.state_machine import NON_CLAIMING_STATUSES
from rental_booking.models.booking import Booking
from rental_booking.models.delivery import DeliverySlot, SlotHold

logger = get_logger(__name__)

_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_NON_CLAIMING = [s.value for s in NON_CLAIMING_STATUSES]


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig or exc).lower()


def _booked_count_query(slot_id: str, exclude_booking_id: Optional[str] = None):
    query = select(func.count(Booking.id)).where(
        Booking.delivery_slot_id == slot_id,
        Booking.status.not_in(_NON_CLAIMING),
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    return query


def _hold_count_query(slot_id: str, now: datetime, exclude_booking_id: Optional[str] = None):
    query = select(func.count(SlotHold.id)).where(
        SlotHold.slot_id == slot_id,
        SlotHold.released.is_(False),
        SlotHold.expires_at > now,
    )
    if exclude_booking_id is not None:
        query = query.where(SlotHold.booking_id != exclude_booking_id)
    return query


async def _reserve_once(session: AsyncSession, booking_id: str, slot_id: str) -> SlotHold:
    settings = get_settings()
    async with session.begin():
        await session.connection(execution_options={"isolation_level": "SERIALIZABLE"})

        # Lock first, count second.
        locked = await session.execute(
            update(DeliverySlot)
            .where(DeliverySlot.id == slot_id)
            .values(version=DeliverySlot.version + 1)
        )
        if locked.rowcount == 0:
            raise SlotNotFoundError(slot_id)

        slot = (
            await session.execute(select(DeliverySlot).where(DeliverySlot.id == slot_id))
        ).scalar_one()
        if not slot.is_active:
            raise SlotNotFoundError(slot_id)

        now = utcnow()
        booked = (await session.execute(_booked_count_query(slot_id, booking_id))).scalar_one()
        held = (await session.execute(_hold_count_query(slot_id, now, booking_id))).scalar_one()

        if booked + held >= slot.capacity:
            logger.info(
                "slot_full",
                booking_id=booking_id,
                slot_id=slot_id,
                booked=booked,
                held=held,
                capacity=slot.capacity,
            )
            raise SlotFullError(slot_id)

        # A booking revising its choice must not accumulate holds.
        await session.execute(
            update(SlotHold)
            .where(SlotHold.booking_id == booking_id, SlotHold.released.is_(False))
            .values(released=True)
        )

        hold = SlotHold(
            booking_id=booking_id,
            slot_id=slot_id,
            expires_at=now + timedelta(minutes=settings.SLOT_HOLD_MINUTES),
            released=False,
        )
        session.add(hold)
        await session.flush()
    return hold


async def reserve_slot(
    session_factory: async_sessionmaker,
    booking_id: str,
    slot_id: str,
) -> SlotHold:
    """
    Claim one unit of `slot_id` for `booking_id` as a time-boxed hold.

    Raises SlotNotFoundError / SlotFullError as expected outcomes, and
    TransientError once serialization conflicts exhaust the retry budget.
    """
    settings = get_settings()
    max_attempts = settings.RESERVATION_MAX_RETRIES
    start = time.perf_counter()

    try:
        for attempt in range(1, max_attempts + 1):
            async with session_factory() as session:
                try:
                    hold = await _reserve_once(session, booking_id, slot_id)
                except SlotNotFoundError:
                    record_reservation("slot_not_found")
                    raise
                except SlotFullError:
                    record_reservation("slot_full")
                    raise
                except DBAPIError as e:
                    if not is_serialization_failure(e):
                        raise
                    reservation_retries.inc()
                    logger.info(
                        "reservation_retry",
                        booking_id=booking_id,
                        slot_id=slot_id,
                        attempt=attempt,
                        reason="serialization_failure",
                    )
                    await asyncio.sleep(0.01 * attempt)
                    continue

            record_reservation("reserved")
            logger.info(
                "slot_reserved",
                booking_id=booking_id,
                slot_id=slot_id,
                hold_id=hold.id,
                expires_at=hold.expires_at.isoformat(),
                attempt=attempt,
            )
            return hold
    finally:
        reservation_latency.observe(time.perf_counter() - start)

    record_reservation("exhausted")
    logger.warning("reservation_retries_exhausted", booking_id=booking_id, slot_id=slot_id)
    raise TransientError("Could not reserve the delivery window due to high demand. Please try again.")


async def release_holds_for_booking(db: AsyncSession, booking_id: str) -> int:
    """Release every open hold of a booking. Joins the caller's transaction."""
    result = await db.execute(
        update(SlotHold)
        .where(SlotHold.booking_id == booking_id, SlotHold.released.is_(False))
        .values(released=True)
    )
    return result.rowcount or 0


@dataclass
class SlotCapacity:
    slot: DeliverySlot
    booked: int
    held: int

    @property
    def remaining(self) -> int:
        return max(0, self.slot.capacity - self.booked - self.held)


async def slot_capacity(db: AsyncSession, slot: DeliverySlot, now: Optional[datetime] = None) -> SlotCapacity:
    now = now or utcnow()
    booked = (await db.execute(_booked_count_query(slot.id))).scalar_one()
    held = (await db.execute(_hold_count_query(slot.id, now))).scalar_one()
    return SlotCapacity(slot=slot, booked=booked, held=held)


async def list_available_slots(db: AsyncSession, include_full: bool = False) -> list[SlotCapacity]:
    """Active, future slots with their live counts, soonest first."""
    now = utcnow()
    result = await db.execute(
        select(DeliverySlot)
        .where(DeliverySlot.is_active.is_(True), DeliverySlot.window_start > now)
        .order_by(DeliverySlot.window_start)
    )
    capacities = [await slot_capacity(db, slot, now) for slot in result.scalars().all()]
    if include_full:
        return capacities
    return [c for c in capacities if c.remaining > 0]


async def list_all_slots(db: AsyncSession) -> list[SlotCapacity]:
    result = await db.execute(select(DeliverySlot).order_by(DeliverySlot.window_start))
    now = utcnow()
    return [await slot_capacity(db, slot, now) for slot in result.scalars().all()]
