"""
Slot hold expiry.

Runs when a hold's timer fires (or when the periodic sweep finds a hold
whose timer was lost). Both outcomes happen in one transaction with the hold
and booking rows locked:

- the booking reached payment: release the hold, keep the slot reference
- otherwise: release the hold and clear the slot reference, freeing capacity
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_booking.core.logging import get_logger
from rental_booking.core.metrics import hold_expiries
from rental_booking.db.base import utcnow
from rental_booking.domain.state_machine import PAID_STATUSES, BookingStatus
from rental_booking.models.booking import Booking
from rental_booking.models.delivery import SlotHold

logger = get_logger(__name__)

NOOP = "noop"
KEPT_SLOT = "kept_slot"
FREED_SLOT = "freed_slot"


async def _expire(session: AsyncSession, hold_id: str) -> str:
    hold = (
        await session.execute(select(SlotHold).where(SlotHold.id == hold_id).with_for_update())
    ).scalar_one_or_none()
    if hold is None or hold.released:
        return NOOP

    booking = (
        await session.execute(
            select(Booking).where(Booking.id == hold.booking_id).with_for_update()
        )
    ).scalar_one_or_none()

    hold.released = True
    if booking is None:
        return FREED_SLOT

    if BookingStatus(booking.status) in PAID_STATUSES:
        return KEPT_SLOT

    booking.delivery_slot_id = None
    return FREED_SLOT


async def expire_hold(session_factory: async_sessionmaker, hold_id: str) -> str:
    """Release hold `hold_id`; returns which branch was taken."""
    async with session_factory() as session:
        async with session.begin():
            outcome = await _expire(session, hold_id)

    hold_expiries.labels(outcome=outcome).inc()
    logger.info("slot_hold_expired", hold_id=hold_id, outcome=outcome)
    return outcome


async def find_lapsed_holds(session_factory: async_sessionmaker, limit: int = 500) -> list[str]:
    """Ids of unreleased holds already past their expiry."""
    async with session_factory() as session:
        result = await session.execute(
            select(SlotHold.id)
            .where(SlotHold.released.is_(False), SlotHold.expires_at <= utcnow())
            .order_by(SlotHold.expires_at)
            .limit(limit)
        )
        return list(result.scalars().all())
