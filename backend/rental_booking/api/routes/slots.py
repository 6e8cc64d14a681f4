"""
Public delivery slot availability.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.db.session import get_db
from rental_booking.schemas.slot import SlotAvailability
from rental_booking.services.reservation_service import SlotCapacity, list_available_slots

router = APIRouter(prefix="/delivery-slots", tags=["Delivery Slots"])


def to_availability(capacity: SlotCapacity) -> SlotAvailability:
    slot = capacity.slot
    return SlotAvailability(
        id=slot.id,
        date=slot.date,
        window_label=slot.window_label,
        window_start=slot.window_start,
        window_end=slot.window_end,
        capacity=slot.capacity,
        booked=capacity.booked,
        held=capacity.held,
        remaining=capacity.remaining,
    )


@router.get("", response_model=list[SlotAvailability])
async def list_delivery_slots(db: AsyncSession = Depends(get_db)):
    """
    Upcoming active slots that still have room.
    Counts are a snapshot; the reservation at step 5 re-checks under lock.
    """
    return [to_availability(c) for c in await list_available_slots(db)]
