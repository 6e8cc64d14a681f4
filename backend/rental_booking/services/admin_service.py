"""
Back-office operations on bookings, delivery slots and contract versions.

Every mutation writes an AuditLog row in the same transaction as the change.
Status changes are guarded by `assert_transition`; cancelling also releases
the booking's open slot holds so the capacity frees up immediately.
"""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.errors import BadRequestError, NotFoundError
from rental_booking.core.logging import get_logger
from rental_booking.domain.state_machine import (
    TERMINAL_STATUSES,
    BookingStatus,
    assert_transition,
    can_transition,
)
from rental_booking.models.admin import AdminUser, AuditLog, ContractVersion
from rental_booking.models.booking import Booking
from rental_booking.models.delivery import DeliverySlot, SlotHold
from rental_booking.models.payment import PaymentRecord
from rental_booking.schemas.admin import ContractVersionCreate
from rental_booking.schemas.slot import DeliverySlotCreate, DeliverySlotUpdate
from rental_booking.services.booking_service import get_booking
from rental_booking.services.reservation_service import release_holds_for_booking

logger = get_logger(__name__)

_ACTION_TARGETS = {
    "mark_active": BookingStatus.ACTIVE,
    "cancel": BookingStatus.CANCELED,
    "close": BookingStatus.CLOSED,
}


@dataclass
class AdminActor:
    user: AdminUser
    ip: str = "unknown"


def _audit(
    db: AsyncSession,
    actor: AdminActor,
    action: str,
    target_type: str,
    target_id: Optional[str],
    details: Optional[dict[str, Any]] = None,
) -> None:
    db.add(
        AuditLog(
            admin_user_id=actor.user.id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details,
            ip_address=actor.ip,
        )
    )


async def _lock_booking(db: AsyncSession, booking_id: str) -> Optional[Booking]:
    result = await db.execute(select(Booking).where(Booking.id == booking_id).with_for_update())
    return result.scalar_one_or_none()


async def _cancel(db: AsyncSession, booking: Booking) -> int:
    booking.status = BookingStatus.CANCELED.value
    return await release_holds_for_booking(db, booking.id)


async def apply_admin_action(
    db: AsyncSession,
    actor: AdminActor,
    booking_id: str,
    action: str,
    notes: Optional[str] = None,
) -> Booking:
    booking = await _lock_booking(db, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")

    previous = booking.status
    details: dict[str, Any] = {"previous_status": previous}

    if action == "update_notes":
        booking.admin_notes = notes or ""
        details = {}
    elif action in _ACTION_TARGETS:
        target = _ACTION_TARGETS[action]
        assert_transition(previous, target)
        if target == BookingStatus.CANCELED:
            details["holds_released"] = await _cancel(db, booking)
            if notes:
                details["reason"] = notes
        else:
            booking.status = target.value
    else:
        raise BadRequestError("Unknown action")

    _audit(db, actor, f"booking.{action}", "booking", booking_id, details or None)
    await db.commit()

    logger.info(
        "admin_booking_action",
        booking_id=booking_id,
        action=action,
        admin_id=actor.user.id,
        previous_status=previous,
    )
    return await get_booking(db, booking_id)


def _unique(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


async def bulk_cancel(db: AsyncSession, actor: AdminActor, ids: list[str]) -> dict[str, list]:
    canceled: list[str] = []
    skipped: list[dict[str, str]] = []

    for booking_id in _unique(ids):
        booking = await _lock_booking(db, booking_id)
        if not booking:
            skipped.append({"id": booking_id, "reason": "Not found"})
            continue
        if not can_transition(booking.status, BookingStatus.CANCELED):
            skipped.append({"id": booking_id, "reason": f"Cannot cancel from {booking.status}"})
            continue

        previous = booking.status
        try:
            async with db.begin_nested():
                released = await _cancel(db, booking)
                _audit(
                    db, actor, "booking.cancel", "booking", booking_id,
                    {"previous_status": previous, "holds_released": released, "bulk": True},
                )
        except SQLAlchemyError as e:
            logger.error("bulk_cancel_item_failed", booking_id=booking_id, error=str(e))
            await db.refresh(booking)
            skipped.append({"id": booking_id, "reason": "Transaction failed"})
            continue
        canceled.append(booking_id)

    await db.commit()
    logger.info("bulk_cancel_completed", admin_id=actor.user.id, canceled=len(canceled), skipped=len(skipped))
    return {"canceled": canceled, "skipped": skipped}


async def bulk_delete(db: AsyncSession, actor: AdminActor, ids: list[str]) -> dict[str, list]:
    """Purge CANCELED / CLOSED bookings with their holds and payment records."""
    deleted: list[str] = []
    skipped: list[dict[str, str]] = []

    for booking_id in _unique(ids):
        booking = await _lock_booking(db, booking_id)
        if not booking:
            skipped.append({"id": booking_id, "reason": "Not found"})
            continue
        if BookingStatus(booking.status) not in TERMINAL_STATUSES:
            skipped.append({"id": booking_id, "reason": f"Cannot delete: status is {booking.status}"})
            continue

        status, customer_id = booking.status, booking.customer_id
        try:
            async with db.begin_nested():
                await db.execute(delete(SlotHold).where(SlotHold.booking_id == booking_id))
                await db.execute(delete(PaymentRecord).where(PaymentRecord.booking_id == booking_id))
                await db.delete(booking)
                _audit(
                    db, actor, "booking.delete", "booking", booking_id,
                    {"status": status, "customer_id": customer_id, "bulk": True},
                )
        except SQLAlchemyError as e:
            logger.error("bulk_delete_item_failed", booking_id=booking_id, error=str(e))
            skipped.append({"id": booking_id, "reason": "Transaction failed"})
            continue
        deleted.append(booking_id)

    await db.commit()
    logger.info("bulk_delete_completed", admin_id=actor.user.id, deleted=len(deleted), skipped=len(skipped))
    return {"deleted": deleted, "skipped": skipped}


async def create_delivery_slot(db: AsyncSession, actor: AdminActor, data: DeliverySlotCreate) -> DeliverySlot:
    slot = DeliverySlot(**data.model_dump())
    db.add(slot)
    await db.flush()
    _audit(db, actor, "delivery_slot.create", "delivery_slot", slot.id,
           {"date": data.date.isoformat(), "capacity": data.capacity})
    await db.commit()
    logger.info("delivery_slot_created", slot_id=slot.id, capacity=slot.capacity)
    return slot


async def update_delivery_slot(
    db: AsyncSession, actor: AdminActor, slot_id: str, data: DeliverySlotUpdate
) -> DeliverySlot:
    """
    Change capacity or the active flag. Bumping `version` makes the write
    contend with in-flight reservations on the same slot.
    """
    slot = (
        await db.execute(select(DeliverySlot).where(DeliverySlot.id == slot_id).with_for_update())
    ).scalar_one_or_none()
    if not slot:
        raise NotFoundError("Delivery slot not found")

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise BadRequestError("Nothing to update")
    for name, value in changes.items():
        setattr(slot, name, value)
    slot.version = slot.version + 1

    _audit(db, actor, "delivery_slot.update", "delivery_slot", slot_id, changes)
    await db.commit()
    logger.info("delivery_slot_updated", slot_id=slot_id, **changes)
    return slot


async def create_contract_version(
    db: AsyncSession, actor: AdminActor, data: ContractVersionCreate
) -> ContractVersion:
    contract = ContractVersion(**data.model_dump())
    db.add(contract)
    await db.flush()
    _audit(db, actor, "contract_version.create", "contract_version", contract.id, {"version": data.version})
    await db.commit()
    logger.info("contract_version_created", contract_version_id=contract.id, version=data.version)
    return contract


async def list_contract_versions(db: AsyncSession) -> list[ContractVersion]:
    result = await db.execute(select(ContractVersion).order_by(ContractVersion.effective_date.desc()))
    return list(result.scalars().all())
