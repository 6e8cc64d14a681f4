"""
Customer notifications.

Sending is delegated to an external collaborator; this module only queues
the request and, in the worker, logs what would be sent.
"""

from enum import Enum

from sqlalchemy.ext.asyncio import async_sessionmaker

from rental_booking.core.logging import get_logger
from rental_booking.models.booking import Booking
from rental_booking.services.interfaces.task_queue import TaskQueue

logger = get_logger(__name__)

SEND_NOTIFICATION_JOB = "send_notification_task"


class NotificationType(str, Enum):
    BOOKING_CONFIRMATION = "booking_confirmation"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


async def enqueue_notification(task_queue: TaskQueue, notification_type: NotificationType, booking_id: str) -> None:
    """Fire-and-forget: a failed enqueue is logged, never raised."""
    try:
        await task_queue.enqueue(
            SEND_NOTIFICATION_JOB,
            {"notification_type": notification_type.value, "booking_id": booking_id},
        )
    except Exception as e:
        logger.error(
            "notification_enqueue_failed",
            notification_type=notification_type.value,
            booking_id=booking_id,
            error=str(e),
        )


async def send_notification(session_factory: async_sessionmaker, notification_type: str, booking_id: str) -> bool:
    async with session_factory() as session:
        booking = await session.get(Booking, booking_id)
        if booking is None or booking.customer is None:
            logger.warning("notification_no_recipient", notification_type=notification_type, booking_id=booking_id)
            return False
        logger.info(
            "notification_sent",
            notification_type=NotificationType(notification_type).value,
            booking_id=booking_id,
            email=booking.customer.email,
            phone=booking.customer.phone,
        )
        return True
