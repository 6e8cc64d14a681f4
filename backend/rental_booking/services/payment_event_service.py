"""
Payment provider event processing.

Two stages, joined by the task queue:

record_event (webhook request, must be fast and must not lose events)
  Insert the event keyed by provider event id. A unique-constraint hit means
  a redelivery and is answered without enqueueing anything. New events are
  enqueued for processing with the event id as the job key.

process_event (worker, retried with backoff on failure)
  Load the event under a row lock; if it is already processed, stop. Apply
  the handler for its type and flip `processed` in the same transaction, so
  the business effect happens at most once however often the job runs. On
  failure the transaction is rolled back, the error is stored on the event
  in a separate transaction and the exception is re-raised for the queue's
  retry policy.

  Handlers never call the provider. Calls they need (invoice annotation) are
  collected and made after the transaction closes; such an event is only
  marked processed once those calls succeed, so a provider outage leaves it
  unprocessed for the retry. These calls are idempotent on the provider side.

Every status change goes through `can_transition`; an event that no longer
applies (out of order, or redelivered after a newer one) is a no-op.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_booking.core.config import get_settings
from rental_booking.core.logging import get_logger
from rental_booking.core.metrics import record_payment_event, webhook_receipts
from rental_booking.db.base import utcnow
from rental_booking.domain.state_machine import BookingStatus, can_transition
from rental_booking.models.booking import Booking
from rental_booking.models.payment import PaymentEvent, PaymentRecord
from rental_booking.services.interfaces.payment_provider import PaymentProvider, ProviderEvent
from rental_booking.services.interfaces.task_queue import TaskQueue
from rental_booking.services.notification_service import (
    NotificationType,
    enqueue_notification,
)

logger = get_logger(__name__)

PROCESS_EVENT_JOB = "process_payment_event_task"


class PaymentEventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    INVOICE_CREATED = "invoice.created"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"

    @classmethod
    def parse(cls, value: str) -> Optional["PaymentEventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


def process_job_id(provider_event_id: str) -> str:
    return f"payment-event-{provider_event_id}"


@dataclass
class HandlerContext:
    payment_provider: PaymentProvider
    # (notification type, booking id) pairs sent once the transaction commits
    notifications: list[tuple[NotificationType, str]] = field(default_factory=list)
    # (invoice id, description) pairs sent to the provider outside the transaction
    invoice_annotations: list[tuple[str, str]] = field(default_factory=list)

    @property
    def has_provider_calls(self) -> bool:
        return bool(self.invoice_annotations)


EventHandler = Callable[[AsyncSession, dict[str, Any], HandlerContext], Awaitable[None]]


async def record_event(db: AsyncSession, task_queue: TaskQueue, event: ProviderEvent) -> bool:
    """
    Durably record a verified provider event and queue it for processing.
    Returns False for a duplicate delivery.
    """
    existing = await db.execute(
        select(PaymentEvent.id).where(PaymentEvent.provider_event_id == event.id)
    )
    if existing.scalar_one_or_none():
        webhook_receipts.labels(result="duplicate").inc()
        logger.info("payment_event_duplicate", provider_event_id=event.id, event_type=event.type)
        return False

    db.add(
        PaymentEvent(
            provider_event_id=event.id,
            event_type=event.type,
            payload=event.data_object,
            processed=False,
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        # Lost the insert race to a concurrent delivery of the same event
        await db.rollback()
        webhook_receipts.labels(result="duplicate").inc()
        logger.info("payment_event_duplicate", provider_event_id=event.id, event_type=event.type)
        return False

    webhook_receipts.labels(result="recorded").inc()
    logger.info("payment_event_recorded", provider_event_id=event.id, event_type=event.type)

    try:
        await task_queue.enqueue(
            PROCESS_EVENT_JOB,
            {"provider_event_id": event.id},
            job_id=process_job_id(event.id),
        )
    except Exception as e:
        # The event is stored; the unprocessed-event sweep will enqueue it.
        logger.error("payment_event_enqueue_failed", provider_event_id=event.id, error=str(e))
    return True


async def _booking_by_subscription(db: AsyncSession, subscription_id: Optional[str]) -> Optional[Booking]:
    if not subscription_id:
        return None
    result = await db.execute(
        select(Booking)
        .where(Booking.provider_subscription_id == subscription_id)
        .with_for_update()
    )
    return result.scalars().first()


async def _handle_checkout_completed(db, payload, ctx) -> None:
    booking_id = (payload.get("metadata") or {}).get("booking_id")
    if not booking_id:
        logger.warning("checkout_completed_missing_booking_id", session_id=payload.get("id"))
        return

    booking = (
        await db.execute(select(Booking).where(Booking.id == booking_id).with_for_update())
    ).scalar_one_or_none()
    if not booking:
        logger.warning("checkout_completed_booking_not_found", booking_id=booking_id)
        return

    if can_transition(booking.status, BookingStatus.PAID_SETUP):
        booking.status = BookingStatus.PAID_SETUP.value
        booking.current_step = max(booking.current_step, 7)
        _stamp_provider_refs(booking, payload)
        ctx.notifications.append((NotificationType.BOOKING_CONFIRMATION, booking.id))
        logger.info("booking_paid_setup", booking_id=booking.id)
    elif booking.pay_at_delivery and not _has_provider_refs(booking):
        # Paid at the door after the booking already moved on
        _stamp_provider_refs(booking, payload)
        logger.info("pay_at_delivery_linked", booking_id=booking.id, status=booking.status)
    else:
        logger.info("checkout_completed_not_eligible", booking_id=booking.id, status=booking.status)


def _has_provider_refs(booking: Booking) -> bool:
    return bool(
        booking.provider_customer_id
        or booking.provider_subscription_id
        or booking.provider_checkout_session_id
    )


def _stamp_provider_refs(booking: Booking, session: dict[str, Any]) -> None:
    booking.provider_customer_id = session.get("customer") or booking.provider_customer_id
    booking.provider_subscription_id = session.get("subscription") or booking.provider_subscription_id
    booking.provider_checkout_session_id = session.get("id") or booking.provider_checkout_session_id


async def _handle_invoice_created(db, payload, ctx) -> None:
    if payload.get("billing_reason") != "subscription_create" or payload.get("status") != "draft":
        return
    booking = await _booking_by_subscription(db, payload.get("subscription"))
    if not booking:
        booking_id = ((payload.get("subscription_details") or {}).get("metadata") or {}).get("booking_id")
        if booking_id:
            booking = await db.get(Booking, booking_id)
    if not booking:
        logger.info("invoice_created_unrecognized", invoice_id=payload.get("id"))
        return

    settings = get_settings()
    ctx.invoice_annotations.append(
        (payload["id"], f"{settings.INVOICE_DESCRIPTOR} - booking {booking.id[:8].upper()}")
    )


async def _handle_invoice_paid(db, payload, ctx) -> None:
    booking = await _booking_by_subscription(db, payload.get("subscription"))
    if not booking:
        logger.warning("invoice_paid_booking_not_found", invoice_id=payload.get("id"))
        return

    paid_at = _paid_at(payload)
    record = (
        await db.execute(
            select(PaymentRecord).where(PaymentRecord.provider_invoice_id == payload["id"])
        )
    ).scalar_one_or_none()
    if record is None:
        record = PaymentRecord(
            booking_id=booking.id,
            provider_invoice_id=payload["id"],
            amount_cents=payload.get("amount_paid") or 0,
            currency=payload.get("currency") or get_settings().PAYMENT_CURRENCY,
        )
        db.add(record)
    record.status = "paid"
    record.paid_at = paid_at
    record.invoice_pdf_url = payload.get("invoice_pdf")
    record.hosted_invoice_url = payload.get("hosted_invoice_url")

    if booking.status == BookingStatus.PAST_DUE.value and can_transition(
        BookingStatus.PAST_DUE, BookingStatus.ACTIVE
    ):
        booking.status = BookingStatus.ACTIVE.value
        logger.info("booking_restored_active", booking_id=booking.id)


def _paid_at(invoice: dict[str, Any]) -> datetime:
    paid_at = (invoice.get("status_transitions") or {}).get("paid_at")
    if paid_at:
        return datetime.fromtimestamp(int(paid_at), tz=timezone.utc)
    return utcnow()


async def _handle_invoice_payment_failed(db, payload, ctx) -> None:
    booking = await _booking_by_subscription(db, payload.get("subscription"))
    if not booking:
        return
    if booking.status == BookingStatus.ACTIVE.value and can_transition(
        BookingStatus.ACTIVE, BookingStatus.PAST_DUE
    ):
        booking.status = BookingStatus.PAST_DUE.value
        ctx.notifications.append((NotificationType.PAYMENT_FAILED, booking.id))
        logger.info("booking_past_due", booking_id=booking.id)


async def _handle_subscription_updated(db, payload, ctx) -> None:
    logger.info("subscription_updated", subscription_id=payload.get("id"), status=payload.get("status"))


async def _handle_subscription_deleted(db, payload, ctx) -> None:
    booking = await _booking_by_subscription(db, payload.get("id"))
    if not booking:
        return
    if can_transition(booking.status, BookingStatus.CANCELED):
        booking.status = BookingStatus.CANCELED.value
        ctx.notifications.append((NotificationType.SUBSCRIPTION_CANCELED, booking.id))
        logger.info("booking_canceled_by_provider", booking_id=booking.id)


EVENT_HANDLERS: dict[PaymentEventType, EventHandler] = {
    PaymentEventType.CHECKOUT_COMPLETED: _handle_checkout_completed,
    PaymentEventType.INVOICE_CREATED: _handle_invoice_created,
    PaymentEventType.INVOICE_PAID: _handle_invoice_paid,
    PaymentEventType.INVOICE_PAYMENT_FAILED: _handle_invoice_payment_failed,
    PaymentEventType.SUBSCRIPTION_UPDATED: _handle_subscription_updated,
    PaymentEventType.SUBSCRIPTION_DELETED: _handle_subscription_deleted,
}


async def process_event(
    session_factory: async_sessionmaker,
    provider_event_id: str,
    payment_provider: PaymentProvider,
    task_queue: Optional[TaskQueue] = None,
) -> bool:
    """
    Apply one recorded event. Returns True if it was applied by this call,
    False if there was nothing to do.
    """
    ctx = HandlerContext(payment_provider=payment_provider)
    event_type = "unknown"
    try:
        async with session_factory() as session:
            async with session.begin():
                event = (
                    await session.execute(
                        select(PaymentEvent)
                        .where(PaymentEvent.provider_event_id == provider_event_id)
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                if event is None:
                    logger.warning("payment_event_not_found", provider_event_id=provider_event_id)
                    return False
                if event.processed:
                    logger.info("payment_event_already_processed", provider_event_id=provider_event_id)
                    return False

                event_type = event.event_type
                parsed = PaymentEventType.parse(event.event_type)
                if parsed is None:
                    logger.info("payment_event_unhandled_type", provider_event_id=provider_event_id, event_type=event_type)
                else:
                    await EVENT_HANDLERS[parsed](session, dict(event.payload or {}), ctx)

                if not ctx.has_provider_calls:
                    _mark_processed(event)

        if ctx.has_provider_calls:
            for invoice_id, description in ctx.invoice_annotations:
                await payment_provider.annotate_invoice(invoice_id, description)
            if not await _finish_event(session_factory, provider_event_id):
                logger.info("payment_event_already_processed", provider_event_id=provider_event_id)
                return False
    except Exception as e:
        record_payment_event(event_type, "failed")
        logger.error("payment_event_failed", provider_event_id=provider_event_id, event_type=event_type, error=str(e))
        await _store_error(session_factory, provider_event_id, e)
        raise

    record_payment_event(event_type, "applied")
    logger.info("payment_event_processed", provider_event_id=provider_event_id, event_type=event_type)

    if task_queue is not None:
        for notification_type, booking_id in ctx.notifications:
            await enqueue_notification(task_queue, notification_type, booking_id)
    return True


def _mark_processed(event: PaymentEvent) -> None:
    event.processed = True
    event.processed_at = utcnow()
    event.error = None


async def _finish_event(session_factory: async_sessionmaker, provider_event_id: str) -> bool:
    """Mark an event processed after its provider calls; False if another run got there first."""
    async with session_factory() as session:
        async with session.begin():
            event = (
                await session.execute(
                    select(PaymentEvent)
                    .where(PaymentEvent.provider_event_id == provider_event_id)
                    .with_for_update()
                )
            ).scalar_one_or_none()
            if event is None or event.processed:
                return False
            _mark_processed(event)
    return True


async def _store_error(session_factory: async_sessionmaker, provider_event_id: str, error: Exception) -> None:
    async with session_factory() as session:
        async with session.begin():
            event = (
                await session.execute(
                    select(PaymentEvent).where(PaymentEvent.provider_event_id == provider_event_id)
                )
            ).scalar_one_or_none()
            if event is not None:
                event.error = f"{type(error).__name__}: {error}"[:4000]


async def find_unprocessed_events(
    session_factory: async_sessionmaker,
    older_than: datetime,
    limit: int = 200,
) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(
            select(PaymentEvent.provider_event_id)
            .where(PaymentEvent.processed.is_(False), PaymentEvent.created_at <= older_than)
            .order_by(PaymentEvent.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())
