"""
Payment provider webhook receipt.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.api.deps import get_payment_provider, get_task_queue
from rental_booking.core.errors import BadRequestError
from rental_booking.core.logging import get_logger
from rental_booking.core.metrics import webhook_receipts
from rental_booking.db.session import get_db
from rental_booking.services.interfaces.payment_provider import PaymentProvider, WebhookSignatureError
from rental_booking.services.interfaces.task_queue import TaskQueue
from rental_booking.services.payment_event_service import record_event

logger = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

SIGNATURE_HEADER = "stripe-signature"


@router.post("/payments")
async def receive_payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
    task_queue: TaskQueue = Depends(get_task_queue),
):
    """
    Verify, record and acknowledge. Processing happens in the worker.

    400 on a bad signature; otherwise 200 once the event is stored, including
    for redeliveries, so the provider never enters a retry storm.
    """
    body = await request.body()
    try:
        event = provider.construct_event(body, request.headers.get(SIGNATURE_HEADER))
    except WebhookSignatureError as e:
        webhook_receipts.labels(result="bad_signature").inc()
        logger.warning("webhook_signature_invalid", error=str(e))
        raise BadRequestError("Invalid signature")

    await record_event(db, task_queue, event)
    return {"received": True}
