"""
Hosted checkout for the setup payment and the recurring subscription.

The provider call happens after the read transaction is closed; nothing is
written locally. Provider references arrive later through the
checkout-completed event.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.config import get_settings
from rental_booking.core.errors import ConflictError
from rental_booking.core.logging import get_logger
from rental_booking.domain.pricing import PACKAGE_LABELS, TERM_LABELS, PackageType, TermType
from rental_booking.domain.state_machine import BookingStatus, is_at_least
from rental_booking.services.booking_service import get_booking
from rental_booking.services.interfaces.payment_provider import (
    CheckoutLineItem,
    CheckoutRequest,
    CheckoutSession,
    PaymentProvider,
)

logger = get_logger(__name__)


async def create_checkout(db: AsyncSession, provider: PaymentProvider, booking_id: str) -> CheckoutSession:
    settings = get_settings()
    booking = await get_booking(db, booking_id)

    if not is_at_least(booking.status, BookingStatus.SCHEDULED) or is_at_least(
        booking.status, BookingStatus.PAID_SETUP
    ):
        raise ConflictError(f"Checkout is not available for a booking in status {booking.status}")
    if not booking.has_pricing:
        raise ConflictError("Booking has no package and term selected")

    package_label = PACKAGE_LABELS[PackageType(booking.package_type)]
    term_label = TERM_LABELS[TermType(booking.term_type)]
    line_items = [
        CheckoutLineItem(
            name=f"{package_label} rental ({term_label})",
            amount_cents=booking.monthly_price_cents,
            recurring_monthly=True,
        )
    ]
    if booking.setup_fee_cents > 0:
        line_items.append(CheckoutLineItem(name="Delivery and setup fee", amount_cents=booking.setup_fee_cents))

    request = CheckoutRequest(
        booking_id=booking.id,
        line_items=line_items,
        success_url=f"{settings.APP_URL}/book/{booking.id}?checkout=success",
        cancel_url=f"{settings.APP_URL}/book/{booking.id}?checkout=canceled",
        currency=settings.PAYMENT_CURRENCY,
        customer_email=booking.customer.email if booking.customer else None,
        description=settings.INVOICE_DESCRIPTOR,
    )

    await db.commit()

    session = await provider.create_checkout_session(request)
    logger.info("checkout_started", booking_id=booking.id, session_id=session.id)
    return session
