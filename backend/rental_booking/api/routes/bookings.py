"""
Customer-facing booking endpoints: create, read, submit wizard steps, checkout.
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_booking.api.deps import (
    BOOKING_TOKEN_COOKIE,
    client_ip,
    enforce_rate_limit,
    get_payment_provider,
    get_rate_limiter,
    get_requester,
    get_task_queue,
    require_booking_access,
)
from rental_booking.core.config import get_settings
from rental_booking.core.security import create_booking_token
from rental_booking.db.session import get_db, get_session_factory
from rental_booking.schemas.booking import (
    BookingCreated,
    BookingResponse,
    CheckoutSessionResponse,
    StepSubmission,
)
from rental_booking.services.booking_service import (
    Requester,
    StepContext,
    apply_step,
    create_booking,
    get_booking,
)
from rental_booking.services.checkout_service import create_checkout
from rental_booking.services.interfaces.payment_provider import PaymentProvider
from rental_booking.services.interfaces.rate_limiter import RateLimiter
from rental_booking.services.interfaces.task_queue import TaskQueue

settings = get_settings()
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=BookingCreated, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Start a new booking in DRAFT.

    The returned access token (also set as an httpOnly cookie) is required
    for every later request on this booking.
    """
    await enforce_rate_limit(
        limiter, "booking-create", client_ip(request),
        settings.RATE_LIMIT_CREATE_MAX, settings.RATE_LIMIT_CREATE_WINDOW_SECONDS,
    )
    booking = await create_booking(db)
    token = create_booking_token(booking.id)
    response.set_cookie(
        BOOKING_TOKEN_COOKIE,
        token,
        max_age=settings.BOOKING_TOKEN_EXPIRE_HOURS * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.BOOKING_COOKIE_SECURE,
    )
    return BookingCreated(
        booking_id=booking.id,
        access_token=token,
        status=booking.status,
        current_step=booking.current_step,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: str = Depends(require_booking_access),
    db: AsyncSession = Depends(get_db),
):
    return await get_booking(db, booking_id)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def submit_step(
    submission: StepSubmission,
    booking_id: str = Depends(require_booking_access),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    task_queue: TaskQueue = Depends(get_task_queue),
    limiter: RateLimiter = Depends(get_rate_limiter),
    requester: Requester = Depends(get_requester),
):
    """
    Validate and apply one wizard step.

    409 when the booking is not far enough along for the step (or is no
    longer active), 422 with a per-field error map when the payload is
    invalid, 429 with Retry-After when submitted too often.
    """
    await enforce_rate_limit(
        limiter, "booking-update", booking_id,
        settings.RATE_LIMIT_UPDATE_MAX, settings.RATE_LIMIT_UPDATE_WINDOW_SECONDS,
    )
    ctx = StepContext(session_factory=session_factory, task_queue=task_queue, requester=requester)
    return await apply_step(db, booking_id, submission.step, submission.data, ctx)


@router.post("/{booking_id}/checkout", response_model=CheckoutSessionResponse)
async def start_checkout(
    booking_id: str = Depends(require_booking_access),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """Create a hosted checkout session for a SCHEDULED booking."""
    session = await create_checkout(db, provider, booking_id)
    return CheckoutSessionResponse(session_id=session.id, url=session.url)
