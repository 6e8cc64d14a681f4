"""
Shared request dependencies: collaborators from app.state, access checks and
rate limiting. Tests swap any of these through `app.dependency_overrides`.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.errors import ForbiddenError, RateLimitedError, UnauthorizedError
from rental_booking.core.logging import get_logger
from rental_booking.core.metrics import rate_limit_rejections
from rental_booking.core.security import decode_access_token, verify_booking_token
from rental_booking.db.session import get_db
from rental_booking.models.admin import ADMIN_ROLE, AdminUser
from rental_booking.services.admin_service import AdminActor
from rental_booking.services.auth_service import get_active_admin
from rental_booking.services.booking_service import Requester
from rental_booking.services.interfaces.payment_provider import PaymentProvider
from rental_booking.services.interfaces.rate_limiter import RateLimiter
from rental_booking.services.interfaces.task_queue import TaskQueue

logger = get_logger(__name__)

BOOKING_TOKEN_COOKIE = "booking_token"
BOOKING_TOKEN_HEADER = "X-Booking-Token"

bearer_scheme = HTTPBearer(auto_error=False)


def get_task_queue(request: Request) -> TaskQueue:
    return request.app.state.task_queue


def get_payment_provider(request: Request) -> PaymentProvider:
    return request.app.state.payment_provider


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_requester(request: Request) -> Requester:
    return Requester(ip=client_ip(request), user_agent=request.headers.get("user-agent") or "unknown")


def booking_token_from(request: Request) -> Optional[str]:
    # An explicit header wins over the cookie
    return request.headers.get(BOOKING_TOKEN_HEADER) or request.cookies.get(BOOKING_TOKEN_COOKIE)


def require_booking_access(booking_id: str, request: Request) -> str:
    """Path dependency: the caller must hold this booking's access token."""
    verify_booking_token(booking_token_from(request), booking_id)
    return booking_id


async def enforce_rate_limit(
    limiter: RateLimiter, scope: str, identity: str, limit: int, window_seconds: int
) -> None:
    result = await limiter.hit(f"{scope}:{identity}", limit, window_seconds)
    if not result.allowed:
        rate_limit_rejections.labels(scope=scope).inc()
        logger.warning("rate_limited", scope=scope, identity=identity, retry_after=result.retry_after_seconds)
        raise RateLimitedError(result.retry_after_seconds)


async def get_current_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> AdminActor:
    if credentials is None:
        raise UnauthorizedError("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    user: AdminUser = await get_active_admin(db, payload["sub"])
    return AdminActor(user=user, ip=client_ip(request))


async def require_admin_role(actor: AdminActor = Depends(get_current_admin)) -> AdminActor:
    if actor.user.role != ADMIN_ROLE:
        raise ForbiddenError("Admin role required")
    return actor
