"""
Credential helpers: admin password hashing, admin bearer tokens and
per-booking access tokens.

A booking access token is handed to the anonymous customer when the booking
is created and scopes every later request to that one booking.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from rental_booking.core.config import get_settings
from rental_booking.core.errors import UnauthorizedError, ForbiddenError

settings = get_settings()

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

BOOKING_TOKEN_TYPE = "booking"
ADMIN_TOKEN_TYPE = "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Admin bearer token. `data` must carry `sub` (admin id) and `role`."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "typ": ADMIN_TOKEN_TYPE})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedError("Invalid or expired token")
    if payload.get("typ") != ADMIN_TOKEN_TYPE or not payload.get("sub"):
        raise UnauthorizedError("Invalid or expired token")
    return payload


def create_booking_token(booking_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.BOOKING_TOKEN_EXPIRE_HOURS)
    return jwt.encode(
        {"booking_id": booking_id, "typ": BOOKING_TOKEN_TYPE, "exp": expire},
        settings.BOOKING_TOKEN_SECRET,
        algorithm=settings.ALGORITHM,
    )


def verify_booking_token(token: Optional[str], booking_id: str) -> None:
    """Raise unless `token` is a live access token for `booking_id`."""
    if not token:
        raise UnauthorizedError("Missing booking access token")
    try:
        payload = jwt.decode(token, settings.BOOKING_TOKEN_SECRET, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedError("Invalid or expired booking access token")
    if payload.get("typ") != BOOKING_TOKEN_TYPE:
        raise UnauthorizedError("Invalid or expired booking access token")
    if payload.get("booking_id") != booking_id:
        raise ForbiddenError("Access token does not match this booking")
