"""
Authentication service handling back-office login.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.errors import ForbiddenError, UnauthorizedError
from rental_booking.models.admin import AdminUser
from rental_booking.schemas.admin import AdminLogin
from rental_booking.core.security import hash_password, verify_password, create_access_token
from rental_booking.core.logging import get_logger

logger = get_logger(__name__)


async def create_admin_user(
    db: AsyncSession, email: str, name: str, password: str, role: str
) -> AdminUser:
    user = AdminUser(email=email.lower(), name=name, hashed_password=hash_password(password), role=role)
    db.add(user)
    await db.commit()
    logger.info("admin_user_created", admin_id=user.id, role=role)
    return user


async def authenticate_admin(db: AsyncSession, login_data: AdminLogin) -> str:
    """
    Authenticate an admin and return a JWT access token.
    Raises 401 if credentials are invalid.
    """
    result = await db.execute(select(AdminUser).where(AdminUser.email == login_data.email.lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed", email=login_data.email)
        raise UnauthorizedError("Invalid email or password")

    if not user.is_active:
        raise ForbiddenError("Account is deactivated")

    token = create_access_token(data={"sub": user.id, "role": user.role})
    logger.info("admin_logged_in", admin_id=user.id)
    return token


async def get_active_admin(db: AsyncSession, admin_id: str) -> AdminUser:
    user = await db.get(AdminUser, admin_id)
    if not user or not user.is_active:
        raise UnauthorizedError("Invalid or expired token")
    return user
