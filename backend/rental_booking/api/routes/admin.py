"""
Back-office endpoints. Everything except login requires an admin bearer token;
purging bookings additionally requires the ADMIN role.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.api.deps import (
    client_ip,
    enforce_rate_limit,
    get_current_admin,
    get_rate_limiter,
    require_admin_role,
)
from rental_booking.api.routes.slots import to_availability
from rental_booking.core.config import get_settings
from rental_booking.db.session import get_db
from rental_booking.schemas.admin import (
    AdminBookingActionRequest,
    AdminLogin,
    BulkBookingIds,
    BulkCancelResult,
    BulkDeleteResult,
    ContractVersionCreate,
    ContractVersionResponse,
    Token,
)
from rental_booking.schemas.booking import AdminBookingResponse
from rental_booking.schemas.slot import (
    DeliverySlotCreate,
    DeliverySlotResponse,
    DeliverySlotUpdate,
    SlotAvailability,
)
from rental_booking.services import admin_service
from rental_booking.services.admin_service import AdminActor
from rental_booking.services.auth_service import authenticate_admin
from rental_booking.services.booking_service import get_booking
from rental_booking.services.interfaces.rate_limiter import RateLimiter
from rental_booking.services.reservation_service import list_all_slots

settings = get_settings()
router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/auth/login", response_model=Token)
async def login(
    login_data: AdminLogin,
    request: Request,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Authenticate and receive a JWT access token."""
    await enforce_rate_limit(
        limiter, "admin-login", client_ip(request),
        settings.RATE_LIMIT_LOGIN_MAX, settings.RATE_LIMIT_LOGIN_WINDOW_SECONDS,
    )
    token = await authenticate_admin(db, login_data)
    return Token(access_token=token)


@router.get("/bookings/{booking_id}", response_model=AdminBookingResponse)
async def get_booking_detail(
    booking_id: str,
    actor: AdminActor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_booking(db, booking_id)


@router.patch("/bookings/{booking_id}", response_model=AdminBookingResponse)
async def booking_action(
    booking_id: str,
    body: AdminBookingActionRequest,
    actor: AdminActor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """mark_active, cancel, close or update_notes. 409 on an illegal transition."""
    return await admin_service.apply_admin_action(db, actor, booking_id, body.action, body.notes)


@router.post("/bookings/bulk-cancel", response_model=BulkCancelResult)
async def bulk_cancel(
    body: BulkBookingIds,
    actor: AdminActor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await admin_service.bulk_cancel(db, actor, body.ids)


@router.post("/bookings/bulk-delete", response_model=BulkDeleteResult)
async def bulk_delete(
    body: BulkBookingIds,
    actor: AdminActor = Depends(require_admin_role),
    db: AsyncSession = Depends(get_db),
):
    """Permanently delete CANCELED or CLOSED bookings."""
    return await admin_service.bulk_delete(db, actor, body.ids)


@router.get("/delivery-slots", response_model=list[SlotAvailability])
async def list_slots(
    actor: AdminActor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return [to_availability(c) for c in await list_all_slots(db)]


@router.post("/delivery-slots", response_model=DeliverySlotResponse, status_code=status.HTTP_201_CREATED)
async def create_slot(
    body: DeliverySlotCreate,
    actor: AdminActor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await admin_service.create_delivery_slot(db, actor, body)


@router.patch("/delivery-slots/{slot_id}", response_model=DeliverySlotResponse)
async def update_slot(
    slot_id: str,
    body: DeliverySlotUpdate,
    actor: AdminActor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await admin_service.update_delivery_slot(db, actor, slot_id, body)


@router.get("/contract-versions", response_model=list[ContractVersionResponse])
async def list_contract_versions(
    actor: AdminActor = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await admin_service.list_contract_versions(db)


@router.post("/contract-versions", response_model=ContractVersionResponse, status_code=status.HTTP_201_CREATED)
async def create_contract_version(
    body: ContractVersionCreate,
    actor: AdminActor = Depends(require_admin_role),
    db: AsyncSession = Depends(get_db),
):
    return await admin_service.create_contract_version(db, actor, body)
