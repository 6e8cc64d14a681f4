"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from rental_booking.api.routes import admin, bookings, slots, webhooks

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(slots.router)
api_router.include_router(webhooks.router)
api_router.include_router(admin.router)
