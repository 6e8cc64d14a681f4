from rental_booking.schemas.admin import AdminLogin, Token
from rental_booking.schemas.booking import BookingCreated, BookingResponse, StepSubmission
from rental_booking.schemas.slot import DeliverySlotCreate, SlotAvailability
from rental_booking.schemas.steps import STEP_SCHEMAS

__all__ = [
    "AdminLogin", "Token",
    "BookingCreated", "BookingResponse", "StepSubmission",
    "DeliverySlotCreate", "SlotAvailability",
    "STEP_SCHEMAS",
]
