"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import date, datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class StepSubmission(BaseModel):
    step: int = Field(..., ge=1)
    data: dict[str, Any]


class BookingCreated(BaseModel):
    booking_id: str
    access_token: str
    status: str
    current_step: int


class CustomerResponse(BaseModel):
    id: str
    name: str
    email: str
    phone: str

    model_config = {"from_attributes": True}


class DeliverySlotSummary(BaseModel):
    id: str
    date: date
    window_label: str
    window_start: datetime
    window_end: datetime

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: str
    status: str
    current_step: int
    service_zip: Optional[str] = None
    has_hookups: Optional[bool] = None
    package_type: Optional[str] = None
    term_type: Optional[str] = None
    monthly_price_cents: Optional[int] = None
    setup_fee_cents: Optional[int] = None
    minimum_term_months: Optional[int] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    floor: Optional[int] = None
    has_elevator: bool = False
    gate_code: Optional[str] = None
    entry_notes: Optional[str] = None
    delivery_notes: Optional[str] = None
    dryer_plug_type: Optional[str] = None
    has_hot_cold_valves: Optional[bool] = None
    has_drain_access: Optional[bool] = None
    delivery_slot_id: Optional[str] = None
    recurring_authorized_at: Optional[datetime] = None
    pay_at_delivery: bool = False
    contract_version_id: Optional[str] = None
    contract_signed_at: Optional[datetime] = None
    contract_signer_name: Optional[str] = None
    customer: Optional[CustomerResponse] = None
    delivery_slot: Optional[DeliverySlotSummary] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AdminBookingResponse(BookingResponse):
    contract_signer_ip: Optional[str] = None
    contract_signer_agent: Optional[str] = None
    provider_customer_id: Optional[str] = None
    provider_subscription_id: Optional[str] = None
    provider_checkout_session_id: Optional[str] = None
    admin_notes: Optional[str] = None


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str
