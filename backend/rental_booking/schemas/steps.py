"""
Payload schemas for the booking wizard steps.

Keys are accepted in camelCase (as the web client sends them) or snake_case.
"""

import re
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from rental_booking.core.config import get_settings
from rental_booking.domain.pricing import DryerPlugType, PackageType, TermType

_PHONE_RE = re.compile(r"^[\d\s\-\(\)\+]+$")


class StepPayload(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


def _require_true(value: bool, message: str) -> bool:
    if value is not True:
        raise ValueError(message)
    return value


class Step1Eligibility(StepPayload):
    service_zip: str = Field(..., pattern=r"^\d{5}$")
    has_hookups: bool

    @field_validator("service_zip")
    @classmethod
    def zip_in_service_area(cls, value: str) -> str:
        if value not in get_settings().SERVICE_AREA_ZIPS:
            raise ValueError("Sorry, we don't service this area yet")
        return value

    @field_validator("has_hookups")
    @classmethod
    def hookups_confirmed(cls, value: bool) -> bool:
        return _require_true(value, "Washer/dryer hookups are required")


class Step2Selection(StepPayload):
    package_type: Optional[PackageType] = None
    term_type: Optional[TermType] = None


class Step3Customer(StepPayload):
    customer_name: str = Field(..., min_length=2, max_length=200)
    customer_email: EmailStr
    customer_phone: str = Field(..., min_length=10, max_length=40)
    address_line1: str = Field(..., min_length=3, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=2, max_length=100)
    state: str = Field(..., min_length=2, max_length=2)
    zip: str = Field(..., pattern=r"^\d{5}$")
    floor: Optional[int] = Field(None, ge=1, le=99)
    has_elevator: bool = False
    gate_code: Optional[str] = Field(None, max_length=100)
    entry_notes: Optional[str] = Field(None, max_length=2000)
    delivery_notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("customer_phone")
    @classmethod
    def phone_characters(cls, value: str) -> str:
        if not _PHONE_RE.match(value):
            raise ValueError("Please enter a valid phone number")
        return value


class Step4Hookups(StepPayload):
    dryer_plug_type: DryerPlugType
    has_hot_cold_valves: bool
    has_drain_access: bool

    @field_validator("has_hot_cold_valves")
    @classmethod
    def valves_confirmed(cls, value: bool) -> bool:
        return _require_true(value, "Hot and cold water valves are required")

    @field_validator("has_drain_access")
    @classmethod
    def drain_confirmed(cls, value: bool) -> bool:
        return _require_true(value, "Drain access is required")


class Step5Delivery(StepPayload):
    delivery_slot_id: UUID


class Step6PaymentConsent(StepPayload):
    authorize_recurring: bool
    pay_at_delivery: bool = False

    @field_validator("authorize_recurring")
    @classmethod
    def recurring_authorized(cls, value: bool) -> bool:
        return _require_true(value, "You must authorize recurring charges")


class Step7Contract(StepPayload):
    contract_accepted: bool
    signer_name: str = Field(..., min_length=2, max_length=200)

    @field_validator("contract_accepted")
    @classmethod
    def contract_was_accepted(cls, value: bool) -> bool:
        return _require_true(value, "You must accept the rental agreement")


STEP_SCHEMAS: dict[int, type[StepPayload]] = {
    1: Step1Eligibility,
    2: Step2Selection,
    3: Step3Customer,
    4: Step4Hookups,
    5: Step5Delivery,
    6: Step6PaymentConsent,
    7: Step7Contract,
}
