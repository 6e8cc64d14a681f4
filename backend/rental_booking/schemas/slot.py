"""
Pydantic schemas for delivery slots.
"""

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class SlotAvailability(BaseModel):
    id: str
    date: date
    window_label: str
    window_start: datetime
    window_end: datetime
    capacity: int
    booked: int
    held: int
    remaining: int


class DeliverySlotCreate(BaseModel):
    date: date
    window_label: str = Field(..., min_length=1, max_length=50)
    window_start: datetime
    window_end: datetime
    capacity: int = Field(..., gt=0, le=1000)
    is_active: bool = True

    @model_validator(mode="after")
    def window_in_order(self):
        if self.window_end <= self.window_start:
            raise ValueError("window_end must be after window_start")
        return self


class DeliverySlotUpdate(BaseModel):
    capacity: Optional[int] = Field(None, gt=0, le=1000)
    is_active: Optional[bool] = None


class DeliverySlotResponse(BaseModel):
    id: str
    date: date
    window_label: str
    window_start: datetime
    window_end: datetime
    capacity: int
    is_active: bool

    model_config = {"from_attributes": True}
