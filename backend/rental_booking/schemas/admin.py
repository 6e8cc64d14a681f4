"""
Pydantic schemas for the back-office API.
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, EmailStr, Field

AdminAction = Literal["mark_active", "cancel", "close", "update_notes"]


class AdminLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AdminBookingActionRequest(BaseModel):
    action: AdminAction
    notes: Optional[str] = Field(None, max_length=5000)


class BulkBookingIds(BaseModel):
    ids: list[str] = Field(..., min_length=1, max_length=100)


class SkippedBooking(BaseModel):
    id: str
    reason: str


class BulkCancelResult(BaseModel):
    canceled: list[str]
    skipped: list[SkippedBooking]


class BulkDeleteResult(BaseModel):
    deleted: list[str]
    skipped: list[SkippedBooking]


class ContractVersionCreate(BaseModel):
    version: str = Field(..., min_length=1, max_length=50)
    title: str = Field(..., min_length=1, max_length=255)
    document_url: Optional[str] = Field(None, max_length=1024)
    effective_date: datetime


class ContractVersionResponse(BaseModel):
    id: str
    version: str
    title: str
    document_url: Optional[str]
    effective_date: datetime

    model_config = {"from_attributes": True}
