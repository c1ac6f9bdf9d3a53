"""
Channel Booking Schemas

BookingPayload is the uniform shape every connector's pull_bookings()
returns; the reconciler validates each payload against it.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, AliasChoices, field_validator, model_validator


class PayloadStatus(str, Enum):
    CONFIRMED = "confirmed"
    MODIFIED = "modified"
    CANCELLED = "cancelled"


class BookingPayload(BaseModel):
    """A booking as reported by a channel"""
    external_booking_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("external_booking_id", "booking_id", "reference")
    )
    status: PayloadStatus = PayloadStatus.CONFIRMED
    guest_name: str = Field(..., min_length=1, max_length=200)
    guest_email: Optional[str] = Field(None, max_length=255)
    guest_phone: Optional[str] = Field(None, max_length=30)
    # External room-type id (or an internal room-type code)
    room_type: str = Field(
        ...,
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("room_type", "room_type_id", "external_room_type_id")
    )
    rooms: int = Field(default=1, ge=1, le=50)
    adults: int = Field(default=1, ge=1)
    children: int = Field(default=0, ge=0)
    check_in_date: date = Field(..., validation_alias=AliasChoices("check_in_date", "check_in", "arrival_date"))
    check_out_date: date = Field(..., validation_alias=AliasChoices("check_out_date", "check_out", "departure_date"))
    room_rate: Decimal = Field(..., ge=0, validation_alias=AliasChoices("room_rate", "amount", "total_price"))
    currency: str = Field(default="INR", min_length=3, max_length=3)

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v in ("new", "booked"):
                return PayloadStatus.CONFIRMED.value
            if v == "canceled":
                return PayloadStatus.CANCELLED.value
        return v

    @field_validator('guest_name', mode='before')
    @classmethod
    def sanitize_guest_name(cls, v):
        if isinstance(v, str):
            v = re.sub(r'<[^>]*>', '', v).strip()
        return v

    @field_validator('currency', mode='before')
    @classmethod
    def upper_currency(cls, v):
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode='after')
    def validate_dates(self):
        """check_out_date must be after check_in_date"""
        if self.check_out_date <= self.check_in_date:
            raise ValueError('check_out_date must be after check_in_date')
        return self


class DirectBookingCreate(BaseModel):
    """Front-desk booking recorded on the direct channel"""
    external_booking_id: Optional[str] = Field(None, max_length=255)
    guest_name: str = Field(..., min_length=1, max_length=200)
    guest_email: Optional[str] = Field(None, max_length=255)
    guest_phone: Optional[str] = Field(None, max_length=30)
    room_type: str = Field(..., min_length=1, max_length=50)
    rooms: int = Field(default=1, ge=1, le=50)
    adults: int = Field(default=1, ge=1)
    children: int = Field(default=0, ge=0)
    check_in_date: date
    check_out_date: date
    room_rate: Decimal = Field(..., ge=0)

    @model_validator(mode='after')
    def validate_dates(self):
        if self.check_out_date <= self.check_in_date:
            raise ValueError('check_out_date must be after check_in_date')
        return self


class BookingStatusUpdate(BaseModel):
    status: str


class ChannelBookingResponse(BaseModel):
    id: str
    hotel_id: str
    channel_id: Optional[str]
    external_booking_id: str
    guest_name: str
    guest_email: Optional[str]
    guest_phone: Optional[str]
    room_type: str
    rooms: int
    adults: int
    children: int
    check_in_date: date
    check_out_date: date
    room_rate: Decimal
    currency: str
    channel_commission: Decimal
    net_rate: Decimal
    status: str
    reconciliation_state: str
    is_modified: bool
    modification_notes: Optional[str]
    last_synced_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


# ==================
# Conflict Queue
# ==================

class ConflictAction(str, Enum):
    RETRY = "retry"
    CANCEL = "cancel"
    DISMISS = "dismiss"


class ConflictResolveRequest(BaseModel):
    action: ConflictAction
    note: Optional[str] = Field(None, max_length=2000)


class BookingConflictResponse(BaseModel):
    id: str
    hotel_id: str
    channel_id: Optional[str]
    booking_id: str
    reason: str
    details: Optional[Dict[str, Any]]
    status: str
    resolution_note: Optional[str]
    resolved_at: Optional[datetime]
    created_at: datetime
    booking: Optional[ChannelBookingResponse] = None

    class Config:
        from_attributes = True
