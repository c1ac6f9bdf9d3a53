"""
Channel Schemas

Pydantic models for channel registry requests and responses.
Credentials are accepted on write and never returned.
"""

import re
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator


CUTOFF_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _check_cutoff(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not CUTOFF_RE.match(v):
        raise ValueError("cutoff_time must be HH:MM (24h)")
    return v


# ==================
# Channel
# ==================

class ChannelSettingsBase(BaseModel):
    auto_sync: bool = True
    rate_parity: bool = False
    inventory_buffer: int = Field(default=0, ge=0)
    min_stay: Optional[int] = Field(None, ge=1)
    max_stay: Optional[int] = Field(None, ge=1)
    advance_booking_days: Optional[int] = Field(None, ge=0)
    cutoff_time: Optional[str] = None
    sync_frequency_minutes: Optional[int] = Field(None, ge=1, le=1440)

    @field_validator('cutoff_time')
    @classmethod
    def validate_cutoff(cls, v):
        return _check_cutoff(v)

    @model_validator(mode='after')
    def validate_stay(self):
        if self.min_stay and self.max_stay and self.max_stay < self.min_stay:
            raise ValueError("max_stay must be >= min_stay")
        return self


class ChannelCreate(ChannelSettingsBase):
    """Schema for registering a channel"""
    channel_name: str = Field(..., min_length=1, max_length=50, description="Catalogue id, e.g. booking_com")
    display_name: Optional[str] = Field(None, max_length=100)
    api_endpoint: Optional[str] = Field(None, max_length=500)
    credentials: Optional[Dict[str, Any]] = None
    property_id: Optional[str] = Field(None, max_length=100)
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    description: Optional[str] = None


class ChannelSettingsUpdate(BaseModel):
    """Partial settings update; only fields sent are changed"""
    display_name: Optional[str] = Field(None, max_length=100)
    auto_sync: Optional[bool] = None
    rate_parity: Optional[bool] = None
    inventory_buffer: Optional[int] = Field(None, ge=0)
    min_stay: Optional[int] = Field(None, ge=1)
    max_stay: Optional[int] = Field(None, ge=1)
    advance_booking_days: Optional[int] = Field(None, ge=0)
    cutoff_time: Optional[str] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    sync_frequency_minutes: Optional[int] = Field(None, ge=1, le=1440)
    description: Optional[str] = None

    @field_validator('cutoff_time')
    @classmethod
    def validate_cutoff(cls, v):
        return _check_cutoff(v)


class ChannelCredentialsUpdate(BaseModel):
    credentials: Dict[str, Any]
    api_endpoint: Optional[str] = Field(None, max_length=500)
    property_id: Optional[str] = Field(None, max_length=100)


class ChannelResponse(BaseModel):
    """Schema for channel response"""
    id: str
    hotel_id: str
    channel_name: str
    display_name: str
    status: str
    api_endpoint: Optional[str]
    property_id: Optional[str]
    auto_sync: bool
    rate_parity: bool
    inventory_buffer: int
    min_stay: Optional[int]
    max_stay: Optional[int]
    advance_booking_days: Optional[int]
    cutoff_time: Optional[str]
    commission_rate: Decimal
    sync_frequency_minutes: int
    last_sync_at: Optional[datetime]
    next_sync_at: Optional[datetime]
    consecutive_failures: int
    last_error: Optional[str]
    created_at: datetime
    deleted_at: Optional[datetime]
    # Note: credentials are NOT exposed in responses

    class Config:
        from_attributes = True


class VerifyResponse(BaseModel):
    success: bool
    status: str
    property_name: Optional[str] = None
    error: Optional[str] = None


class SupportedChannel(BaseModel):
    id: str
    name: str
    api_endpoint: str
    commission_rate: Decimal


# ==================
# Rate Plans
# ==================

class SeasonalRate(BaseModel):
    start: date
    end: date
    rate: Decimal = Field(..., ge=0)

    @model_validator(mode='after')
    def validate_range(self):
        if self.end < self.start:
            raise ValueError("season end must be on or after start")
        return self


class RatePlanCreate(BaseModel):
    room_type: str = Field(..., min_length=1, max_length=50)
    name: str = Field(default="Standard Rate", max_length=100)
    base_rate: Decimal = Field(..., ge=0)
    weekend_surcharge: Decimal = Field(default=Decimal("0"), ge=0)
    discount_percentage: Decimal = Field(default=Decimal("0"), ge=-100, le=100)
    seasonal_rates: List[SeasonalRate] = []
    min_stay: Optional[int] = Field(None, ge=1)
    max_stay: Optional[int] = Field(None, ge=1)
    advance_booking_days: Optional[int] = Field(None, ge=0)


class RatePlanUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    base_rate: Optional[Decimal] = Field(None, ge=0)
    weekend_surcharge: Optional[Decimal] = Field(None, ge=0)
    discount_percentage: Optional[Decimal] = Field(None, ge=-100, le=100)
    seasonal_rates: Optional[List[SeasonalRate]] = None
    min_stay: Optional[int] = Field(None, ge=1)
    max_stay: Optional[int] = Field(None, ge=1)
    advance_booking_days: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class RatePlanResponse(BaseModel):
    id: str
    channel_id: str
    room_type: str
    name: str
    base_rate: Decimal
    weekend_surcharge: Decimal
    discount_percentage: Decimal
    seasonal_rates: Optional[List[Dict[str, Any]]]
    min_stay: Optional[int]
    max_stay: Optional[int]
    advance_booking_days: Optional[int]
    is_active: bool

    class Config:
        from_attributes = True


# ==================
# Room-Type Mappings
# ==================

class RoomMappingUpsert(BaseModel):
    room_type: str = Field(..., min_length=1, max_length=50)
    external_room_type_id: str = Field(..., min_length=1, max_length=100)
    external_room_type_name: Optional[str] = Field(None, max_length=200)
    external_rate_plan_id: Optional[str] = Field(None, max_length=100)
    max_occupancy: Optional[int] = Field(None, ge=1)
    bed_type: Optional[str] = Field(None, max_length=50)
    amenities: Optional[List[str]] = None
    size_sqm: Optional[Decimal] = Field(None, ge=0)


class RoomMappingResponse(BaseModel):
    id: str
    channel_id: str
    room_type: str
    external_room_type_id: str
    external_room_type_name: Optional[str]
    external_rate_plan_id: Optional[str]
    max_occupancy: Optional[int]
    bed_type: Optional[str]
    amenities: Optional[List[str]]
    size_sqm: Optional[Decimal]
    is_active: bool

    class Config:
        from_attributes = True
