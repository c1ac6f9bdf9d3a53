"""
Inventory Schemas

Read models for the inventory/rate grid and the physical-stock update.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field


class InventoryGridRow(BaseModel):
    record_id: str
    channel_id: str
    channel_name: str
    rate_plan_id: str
    room_type: str
    date: date
    total_rooms: int
    available_rooms: int
    sold_rooms: int
    sell_rate: Optional[Decimal]
    stop_sell: bool
    closed_to_arrival: bool
    closed_to_departure: bool
    sync_status: str
    last_synced_at: Optional[datetime]


class InventorySummaryRow(BaseModel):
    room_type: str
    date: date
    physical_rooms: int
    ceiling: int
    sold_rooms: int
    available_rooms: int


class InventoryGridResponse(BaseModel):
    rows: List[InventoryGridRow]
    summary: List[InventorySummaryRow]


class PhysicalRoomsUpdate(BaseModel):
    physical_rooms: int = Field(..., ge=0)


class PhysicalRoomsResponse(BaseModel):
    room_type: str
    physical_rooms: int
    channels_to_sync: List[str]
