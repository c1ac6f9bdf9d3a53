"""
Inventory API Router

- Grid: per-channel records plus the shared-stock summary for a date range
- Physical stock: front-desk room counts, recomputed across every channel
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..schemas.inventory import (
    InventoryGridResponse,
    PhysicalRoomsUpdate,
    PhysicalRoomsResponse
)
from ..services.inventory_ledger import InventoryLedger
from ..services.sync_scheduler import SyncScheduler
from ..utils.dependencies import get_hotel_id, get_ledger, get_scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/inventory", tags=["Inventory"])

MAX_GRID_DAYS = 366


@router.get("/grid", response_model=InventoryGridResponse)
async def get_inventory_grid(
    start_date: date = Query(...),
    end_date: date = Query(...),
    channel_id: Optional[str] = Query(None),
    room_type: Optional[str] = Query(None),
    hotel_id: str = Depends(get_hotel_id),
    ledger: InventoryLedger = Depends(get_ledger)
):
    """Inventory and rates for [start_date, end_date)"""
    if end_date <= start_date:
        raise HTTPException(status_code=400, detail="end_date must be after start_date")
    if (end_date - start_date).days > MAX_GRID_DAYS:
        raise HTTPException(status_code=400, detail=f"Grid range is limited to {MAX_GRID_DAYS} days")
    return ledger.grid(hotel_id, start_date, end_date, channel_id=channel_id, room_type=room_type)


@router.put("/room-types/{room_type}", response_model=PhysicalRoomsResponse)
async def set_physical_rooms(
    room_type: str,
    data: PhysicalRoomsUpdate,
    hotel_id: str = Depends(get_hotel_id),
    ledger: InventoryLedger = Depends(get_ledger),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler)
):
    """
    Change physical stock. Every channel's records for the room type are
    recomputed and the affected channels get a full push queued.
    """
    channel_ids = ledger.set_physical_rooms(hotel_id, room_type, data.physical_rooms)
    if scheduler is not None:
        for channel_id in channel_ids:
            scheduler.trigger_full_sync(channel_id)
    return PhysicalRoomsResponse(
        room_type=room_type,
        physical_rooms=data.physical_rooms,
        channels_to_sync=channel_ids
    )
