"""
Bookings API Router

- Channel bookings for a hotel (OTA and direct)
- Direct front-desk bookings (rejected outright when they would oversell)
- Booking pushes from a channel, ingested like pulled bookings
- Status changes (check-in, check-out, no-show, cancel)
- Conflict queue: bookings the ledger could not accept
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from ..models.channel_booking import ConflictStatus
from ..schemas.booking import (
    DirectBookingCreate,
    BookingStatusUpdate,
    ChannelBookingResponse,
    ConflictResolveRequest,
    BookingConflictResponse
)
from ..services.booking_reconciler import BookingReconciler
from ..services.channel_registry import ChannelRegistry
from ..utils.dependencies import get_hotel_id, get_reconciler, get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


# ==================
# Conflict Queue
# ==================

@router.get("/conflicts", response_model=List[BookingConflictResponse])
async def list_conflicts(
    conflict_status: Optional[str] = Query(ConflictStatus.OPEN.value, alias="status"),
    channel_id: Optional[str] = Query(None),
    hotel_id: str = Depends(get_hotel_id),
    reconciler: BookingReconciler = Depends(get_reconciler)
):
    return reconciler.list_conflicts(hotel_id, status=conflict_status, channel_id=channel_id)


@router.post("/conflicts/{conflict_id}/resolve", response_model=BookingConflictResponse)
async def resolve_conflict(
    conflict_id: str,
    data: ConflictResolveRequest,
    hotel_id: str = Depends(get_hotel_id),
    reconciler: BookingReconciler = Depends(get_reconciler)
):
    """
    retry: reserve again (409 if the stock is still not there)
    cancel: cancel the booking
    dismiss: close the conflict and leave the booking as it is
    """
    return reconciler.resolve_conflict(conflict_id, data.action, note=data.note, hotel_id=hotel_id)


# ==================
# Bookings
# ==================

@router.get("", response_model=List[ChannelBookingResponse])
async def list_bookings(
    booking_status: Optional[str] = Query(None, alias="status"),
    channel_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    hotel_id: str = Depends(get_hotel_id),
    reconciler: BookingReconciler = Depends(get_reconciler)
):
    return reconciler.list_bookings(
        hotel_id, status=booking_status, channel_id=channel_id, limit=limit, offset=offset
    )


@router.post("/direct", response_model=ChannelBookingResponse, status_code=status.HTTP_201_CREATED)
async def create_direct_booking(
    data: DirectBookingCreate,
    hotel_id: str = Depends(get_hotel_id),
    reconciler: BookingReconciler = Depends(get_reconciler)
):
    """Front-desk booking; 409 when any night is sold out"""
    return reconciler.record_direct_booking(hotel_id, data)


@router.post("/channels/{channel_id}/ingest", response_model=ChannelBookingResponse)
async def ingest_channel_booking(
    channel_id: str,
    payload: Dict[str, Any] = Body(...),
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry),
    reconciler: BookingReconciler = Depends(get_reconciler)
):
    """
    A booking pushed by the channel. Same path as a pulled booking:
    repeated delivery is a no-op, an oversell lands in the conflict queue.
    """
    registry.get_channel(channel_id, hotel_id)
    booking = reconciler.ingest(channel_id, payload)
    logger.info(f"Ingested pushed booking {booking.external_booking_id}: {reconciler.last_action.value}")
    return booking


@router.get("/{booking_id}", response_model=ChannelBookingResponse)
async def get_booking(
    booking_id: str,
    hotel_id: str = Depends(get_hotel_id),
    reconciler: BookingReconciler = Depends(get_reconciler)
):
    return reconciler.get_booking(booking_id, hotel_id)


@router.patch("/{booking_id}/status", response_model=ChannelBookingResponse)
async def update_booking_status(
    booking_id: str,
    data: BookingStatusUpdate,
    hotel_id: str = Depends(get_hotel_id),
    reconciler: BookingReconciler = Depends(get_reconciler)
):
    return reconciler.transition_status(booking_id, data.status, hotel_id=hotel_id)
