"""
FastAPI dependencies shared by the routers.

Requests are scoped to one hotel through the X-Hotel-ID header; services
are built per request on the request's database session.
"""

import uuid
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.channel import Channel
from ..services.booking_reconciler import BookingReconciler
from ..services.channel_registry import ChannelRegistry
from ..services.connectors import BaseConnector, get_connector
from ..services.inventory_ledger import InventoryLedger
from ..services.room_type_mapper import RoomTypeMapper
from ..services.sync_log_service import SyncLogService
from ..services.sync_orchestrator import SyncOrchestrator
from ..services.sync_scheduler import SyncScheduler, current_scheduler


def get_request_id(request: Request) -> str:
    """Get request_id from request state or generate one"""
    return getattr(request.state, 'request_id', str(uuid.uuid4())[:8])


def get_hotel_id(x_hotel_id: Optional[str] = Header(None, alias="X-Hotel-ID")) -> str:
    if not x_hotel_id or not x_hotel_id.strip():
        raise HTTPException(status_code=400, detail="X-Hotel-ID header is required")
    return x_hotel_id.strip()


def get_connector_factory() -> Callable[[Channel], BaseConnector]:
    return get_connector


def get_scheduler() -> Optional[SyncScheduler]:
    return current_scheduler()


def get_ledger(db: Session = Depends(get_db)) -> InventoryLedger:
    return InventoryLedger(db)


def get_registry(
    db: Session = Depends(get_db),
    connector_factory=Depends(get_connector_factory),
    scheduler=Depends(get_scheduler)
) -> ChannelRegistry:
    return ChannelRegistry(db, connector_factory=connector_factory, scheduler=scheduler)


def get_orchestrator(
    db: Session = Depends(get_db),
    connector_factory=Depends(get_connector_factory)
) -> SyncOrchestrator:
    return SyncOrchestrator(db, connector_factory=connector_factory)


def get_reconciler(db: Session = Depends(get_db)) -> BookingReconciler:
    return BookingReconciler(db)


def get_mapper(db: Session = Depends(get_db)) -> RoomTypeMapper:
    return RoomTypeMapper(db)


def get_sync_logs(db: Session = Depends(get_db)) -> SyncLogService:
    return SyncLogService(db)
