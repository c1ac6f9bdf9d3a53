"""
Channels API Router

Channel connections for one hotel (X-Hotel-ID):
- Catalogue of supported OTAs
- Register / verify / deactivate / reconnect
- Settings, rate plans and room-type mappings
- Manual sync triggers and per-channel sync stats

Credentials are accepted on write and never returned.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status

from ..errors import ValidationError
from ..models.rate_plan import RatePlan
from ..schemas.channel import (
    ChannelCreate,
    ChannelSettingsUpdate,
    ChannelCredentialsUpdate,
    ChannelResponse,
    VerifyResponse,
    SupportedChannel,
    RatePlanCreate,
    RatePlanUpdate,
    RatePlanResponse,
    RoomMappingUpsert,
    RoomMappingResponse
)
from ..schemas.sync_log import SyncRequest, SyncRunResponse, BatchSummary, ChannelSyncStats, HotelSyncResponse
from ..services.channel_registry import ChannelRegistry, VerifyOutcome
from ..services.room_type_mapper import RoomTypeMapper
from ..services.sync_log_service import SyncLogService
from ..services.sync_orchestrator import SyncOrchestrator, RunOutcome
from ..utils.dependencies import (
    get_hotel_id,
    get_registry,
    get_orchestrator,
    get_mapper,
    get_sync_logs
)
from ..utils.rate_limiter import limiter, get_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/channels", tags=["Channels"])


def _verify_response(outcome: VerifyOutcome) -> VerifyResponse:
    return VerifyResponse(
        success=outcome.success,
        status=outcome.channel.status,
        property_name=outcome.property_name,
        error=outcome.error
    )


def _run_response(channel_id: str, outcome: Optional[RunOutcome]) -> SyncRunResponse:
    if outcome is None:
        # Folded into the sync already running for this channel
        return SyncRunResponse(channel_id=channel_id, queued=True)
    return SyncRunResponse(
        channel_id=channel_id,
        failed=outcome.failed,
        aborted=outcome.aborted,
        skipped=outcome.skipped,
        error=outcome.error,
        batches=[
            BatchSummary(
                sync_type=b.sync_type.value,
                status=b.status.value,
                processed=b.processed,
                successful=b.successful,
                failed=b.failed,
                attempts=b.attempts,
                error=b.error
            )
            for b in outcome.batches
        ]
    )


# ==================
# Catalogue
# ==================

@router.get("/supported", response_model=List[SupportedChannel])
async def list_supported_channels(registry: ChannelRegistry = Depends(get_registry)):
    """OTAs with a built-in endpoint and default commission"""
    return registry.supported_channels()


# ==================
# Channel Lifecycle
# ==================

@router.get("", response_model=List[ChannelResponse])
async def list_channels(
    include_deleted: bool = Query(False),
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    return registry.list_channels(hotel_id, include_deleted=include_deleted)


@router.post("", response_model=ChannelResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("channel_write"))
async def register_channel(
    request: Request,
    channel_data: ChannelCreate,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    """
    Register an OTA channel. It starts in "testing" and sells nothing
    until verified.
    """
    return registry.register_channel(hotel_id, channel_data)


@router.get("/{channel_id}", response_model=ChannelResponse)
async def get_channel(
    channel_id: str,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    return registry.get_channel(channel_id, hotel_id)


@router.post("/{channel_id}/verify", response_model=VerifyResponse)
def verify_channel(
    channel_id: str,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    """Handshake with the OTA; on success the channel goes active"""
    registry.get_channel(channel_id, hotel_id)
    return _verify_response(registry.verify_channel(channel_id))


@router.patch("/{channel_id}/settings", response_model=ChannelResponse)
async def update_channel_settings(
    channel_id: str,
    changes: ChannelSettingsUpdate,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    registry.get_channel(channel_id, hotel_id)
    return registry.update_settings(channel_id, changes)


@router.put("/{channel_id}/credentials", response_model=ChannelResponse)
async def update_channel_credentials(
    channel_id: str,
    data: ChannelCredentialsUpdate,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    registry.get_channel(channel_id, hotel_id)
    return registry.update_credentials(channel_id, data.credentials, data.api_endpoint, data.property_id)


@router.post("/{channel_id}/reconnect", response_model=VerifyResponse)
def reconnect_channel(
    channel_id: str,
    data: ChannelCredentialsUpdate,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    """New credentials followed by a fresh verification"""
    registry.get_channel(channel_id, hotel_id)
    return _verify_response(
        registry.reconnect(channel_id, data.credentials, data.api_endpoint, data.property_id)
    )


@router.delete("/{channel_id}", response_model=ChannelResponse)
async def deactivate_channel(
    channel_id: str,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    """Soft delete; sync logs and bookings are kept"""
    registry.get_channel(channel_id, hotel_id)
    return registry.deactivate_channel(channel_id)


# ==================
# Rate Plans
# ==================

@router.get("/{channel_id}/rate-plans", response_model=List[RatePlanResponse])
async def list_rate_plans(
    channel_id: str,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    channel = registry.get_channel(channel_id, hotel_id)
    return registry.db.query(RatePlan).filter(
        RatePlan.channel_id == channel.id
    ).order_by(RatePlan.room_type, RatePlan.created_at).all()


@router.post("/{channel_id}/rate-plans", response_model=RatePlanResponse, status_code=status.HTTP_201_CREATED)
async def add_rate_plan(
    channel_id: str,
    plan: RatePlanCreate,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    registry.get_channel(channel_id, hotel_id)
    return registry.add_rate_plan(channel_id, plan)


@router.patch("/{channel_id}/rate-plans/{rate_plan_id}", response_model=RatePlanResponse)
async def update_rate_plan(
    channel_id: str,
    rate_plan_id: str,
    changes: RatePlanUpdate,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry)
):
    channel = registry.get_channel(channel_id, hotel_id)
    owned = registry.db.query(RatePlan).filter(
        RatePlan.id == rate_plan_id,
        RatePlan.channel_id == channel.id
    ).first()
    if not owned:
        raise HTTPException(status_code=404, detail="Rate plan not found")
    return registry.update_rate_plan(rate_plan_id, changes)


# ==================
# Room-Type Mappings
# ==================

@router.get("/{channel_id}/mappings", response_model=List[RoomMappingResponse])
async def list_mappings(
    channel_id: str,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry),
    mapper: RoomTypeMapper = Depends(get_mapper)
):
    registry.get_channel(channel_id, hotel_id)
    return mapper.list_mappings(channel_id)


@router.put("/{channel_id}/mappings", response_model=RoomMappingResponse)
async def upsert_mapping(
    channel_id: str,
    data: RoomMappingUpsert,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry),
    mapper: RoomTypeMapper = Depends(get_mapper)
):
    registry.get_channel(channel_id, hotel_id)
    metadata = data.model_dump(exclude={"room_type", "external_room_type_id"}, exclude_unset=True)
    return mapper.upsert_mapping(channel_id, data.room_type, data.external_room_type_id, **metadata)


@router.delete("/{channel_id}/mappings/{room_type}")
async def remove_mapping(
    channel_id: str,
    room_type: str,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry),
    mapper: RoomTypeMapper = Depends(get_mapper)
):
    registry.get_channel(channel_id, hotel_id)
    if not mapper.remove_mapping(channel_id, room_type):
        raise HTTPException(status_code=404, detail="Mapping not found")
    return {"success": True, "room_type": room_type}


# ==================
# Sync
# ==================

@router.post("/sync-all", response_model=HotelSyncResponse)
@limiter.limit(get_rate_limit("manual_sync"))
def sync_all_channels(
    request: Request,
    hotel_id: str = Depends(get_hotel_id),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Full sync for every active channel of the hotel that has auto-sync on"""
    results = orchestrator.sync_hotel(hotel_id)
    return HotelSyncResponse(
        hotel_id=hotel_id,
        channels=[_run_response(channel_id, outcome) for channel_id, outcome in results.items()]
    )


@router.post("/{channel_id}/sync", response_model=SyncRunResponse)
@limiter.limit(get_rate_limit("manual_sync"))
def trigger_sync(
    request: Request,
    channel_id: str,
    sync_request: Optional[SyncRequest] = Body(None),
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """
    Run a sync now. Without sync_types this is a full sync: every record
    over the horizon is pushed, then bookings are imported.
    """
    channel = registry.get_channel(channel_id, hotel_id)
    if not channel.is_active:
        raise ValidationError(f"Channel is {channel.status}, verify it before syncing")

    if sync_request and sync_request.sync_types:
        outcome = orchestrator.trigger(channel.id, sync_request.sync_types)
    else:
        outcome = orchestrator.full_sync(channel.id)
    logger.info(f"Manual sync for channel {channel.channel_name} from {request.client.host if request.client else '-'}")
    return _run_response(channel.id, outcome)


@router.post("/{channel_id}/retry-failed", response_model=SyncRunResponse)
@limiter.limit(get_rate_limit("manual_sync"))
def retry_failed_records(
    request: Request,
    channel_id: str,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Push records whose last push failed"""
    channel = registry.get_channel(channel_id, hotel_id)
    if not channel.is_active:
        raise ValidationError(f"Channel is {channel.status}, verify it before syncing")
    return _run_response(channel.id, orchestrator.retry_failed(channel.id))


@router.get("/{channel_id}/stats", response_model=ChannelSyncStats)
async def get_channel_stats(
    channel_id: str,
    hotel_id: str = Depends(get_hotel_id),
    registry: ChannelRegistry = Depends(get_registry),
    sync_logs: SyncLogService = Depends(get_sync_logs)
):
    registry.get_channel(channel_id, hotel_id)
    return sync_logs.channel_stats(channel_id)
