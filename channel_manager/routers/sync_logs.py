"""
Sync Logs API Router

Read-only view of the append-only sync audit trail.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..schemas.sync_log import SyncLogResponse, SyncLogDetail
from ..services.sync_log_service import SyncLogService
from ..utils.dependencies import get_hotel_id, get_sync_logs

router = APIRouter(prefix="/api/sync-logs", tags=["Sync Logs"])


@router.get("", response_model=List[SyncLogResponse])
async def list_sync_logs(
    channel_id: Optional[str] = Query(None),
    sync_type: Optional[str] = Query(None),
    log_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    hotel_id: str = Depends(get_hotel_id),
    sync_logs: SyncLogService = Depends(get_sync_logs)
):
    """Newest first"""
    return sync_logs.list_logs(
        hotel_id,
        channel_id=channel_id,
        sync_type=sync_type,
        status=log_status,
        limit=limit,
        offset=offset
    )


@router.get("/{log_id}", response_model=SyncLogDetail)
async def get_sync_log(
    log_id: str,
    hotel_id: str = Depends(get_hotel_id),
    sync_logs: SyncLogService = Depends(get_sync_logs)
):
    log = sync_logs.get_log(log_id, hotel_id)
    if not log:
        raise HTTPException(status_code=404, detail="Sync log not found")
    return log
