"""
Sync Log Schemas
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from ..models.sync_log import SyncType


class SyncLogResponse(BaseModel):
    id: str
    hotel_id: str
    channel_id: Optional[str]
    sync_type: str
    direction: str
    status: str
    records_processed: int
    records_successful: int
    records_failed: int
    error_message: Optional[str]
    attempts: int
    started_at: datetime
    completed_at: Optional[datetime]
    duration_ms: Optional[int]

    class Config:
        from_attributes = True


class SyncLogDetail(SyncLogResponse):
    """Includes the (trimmed) request and response bodies"""
    request_payload: Optional[Dict[str, Any]]
    response_data: Optional[Dict[str, Any]]


class SyncRequest(BaseModel):
    """Manual sync trigger; no types means a full sync"""
    sync_types: Optional[List[SyncType]] = Field(None, min_length=1)


class BatchSummary(BaseModel):
    sync_type: str
    status: str
    processed: int
    successful: int
    failed: int
    attempts: int
    error: Optional[str] = None


class SyncRunResponse(BaseModel):
    channel_id: str
    queued: bool = False
    failed: bool = False
    aborted: bool = False
    skipped: bool = False
    error: Optional[str] = None
    batches: List[BatchSummary] = []


class HotelSyncResponse(BaseModel):
    """One entry per channel synced by a hotel-wide sync"""
    hotel_id: str
    channels: List[SyncRunResponse] = []


class ChannelSyncStats(BaseModel):
    total: int
    success: int
    partial: int
    failed: int
    success_rate: Optional[float]
    last_status: Optional[str]
    last_sync_at: Optional[datetime]
