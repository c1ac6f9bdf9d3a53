"""
Sync Log Service

Append-only audit trail of sync batches. A row is written once, when the
batch completes, and is never updated afterwards.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from ..models.channel import Channel
from ..models.sync_log import SyncLog, SyncType, SyncStatus, SYNC_DIRECTIONS
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

# Payloads are kept for debugging, trimmed to this many values
MAX_LOGGED_VALUES = 50


def outcome_status(processed: int, successful: int, failed: int) -> SyncStatus:
    """success (all ok), failed (none ok), partial (mixed)"""
    if failed == 0:
        return SyncStatus.SUCCESS
    if successful == 0:
        return SyncStatus.FAILED
    return SyncStatus.PARTIAL


def trim_payload(payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not payload:
        return payload
    trimmed = dict(payload)
    for key in ("values", "results", "bookings"):
        values = trimmed.get(key)
        if isinstance(values, list) and len(values) > MAX_LOGGED_VALUES:
            trimmed[key] = values[:MAX_LOGGED_VALUES]
            trimmed[f"{key}_truncated"] = len(values) - MAX_LOGGED_VALUES
    return trimmed


class SyncLogService:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        channel: Channel,
        sync_type: SyncType,
        processed: int,
        successful: int,
        failed: int,
        started_at: datetime,
        status: Optional[SyncStatus] = None,
        request_payload: Optional[Dict[str, Any]] = None,
        response_data: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        attempts: int = 1
    ) -> SyncLog:
        """Write one completed batch"""
        completed_at = datetime.utcnow()
        status = status or outcome_status(processed, successful, failed)
        sync_type = SyncType(sync_type)

        log = SyncLog(
            hotel_id=channel.hotel_id,
            channel_id=channel.id,
            sync_type=sync_type.value,
            direction=SYNC_DIRECTIONS[sync_type].value,
            status=SyncStatus(status).value,
            request_payload=trim_payload(request_payload),
            response_data=trim_payload(response_data),
            records_processed=processed,
            records_successful=successful,
            records_failed=failed,
            error_message=error_message[:2000] if error_message else None,
            attempts=attempts,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - started_at).total_seconds() * 1000),
        )
        self.db.add(log)
        self.db.commit()

        logger.sync_completed(
            channel_id=channel.id,
            sync_type=log.sync_type,
            status=log.status,
            processed=processed,
            successful=successful,
            failed=failed,
            duration_ms=log.duration_ms
        )
        return log

    def list_logs(
        self,
        hotel_id: str,
        channel_id: Optional[str] = None,
        sync_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[SyncLog]:
        """Newest first"""
        query = self.db.query(SyncLog).filter(SyncLog.hotel_id == hotel_id)
        if channel_id:
            query = query.filter(SyncLog.channel_id == channel_id)
        if sync_type:
            query = query.filter(SyncLog.sync_type == sync_type)
        if status:
            query = query.filter(SyncLog.status == status)
        return query.order_by(SyncLog.started_at.desc()).offset(offset).limit(limit).all()

    def get_log(self, log_id: str, hotel_id: Optional[str] = None) -> Optional[SyncLog]:
        query = self.db.query(SyncLog).filter(SyncLog.id == log_id)
        if hotel_id:
            query = query.filter(SyncLog.hotel_id == hotel_id)
        return query.first()

    def channel_stats(self, channel_id: str, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts per status for the channel health view"""
        query = self.db.query(SyncLog.status, func.count(SyncLog.id)).filter(
            SyncLog.channel_id == channel_id
        )
        if since:
            query = query.filter(SyncLog.started_at >= since)
        counts = {status: count for status, count in query.group_by(SyncLog.status).all()}

        last = self.db.query(SyncLog).filter(
            SyncLog.channel_id == channel_id
        ).order_by(SyncLog.started_at.desc()).first()

        total = sum(counts.values())
        return {
            "total": total,
            "success": counts.get(SyncStatus.SUCCESS.value, 0),
            "partial": counts.get(SyncStatus.PARTIAL.value, 0),
            "failed": counts.get(SyncStatus.FAILED.value, 0),
            "success_rate": round(counts.get(SyncStatus.SUCCESS.value, 0) / total * 100, 1) if total else None,
            "last_status": last.status if last else None,
            "last_sync_at": last.completed_at if last else None,
        }
