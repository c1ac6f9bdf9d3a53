"""
Sync Log Model

Append-only audit record of one sync batch against one channel.
Rows are written once the batch completes and never updated.
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Text, ForeignKey, DateTime, Integer, JSON, Index
from ..database import Base


class SyncType(str, enum.Enum):
    INVENTORY = "inventory"
    RATES = "rates"
    AVAILABILITY = "availability"
    BOOKING_IMPORT = "booking_import"


class SyncDirection(str, enum.Enum):
    PUSH = "push"
    PULL = "pull"


class SyncStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


SYNC_DIRECTIONS = {
    SyncType.INVENTORY: SyncDirection.PUSH,
    SyncType.RATES: SyncDirection.PUSH,
    SyncType.AVAILABILITY: SyncDirection.PUSH,
    SyncType.BOOKING_IMPORT: SyncDirection.PULL,
}


class SyncLog(Base):
    __tablename__ = "channel_sync_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    hotel_id = Column(String(36), nullable=False)
    channel_id = Column(String(36), ForeignKey("channels.id", ondelete="SET NULL"), nullable=True)

    sync_type = Column(String(20), nullable=False)
    direction = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False)

    # Request/Response (sanitized - no credentials)
    request_payload = Column(JSON, nullable=True)
    response_data = Column(JSON, nullable=True)

    records_processed = Column(Integer, default=0)
    records_successful = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)

    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, default=1)

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_sync_log_channel", "channel_id", "started_at"),
        Index("ix_sync_log_hotel", "hotel_id", "started_at"),
        Index("ix_sync_log_status", "status"),
    )

    def __repr__(self):
        return f"<SyncLog {self.sync_type} {self.direction} status={self.status}>"
