"""
Inventory Ledger Models

Per-channel, per-rate-plan, per-room-type, per-date inventory.
This is the source of truth for what every channel may sell.
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, Boolean, Integer, Numeric, Text, ForeignKey, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from ..database import Base


class RecordSyncStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class InventoryRecord(Base):
    """
    Daily inventory for one channel rate plan.

    Invariants:
    - available + sold == total
    - available >= 0
    - per (hotel, room_type, date): sum(sold) <= physical - sum(active buffers)

    `version` is bumped by SQLAlchemy on every UPDATE and checked in the
    WHERE clause, so a concurrent writer gets StaleDataError instead of a
    lost update.
    """
    __tablename__ = "channel_inventory"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    hotel_id = Column(String(36), nullable=False)
    channel_id = Column(String(36), ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    rate_plan_id = Column(String(36), ForeignKey("channel_rate_plans.id", ondelete="CASCADE"), nullable=False)
    room_type = Column(String(50), nullable=False)
    date = Column(Date, nullable=False)

    # Room counts
    total_rooms = Column(Integer, default=0, nullable=False)
    available_rooms = Column(Integer, default=0, nullable=False)
    sold_rooms = Column(Integer, default=0, nullable=False)

    sell_rate = Column(Numeric(10, 2), nullable=True)

    # Restrictions
    stop_sell = Column(Boolean, default=False)
    closed_to_arrival = Column(Boolean, default=False)
    closed_to_departure = Column(Boolean, default=False)
    min_stay = Column(Integer, nullable=True)
    max_stay = Column(Integer, nullable=True)

    # Sync tracking
    sync_status = Column(String(20), default=RecordSyncStatus.PENDING.value)
    last_synced_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    channel = relationship("Channel")
    rate_plan = relationship("RatePlan")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint('channel_id', 'rate_plan_id', 'room_type', 'date', name='uq_inventory_channel_plan_room_date'),
        CheckConstraint('available_rooms >= 0', name='ck_inventory_available_non_negative'),
        # Cross-channel ceiling lookups
        Index('ix_inventory_stock_key', 'hotel_id', 'room_type', 'date'),
        Index('ix_inventory_channel_sync', 'channel_id', 'sync_status'),
    )

    def check_invariant(self) -> bool:
        return (
            self.available_rooms >= 0
            and self.available_rooms + self.sold_rooms == self.total_rooms
        )

    def __repr__(self):
        return (
            f"<InventoryRecord {self.room_type} {self.date} channel={self.channel_id} "
            f"{self.available_rooms}/{self.sold_rooms}/{self.total_rooms}>"
        )


class InventoryAllocation(Base):
    """
    Rooms taken from one inventory record by one reservation.
    Releasing an allocation gives exactly these rooms back.
    """
    __tablename__ = "inventory_allocations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    record_id = Column(String(36), ForeignKey("channel_inventory.id", ondelete="CASCADE"), nullable=False)
    booking_id = Column(String(36), ForeignKey("channel_bookings.id", ondelete="SET NULL"), nullable=True)

    channel_id = Column(String(36), nullable=False)
    room_type = Column(String(50), nullable=False)
    date = Column(Date, nullable=False)
    rooms = Column(Integer, nullable=False)

    released_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    record = relationship("InventoryRecord")

    __table_args__ = (
        Index('ix_allocation_booking', 'booking_id'),
    )

    @property
    def is_released(self) -> bool:
        return self.released_at is not None

    def __repr__(self):
        return f"<InventoryAllocation {self.room_type} {self.date} rooms={self.rooms}>"
