"""
Channel Models

- Channel: one OTA (or the hotel's direct desk) connection for one hotel
- RoomType: the front desk's physical stock per room-type code
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Text, Numeric, DateTime, Integer, Boolean, JSON, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from ..database import Base


DIRECT_CHANNEL_NAME = "direct"


class ChannelStatus(str, enum.Enum):
    INACTIVE = "inactive"
    TESTING = "testing"
    ACTIVE = "active"
    ERROR = "error"


class Channel(Base):
    """
    Connection record for one channel of one hotel.

    Lifecycle:
    testing -> active (verification sync ok)
    active  -> error (auth failure or N consecutive failed runs)
    any     -> inactive (disconnect, soft delete)
    """
    __tablename__ = "channels"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    hotel_id = Column(String(36), nullable=False)

    # Catalogue id ("booking_com", "agoda", ...) or "direct"
    channel_name = Column(String(50), nullable=False)
    display_name = Column(String(100), nullable=False)

    status = Column(String(20), default=ChannelStatus.TESTING.value, nullable=False)

    # Connection
    api_endpoint = Column(String(500), nullable=True)
    credentials = Column(JSON, nullable=True)  # Opaque, never returned by the API
    property_id = Column(String(100), nullable=True)  # Property id on the OTA side

    # Settings
    auto_sync = Column(Boolean, default=True)
    rate_parity = Column(Boolean, default=False)
    inventory_buffer = Column(Integer, default=0)
    min_stay = Column(Integer, nullable=True)
    max_stay = Column(Integer, nullable=True)
    advance_booking_days = Column(Integer, nullable=True)
    cutoff_time = Column(String(5), nullable=True)  # "HH:MM" hotel-local, same-day arrivals
    commission_rate = Column(Numeric(5, 2), default=0)

    # Scheduling
    sync_frequency_minutes = Column(Integer, default=15)
    last_sync_at = Column(DateTime, nullable=True)
    next_sync_at = Column(DateTime, nullable=True)
    consecutive_failures = Column(Integer, default=0)
    last_error = Column(Text, nullable=True)

    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)  # Soft delete

    # Relationships
    rate_plans = relationship("RatePlan", back_populates="channel")
    room_mappings = relationship("RoomTypeMapping", back_populates="channel")

    __table_args__ = (
        Index("ix_channel_hotel", "hotel_id"),
        Index("ix_channel_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ChannelStatus.ACTIVE.value and self.deleted_at is None

    @property
    def is_direct(self) -> bool:
        return self.channel_name == DIRECT_CHANNEL_NAME

    def settings_snapshot(self) -> dict:
        return {
            "auto_sync": bool(self.auto_sync),
            "rate_parity": bool(self.rate_parity),
            "inventory_buffer": self.inventory_buffer or 0,
            "min_stay": self.min_stay,
            "max_stay": self.max_stay,
            "advance_booking_days": self.advance_booking_days,
            "cutoff_time": self.cutoff_time,
            "commission_rate": str(self.commission_rate or 0),
        }

    def __repr__(self):
        return f"<Channel {self.channel_name} hotel={self.hotel_id} status={self.status}>"


class RoomType(Base):
    """
    Physical stock for one room-type code of a hotel.
    Owned by the front desk; the ledger only reads physical_rooms.
    """
    __tablename__ = "room_types"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    hotel_id = Column(String(36), nullable=False)
    code = Column(String(50), nullable=False)  # "standard", "deluxe", "suite", ...
    name = Column(String(100), nullable=True)
    physical_rooms = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('hotel_id', 'code', name='uq_room_type_hotel_code'),
    )

    def __repr__(self):
        return f"<RoomType {self.code} hotel={self.hotel_id} rooms={self.physical_rooms}>"
