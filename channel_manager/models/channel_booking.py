"""
Channel Booking Models

- ChannelBooking: a reservation originating from an OTA or the direct desk
- BookingConflict: human-resolvable queue of bookings the ledger rejected
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Date, Numeric, Text, ForeignKey, DateTime, Integer, Boolean, JSON, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from ..database import Base


class ChannelBookingStatus(str, enum.Enum):
    PENDING = "pending"  # Recorded but not confirmed (ledger conflict)
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


class ReconciliationState(str, enum.Enum):
    RECONCILED = "reconciled"  # Rooms allocated in the ledger
    CONFLICT = "conflict"      # Ledger rejected, waiting in the conflict queue
    RELEASED = "released"      # Allocation given back (cancel / no-show)


class ConflictStatus(str, enum.Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ChannelBooking(Base):
    __tablename__ = "channel_bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    hotel_id = Column(String(36), nullable=False)
    channel_id = Column(String(36), ForeignKey("channels.id", ondelete="SET NULL"), nullable=True)
    rate_plan_id = Column(String(36), ForeignKey("channel_rate_plans.id", ondelete="SET NULL"), nullable=True)

    external_booking_id = Column(String(255), nullable=False)

    # Guest
    guest_name = Column(String(200), nullable=False)
    guest_email = Column(String(255), nullable=True)
    guest_phone = Column(String(30), nullable=True)

    # Stay
    room_type = Column(String(50), nullable=False)
    rooms = Column(Integer, default=1, nullable=False)
    adults = Column(Integer, default=1)
    children = Column(Integer, default=0)
    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=False)

    # Money - commission captured at ingestion, never recalculated
    room_rate = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="INR")
    channel_commission = Column(Numeric(5, 2), default=0)
    net_rate = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), default=ChannelBookingStatus.CONFIRMED.value, nullable=False)
    reconciliation_state = Column(String(20), default=ReconciliationState.RECONCILED.value, nullable=False)

    is_modified = Column(Boolean, default=False)
    modification_notes = Column(Text, nullable=True)

    raw_payload = Column(JSON, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    channel = relationship("Channel")
    conflicts = relationship("BookingConflict", back_populates="booking")

    __table_args__ = (
        UniqueConstraint('channel_id', 'external_booking_id', name='uq_channel_booking_external'),
        Index("ix_channel_booking_hotel", "hotel_id", "status"),
        Index("ix_channel_booking_stay", "hotel_id", "room_type", "check_in_date"),
    )

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days

    def __repr__(self):
        return f"<ChannelBooking {self.external_booking_id} {self.status}>"


class BookingConflict(Base):
    """
    A booking the ledger could not accept.
    Bookings are never discarded; they wait here until the hotel resolves
    the conflict with the OTA.
    """
    __tablename__ = "booking_conflicts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    hotel_id = Column(String(36), nullable=False)
    channel_id = Column(String(36), ForeignKey("channels.id", ondelete="SET NULL"), nullable=True)
    booking_id = Column(String(36), ForeignKey("channel_bookings.id", ondelete="CASCADE"), nullable=False)

    reason = Column(String(50), nullable=False, default="oversell")
    details = Column(JSON, nullable=True)

    status = Column(String(20), default=ConflictStatus.OPEN.value, nullable=False)
    resolution_note = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    booking = relationship("ChannelBooking", back_populates="conflicts")

    __table_args__ = (
        Index("ix_conflict_hotel_status", "hotel_id", "status"),
    )

    def __repr__(self):
        return f"<BookingConflict {self.reason} booking={self.booking_id} {self.status}>"
