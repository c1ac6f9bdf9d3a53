"""
Room-Type Mapping Model

Maps an internal room type to one channel's external room-type id,
plus the descriptive metadata the channel displays.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, ForeignKey, DateTime, Integer, Numeric, Boolean, JSON, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from ..database import Base


class RoomTypeMapping(Base):
    __tablename__ = "channel_room_mappings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    channel_id = Column(String(36), ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)

    # Internal reference
    room_type = Column(String(50), nullable=False)

    # External identifiers
    external_room_type_id = Column(String(100), nullable=False)
    external_room_type_name = Column(String(200), nullable=True)
    external_rate_plan_id = Column(String(100), nullable=True)

    # Channel-facing metadata
    max_occupancy = Column(Integer, nullable=True)
    bed_type = Column(String(50), nullable=True)
    amenities = Column(JSON, nullable=True)
    size_sqm = Column(Numeric(7, 2), nullable=True)

    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    channel = relationship("Channel", back_populates="room_mappings")

    __table_args__ = (
        UniqueConstraint('channel_id', 'room_type', name='uq_room_mapping_channel_room'),
        Index("ix_room_mapping_external", "channel_id", "external_room_type_id"),
    )

    def __repr__(self):
        return f"<RoomTypeMapping {self.room_type} -> {self.external_room_type_id}>"
