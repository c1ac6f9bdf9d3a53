"""
Rate Plan Model

Pricing strategy for one channel and one room type.

Pricing Formula:
1. seasonal override rate if the date falls in a seasonal range
2. otherwise base_rate (+ weekend_surcharge on weekend days)
3. sell_rate = round(rate * (1 + discount_percentage/100), 2)
"""

import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import Column, String, Numeric, ForeignKey, DateTime, Integer, Boolean, JSON, Index
from sqlalchemy.orm import relationship
from ..database import Base


class RatePlan(Base):
    __tablename__ = "channel_rate_plans"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    channel_id = Column(String(36), ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    room_type = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False, default="Standard Rate")

    base_rate = Column(Numeric(10, 2), nullable=False)
    weekend_surcharge = Column(Numeric(10, 2), default=0)
    # Negative = channel discount, positive = markup
    discount_percentage = Column(Numeric(5, 2), default=0)

    # [{"start": "2025-12-20", "end": "2026-01-05", "rate": "4500.00"}, ...]
    seasonal_rates = Column(JSON, nullable=True)

    min_stay = Column(Integer, nullable=True)
    max_stay = Column(Integer, nullable=True)
    advance_booking_days = Column(Integer, nullable=True)

    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    channel = relationship("Channel", back_populates="rate_plans")

    __table_args__ = (
        Index("ix_rate_plan_channel_room", "channel_id", "room_type"),
    )

    def seasonal_rate_for(self, check_date: date) -> Optional[Decimal]:
        """Return the first seasonal override covering check_date (inclusive range)"""
        for season in self.seasonal_ranges():
            if season["start"] <= check_date <= season["end"]:
                return season["rate"]
        return None

    def seasonal_ranges(self) -> List[dict]:
        ranges = []
        for entry in self.seasonal_rates or []:
            ranges.append({
                "start": date.fromisoformat(str(entry["start"])),
                "end": date.fromisoformat(str(entry["end"])),
                "rate": Decimal(str(entry["rate"])),
            })
        return ranges

    def __repr__(self):
        return f"<RatePlan {self.name} channel={self.channel_id} room_type={self.room_type}>"
