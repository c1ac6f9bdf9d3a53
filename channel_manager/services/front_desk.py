"""
Front Desk Gateway

Read-only view of what the front desk owns:
- physical room count per room type (room_types table)
- direct channel rate per room type and date (direct channel's rate plan)
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..models.channel import Channel, RoomType, DIRECT_CHANNEL_NAME
from ..models.rate_plan import RatePlan
from .rate_plan_engine import RatePlanEngine, get_rate_plan_engine

logger = logging.getLogger(__name__)


class FrontDeskGateway:
    def __init__(self, db: Session, engine: Optional[RatePlanEngine] = None):
        self.db = db
        self.engine = engine or get_rate_plan_engine()

    def get_room_type(self, hotel_id: str, room_type: str) -> Optional[RoomType]:
        return self.db.query(RoomType).filter(
            and_(
                RoomType.hotel_id == hotel_id,
                RoomType.code == room_type
            )
        ).first()

    def physical_rooms(self, hotel_id: str, room_type: str) -> int:
        """Physical rooms of a type; 0 when the type is unknown"""
        room = self.get_room_type(hotel_id, room_type)
        return int(room.physical_rooms or 0) if room else 0

    def room_types(self, hotel_id: str) -> List[RoomType]:
        return self.db.query(RoomType).filter(
            RoomType.hotel_id == hotel_id
        ).order_by(RoomType.code).all()

    def room_type_codes(self, hotel_id: str) -> List[str]:
        return [r.code for r in self.room_types(hotel_id)]

    def direct_channel(self, hotel_id: str) -> Optional[Channel]:
        return self.db.query(Channel).filter(
            and_(
                Channel.hotel_id == hotel_id,
                Channel.channel_name == DIRECT_CHANNEL_NAME,
                Channel.deleted_at.is_(None)
            )
        ).first()

    def direct_rate_plan(self, hotel_id: str, room_type: str) -> Optional[RatePlan]:
        direct = self.direct_channel(hotel_id)
        if not direct:
            return None
        return self.db.query(RatePlan).filter(
            and_(
                RatePlan.channel_id == direct.id,
                RatePlan.room_type == room_type,
                RatePlan.is_active == True
            )
        ).order_by(RatePlan.created_at).first()

    def direct_rate(self, hotel_id: str, room_type: str, stay_date: date) -> Optional[Decimal]:
        """Direct sell rate for a room type/date, None when there is no direct plan"""
        plan = self.direct_rate_plan(hotel_id, room_type)
        if not plan:
            return None
        return self.engine.compute_sell_rate(plan, stay_date)

    def direct_rates(self, hotel_id: str, room_type: str, dates: List[date]) -> Dict[date, Decimal]:
        """Batch form of direct_rate for parity checks"""
        plan = self.direct_rate_plan(hotel_id, room_type)
        if not plan:
            return {}
        return {d: self.engine.compute_sell_rate(plan, d) for d in dates}
