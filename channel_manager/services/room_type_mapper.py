"""
Room-Type Mapper

Internal room type <-> channel external room-type id, plus the
descriptive metadata each channel displays.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..errors import ChannelNotFound, ValidationError
from ..models.channel import Channel, RoomType
from ..models.inventory import InventoryRecord, RecordSyncStatus
from ..models.room_type_mapping import RoomTypeMapping

logger = logging.getLogger(__name__)

METADATA_FIELDS = (
    "external_room_type_name",
    "external_rate_plan_id",
    "max_occupancy",
    "bed_type",
    "amenities",
    "size_sqm",
)


class RoomTypeMapper:
    def __init__(self, db: Session):
        self.db = db

    def _get_channel(self, channel_id: str) -> Channel:
        channel = self.db.query(Channel).filter(Channel.id == channel_id).first()
        if not channel:
            raise ChannelNotFound(channel_id)
        return channel

    def upsert_mapping(
        self,
        channel_id: str,
        room_type: str,
        external_room_type_id: str,
        **metadata: Any
    ) -> RoomTypeMapping:
        """
        Create or replace the mapping for (channel, room type).
        The channel's future records for the room type go back to pending
        so the next push uses the new external id.
        """
        channel = self._get_channel(channel_id)
        known = self.db.query(RoomType).filter(
            and_(
                RoomType.hotel_id == channel.hotel_id,
                RoomType.code == room_type
            )
        ).first()
        if not known:
            raise ValidationError(f"Unknown room type {room_type} for hotel {channel.hotel_id}")
        if not external_room_type_id:
            raise ValidationError("external_room_type_id is required")

        unknown = set(metadata) - set(METADATA_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown mapping fields: {sorted(unknown)}")

        mapping = self.get_mapping(channel_id, room_type, active_only=False)
        if mapping is None:
            mapping = RoomTypeMapping(channel_id=channel_id, room_type=room_type)
            self.db.add(mapping)

        mapping.external_room_type_id = external_room_type_id
        mapping.is_active = True
        for field, value in metadata.items():
            setattr(mapping, field, value)

        self.db.query(InventoryRecord).filter(
            and_(
                InventoryRecord.channel_id == channel_id,
                InventoryRecord.room_type == room_type,
                InventoryRecord.date >= date.today()
            )
        ).update({
            InventoryRecord.sync_status: RecordSyncStatus.PENDING.value,
            InventoryRecord.version: InventoryRecord.version + 1,
        }, synchronize_session=False)

        self.db.commit()
        self.db.refresh(mapping)
        logger.info(f"Mapped {room_type} -> {external_room_type_id} on channel {channel.channel_name}")
        return mapping

    def get_mapping(
        self,
        channel_id: str,
        room_type: str,
        active_only: bool = True
    ) -> Optional[RoomTypeMapping]:
        query = self.db.query(RoomTypeMapping).filter(
            and_(
                RoomTypeMapping.channel_id == channel_id,
                RoomTypeMapping.room_type == room_type
            )
        )
        if active_only:
            query = query.filter(RoomTypeMapping.is_active == True)
        return query.first()

    def list_mappings(self, channel_id: str) -> List[RoomTypeMapping]:
        return self.db.query(RoomTypeMapping).filter(
            and_(
                RoomTypeMapping.channel_id == channel_id,
                RoomTypeMapping.is_active == True
            )
        ).order_by(RoomTypeMapping.room_type).all()

    def mappings_by_room_type(self, channel_id: str) -> Dict[str, RoomTypeMapping]:
        return {m.room_type: m for m in self.list_mappings(channel_id)}

    def resolve_internal_room_type(self, channel_id: str, external_id: str) -> str:
        """
        Internal room type for a pulled booking's room reference.

        Falls back to treating the value as an internal code when it names
        a room type of the hotel. Raises ValidationError otherwise.
        """
        mapping = self.db.query(RoomTypeMapping).filter(
            and_(
                RoomTypeMapping.channel_id == channel_id,
                RoomTypeMapping.external_room_type_id == str(external_id),
                RoomTypeMapping.is_active == True
            )
        ).first()
        if mapping:
            return mapping.room_type

        channel = self._get_channel(channel_id)
        known = self.db.query(RoomType).filter(
            and_(
                RoomType.hotel_id == channel.hotel_id,
                RoomType.code == str(external_id)
            )
        ).first()
        if known:
            return known.code

        raise ValidationError(
            f"No room-type mapping for {external_id} on channel {channel.channel_name}",
            record_key=str(external_id)
        )

    def remove_mapping(self, channel_id: str, room_type: str) -> bool:
        """Deactivate a mapping. Its records fail validation until remapped."""
        mapping = self.get_mapping(channel_id, room_type)
        if not mapping:
            return False
        mapping.is_active = False
        self.db.commit()
        logger.info(f"Removed mapping for {room_type} on channel {channel_id}")
        return True
