# Models package
from .channel import Channel, ChannelStatus, RoomType, DIRECT_CHANNEL_NAME
from .rate_plan import RatePlan
from .inventory import InventoryRecord, InventoryAllocation, RecordSyncStatus
from .room_type_mapping import RoomTypeMapping
from .sync_log import SyncLog, SyncType, SyncDirection, SyncStatus, SYNC_DIRECTIONS
from .channel_booking import (
    ChannelBooking,
    ChannelBookingStatus,
    ReconciliationState,
    BookingConflict,
    ConflictStatus
)

__all__ = [
    "Channel", "ChannelStatus", "RoomType", "DIRECT_CHANNEL_NAME",
    "RatePlan",
    "InventoryRecord", "InventoryAllocation", "RecordSyncStatus",
    "RoomTypeMapping",
    "SyncLog", "SyncType", "SyncDirection", "SyncStatus", "SYNC_DIRECTIONS",
    "ChannelBooking", "ChannelBookingStatus", "ReconciliationState",
    "BookingConflict", "ConflictStatus",
]
