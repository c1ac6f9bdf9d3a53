"""
Channel Manager Errors

Domain exceptions raised by the core services:
- Connector errors (transient vs authentication)
- Record-level validation errors
- Ledger conflicts (oversell) and rate-parity violations
- Registry lookups and state checks
"""

from datetime import date
from typing import Optional


class ChannelManagerError(Exception):
    """Base class for every error raised by the channel manager core"""


# ==================
# Connector Errors
# ==================

class ConnectorError(ChannelManagerError):
    """A connector call failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ConnectorTransientError(ConnectorError):
    """Network error, timeout, 429 or 5xx - retried with backoff"""


class ConnectorAuthError(ConnectorError):
    """Credentials rejected by the channel - never retried"""


# ==================
# Record / Business Errors
# ==================

class ValidationError(ChannelManagerError):
    """A single record or payload is malformed. Does not abort a batch."""

    def __init__(self, message: str, record_key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.record_key = record_key


class OversellRejected(ChannelManagerError):
    """Accepting the reservation would sell more rooms than physically exist"""

    def __init__(
        self,
        room_type: str,
        stay_date: date,
        requested: int,
        sold: int,
        ceiling: int
    ):
        self.room_type = room_type
        self.stay_date = stay_date
        self.requested = requested
        self.sold = sold
        self.ceiling = ceiling
        super().__init__(
            f"Oversell rejected for {room_type} on {stay_date.isoformat()}: "
            f"requested {requested}, sold {sold}, ceiling {ceiling}"
        )


class ParityViolation(ChannelManagerError):
    """Channel rate differs from the direct rate while rate parity is on"""

    def __init__(self, room_type: str, stay_date: date, channel_rate, direct_rate):
        self.room_type = room_type
        self.stay_date = stay_date
        self.channel_rate = channel_rate
        self.direct_rate = direct_rate
        super().__init__(
            f"Rate parity violation for {room_type} on {stay_date.isoformat()}: "
            f"channel {channel_rate} != direct {direct_rate}"
        )


# ==================
# Registry Errors
# ==================

class RecordNotFound(ChannelManagerError):
    """A referenced booking, conflict or rate plan does not exist"""


class ChannelNotFound(RecordNotFound):
    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        super().__init__(f"Channel {channel_id} not found")


class DuplicateChannel(ChannelManagerError):
    def __init__(self, hotel_id: str, channel_name: str):
        self.hotel_id = hotel_id
        self.channel_name = channel_name
        super().__init__(f"Hotel {hotel_id} already has a {channel_name} channel")


class ChannelStateError(ChannelManagerError):
    """Operation not allowed in the channel's current lifecycle status"""
