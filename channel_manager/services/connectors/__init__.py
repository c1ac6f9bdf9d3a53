"""
Connectors

Catalogue of supported OTAs and the factory that builds the connector
for a channel record.
"""

from typing import Any, Dict, List, Optional

from ...models.channel import Channel, DIRECT_CHANNEL_NAME
from .base import BaseConnector, PushRecord, RecordResult, SyncResult, VerifyResult
from .direct import DirectConnector
from .http import HttpConnector


# Catalogue id -> display name, partner API endpoint, default commission (%)
SUPPORTED_CHANNELS: Dict[str, Dict[str, Any]] = {
    "booking_com": {
        "name": "Booking.com",
        "api_endpoint": "https://distribution-xml.booking.com",
        "commission_rate": 15,
    },
    "makemytrip": {
        "name": "MakeMyTrip",
        "api_endpoint": "https://partners.makemytrip.com/api",
        "commission_rate": 18,
    },
    "agoda": {
        "name": "Agoda",
        "api_endpoint": "https://affiliates.agoda.com/xmlapi",
        "commission_rate": 16,
    },
    "expedia": {
        "name": "Expedia",
        "api_endpoint": "https://www.expediaconnectivity.com/eqc",
        "commission_rate": 15,
    },
    "goibibo": {
        "name": "Goibibo",
        "api_endpoint": "https://partners.goibibo.com/api",
        "commission_rate": 20,
    },
    "cleartrip": {
        "name": "Cleartrip",
        "api_endpoint": "https://partners.cleartrip.com/api",
        "commission_rate": 17,
    },
    "traveloka": {
        "name": "Traveloka",
        "api_endpoint": "https://affiliates.traveloka.com/api",
        "commission_rate": 18,
    },
    "airbnb": {
        "name": "Airbnb",
        "api_endpoint": "https://api.airbnb.com/v3",
        "commission_rate": 3,
    },
}


def supported_channel_list() -> List[Dict[str, Any]]:
    return [
        {"id": key, **value}
        for key, value in SUPPORTED_CHANNELS.items()
    ]


def get_connector(channel: Channel, transport: Optional[Any] = None) -> BaseConnector:
    """Build the connector for a channel record"""
    if channel.channel_name == DIRECT_CHANNEL_NAME:
        return DirectConnector()

    endpoint = channel.api_endpoint
    if not endpoint and channel.channel_name in SUPPORTED_CHANNELS:
        endpoint = SUPPORTED_CHANNELS[channel.channel_name]["api_endpoint"]

    return HttpConnector(
        api_endpoint=endpoint,
        property_id=channel.property_id,
        credentials=channel.credentials,
        channel_name=channel.channel_name,
        transport=transport,
    )


__all__ = [
    "BaseConnector", "PushRecord", "RecordResult", "SyncResult", "VerifyResult",
    "DirectConnector", "HttpConnector",
    "SUPPORTED_CHANNELS", "supported_channel_list", "get_connector",
]
