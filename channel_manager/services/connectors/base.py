"""
Connector Contract

Every OTA integration implements the same four calls:
- verify(): handshake with the credentials on the channel
- push_rates(property_id, records) -> SyncResult
- push_availability(property_id, records) -> SyncResult
- pull_bookings(property_id, since) -> list of raw booking payloads

Pushes carry absolute values (rate, rooms available), never deltas, so
pushing the same record twice leaves the OTA in the same state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass
class PushRecord:
    """One inventory record as sent to a channel"""
    key: str  # Inventory record id
    room_type: str
    external_room_type_id: str
    date: date
    availability: int
    rate: Optional[Decimal] = None
    external_rate_plan_id: Optional[str] = None
    stop_sell: bool = False
    closed_to_arrival: bool = False
    closed_to_departure: bool = False
    min_stay: Optional[int] = None
    max_stay: Optional[int] = None

    def rate_payload(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "room_type_id": self.external_room_type_id,
            "rate_plan_id": self.external_rate_plan_id,
            "date": self.date.isoformat(),
            # Rates travel as strings with 2 decimals
            "rate": f"{Decimal(self.rate):.2f}" if self.rate is not None else None,
        }

    def availability_payload(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "room_type_id": self.external_room_type_id,
            "date": self.date.isoformat(),
            "availability": self.availability,
            "stop_sell": self.stop_sell,
            "closed_to_arrival": self.closed_to_arrival,
            "closed_to_departure": self.closed_to_departure,
            "min_stay": self.min_stay,
            "max_stay": self.max_stay,
        }


@dataclass
class RecordResult:
    key: str
    success: bool
    error: Optional[str] = None


@dataclass
class SyncResult:
    """Per-record outcome of one push call"""
    results: List[RecordResult] = field(default_factory=list)
    raw_response: Optional[Dict[str, Any]] = None

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def by_key(self) -> Dict[str, RecordResult]:
        return {r.key: r for r in self.results}

    @classmethod
    def all_ok(cls, records: List[PushRecord], raw_response: Optional[Dict] = None) -> "SyncResult":
        return cls(
            results=[RecordResult(key=r.key, success=True) for r in records],
            raw_response=raw_response
        )


@dataclass
class VerifyResult:
    success: bool
    property_name: Optional[str] = None
    error: Optional[str] = None


class BaseConnector(ABC):
    """
    Uniform contract every OTA integration implements.

    Whole-call failures raise ConnectorTransientError (retried by the
    orchestrator) or ConnectorAuthError (channel moves to error).
    Record-level failures are reported inside SyncResult.
    """

    name: str = "base"

    @abstractmethod
    def verify(self) -> VerifyResult:
        ...

    @abstractmethod
    def push_rates(self, property_id: str, records: List[PushRecord]) -> SyncResult:
        ...

    @abstractmethod
    def push_availability(self, property_id: str, records: List[PushRecord]) -> SyncResult:
        ...

    @abstractmethod
    def pull_bookings(self, property_id: str, since: Optional[datetime]) -> List[Dict[str, Any]]:
        ...

    def close(self) -> None:
        """Release transport resources"""
