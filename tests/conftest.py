"""
Shared fixtures for the channel manager tests

- A file-backed SQLite database per test (threads and TestClient share it)
- A seeded hotel: deluxe (10 rooms) and standard (5 rooms), the direct
  channel and two active OTA channels with rate plans and mappings
- FakeConnector: scripted connector that records every call
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from sqlalchemy.orm import sessionmaker

from channel_manager.config import settings
from channel_manager.database import Base, build_engine
from channel_manager.models import (
    Channel,
    ChannelStatus,
    RatePlan,
    RoomType,
    RoomTypeMapping,
)
from channel_manager.services.connectors import (
    BaseConnector,
    PushRecord,
    RecordResult,
    SyncResult,
    VerifyResult,
)
from channel_manager.services.channel_registry import ChannelRegistry
from channel_manager.services.inventory_ledger import InventoryLedger

HOTEL_ID = "hotel-1"
SYNC_DAYS = 10


class FakeConnector(BaseConnector):
    """
    Connector double.

    errors:    exceptions raised by the next calls, in call order (None = no error)
    fail_keys: record keys the channel rejects
    bookings:  payloads returned by pull_bookings
    hooks:     {method_name: callable} run before a call returns
    """

    name = "fake"

    def __init__(
        self,
        errors: Optional[List[Optional[Exception]]] = None,
        fail_keys=None,
        bookings: Optional[List[Dict[str, Any]]] = None,
        verify_result: Optional[VerifyResult] = None,
        hooks: Optional[Dict[str, Any]] = None
    ):
        self.errors = list(errors or [])
        self.fail_keys = set(fail_keys or [])
        self.bookings = list(bookings or [])
        self.verify_result = verify_result or VerifyResult(success=True, property_name="Test Property")
        self.hooks = hooks or {}
        self.calls: List[str] = []
        self.pushed: Dict[str, List[PushRecord]] = {"push_rates": [], "push_availability": []}
        self.since_values = []
        self.closed = 0

    def _step(self, method: str) -> None:
        self.calls.append(method)
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        hook = self.hooks.get(method)
        if hook:
            hook()

    def _results(self, records: List[PushRecord]) -> SyncResult:
        return SyncResult(results=[
            RecordResult(
                key=r.key,
                success=r.key not in self.fail_keys,
                error="Rejected by channel" if r.key in self.fail_keys else None
            )
            for r in records
        ])

    def verify(self) -> VerifyResult:
        self.calls.append("verify")
        return self.verify_result

    def push_rates(self, property_id: str, records: List[PushRecord]) -> SyncResult:
        self._step("push_rates")
        self.pushed["push_rates"].extend(records)
        return self._results(records)

    def push_availability(self, property_id: str, records: List[PushRecord]) -> SyncResult:
        self._step("push_availability")
        self.pushed["push_availability"].extend(records)
        return self._results(records)

    def pull_bookings(self, property_id: str, since):
        self.since_values.append(since)
        self._step("pull_bookings")
        return list(self.bookings)

    def close(self) -> None:
        self.closed += 1


# ==================
# Database
# ==================

@pytest.fixture(autouse=True)
def short_horizon(monkeypatch):
    """Keep materialization small"""
    monkeypatch.setattr(settings, "channel_sync_days", SYNC_DAYS)


@pytest.fixture
def engine(tmp_path):
    # Import models so they register on Base.metadata
    from channel_manager import models  # noqa: F401

    engine = build_engine(f"sqlite:///{tmp_path / 'channel_manager_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ==================
# Seed Data
# ==================

def add_channel(
    db,
    channel_name: str,
    hotel_id: str = HOTEL_ID,
    status: str = ChannelStatus.ACTIVE.value,
    **fields
) -> Channel:
    channel = Channel(
        hotel_id=hotel_id,
        channel_name=channel_name,
        display_name=fields.pop("display_name", channel_name.title()),
        status=status,
        api_endpoint=fields.pop("api_endpoint", f"https://{channel_name}.test/api"),
        credentials=fields.pop("credentials", {"api_key": "secret"}),
        property_id=fields.pop("property_id", f"{channel_name}-prop"),
        commission_rate=fields.pop("commission_rate", Decimal("15")),
        sync_frequency_minutes=fields.pop("sync_frequency_minutes", 15),
        **fields
    )
    db.add(channel)
    db.commit()
    db.refresh(channel)
    return channel


def add_rate_plan(db, channel: Channel, room_type: str = "deluxe", **fields) -> RatePlan:
    plan = RatePlan(
        channel_id=channel.id,
        room_type=room_type,
        name=fields.pop("name", "Standard Rate"),
        base_rate=fields.pop("base_rate", Decimal("2000")),
        weekend_surcharge=fields.pop("weekend_surcharge", Decimal("0")),
        discount_percentage=fields.pop("discount_percentage", Decimal("0")),
        seasonal_rates=fields.pop("seasonal_rates", []),
        is_active=fields.pop("is_active", True),
        **fields
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


def add_mapping(db, channel: Channel, room_type: str = "deluxe", external_id: str = "EXT-DLX") -> RoomTypeMapping:
    mapping = RoomTypeMapping(
        channel_id=channel.id,
        room_type=room_type,
        external_room_type_id=external_id,
        external_rate_plan_id=f"{external_id}-BAR",
        is_active=True,
    )
    db.add(mapping)
    db.commit()
    return mapping


@pytest.fixture
def hotel(db):
    """
    deluxe: 10 rooms, sold on direct, booking_com and agoda
    standard: 5 rooms, sold on direct only
    Records are materialized for every plan over the horizon.
    """
    db.add_all([
        RoomType(hotel_id=HOTEL_ID, code="deluxe", name="Deluxe", physical_rooms=10),
        RoomType(hotel_id=HOTEL_ID, code="standard", name="Standard", physical_rooms=5),
    ])
    db.commit()

    direct = ChannelRegistry(db).ensure_direct_channel(HOTEL_ID)
    direct_deluxe = add_rate_plan(db, direct, "deluxe")
    direct_standard = add_rate_plan(db, direct, "standard", base_rate=Decimal("1500"))

    booking_com = add_channel(db, "booking_com")
    booking_plan = add_rate_plan(db, booking_com, "deluxe")
    add_mapping(db, booking_com, "deluxe", "BDC-DLX")

    agoda = add_channel(db, "agoda", commission_rate=Decimal("18"))
    agoda_plan = add_rate_plan(db, agoda, "deluxe")
    add_mapping(db, agoda, "deluxe", "AGD-DLX")

    ledger = InventoryLedger(db)
    for channel in (direct, booking_com, agoda):
        ledger.materialize_channel(channel)

    return SimpleNamespace(
        hotel_id=HOTEL_ID,
        direct=direct,
        booking_com=booking_com,
        agoda=agoda,
        direct_deluxe=direct_deluxe,
        direct_standard=direct_standard,
        booking_plan=booking_plan,
        agoda_plan=agoda_plan,
    )


@pytest.fixture
def stay():
    """A two-night stay inside the horizon"""
    check_in = date.today() + timedelta(days=2)
    return SimpleNamespace(check_in=check_in, check_out=check_in + timedelta(days=2))


def booking_payload(external_id: str = "BDC-1001", **overrides) -> Dict[str, Any]:
    check_in = date.today() + timedelta(days=2)
    payload = {
        "external_booking_id": external_id,
        "status": "confirmed",
        "guest_name": "Asha Rao",
        "guest_email": "asha@example.com",
        "room_type_id": "BDC-DLX",
        "rooms": 1,
        "adults": 2,
        "check_in": check_in.isoformat(),
        "check_out": (check_in + timedelta(days=2)).isoformat(),
        "amount": "4000.00",
        "currency": "INR",
    }
    payload.update(overrides)
    return payload


def make_booking(channel: Channel, external_id: str, check_in: date, check_out: date, rooms: int = 1, room_type: str = "deluxe"):
    """Transient booking for direct ledger calls"""
    from channel_manager.models import ChannelBooking

    return ChannelBooking(
        hotel_id=channel.hotel_id,
        channel_id=channel.id,
        external_booking_id=external_id,
        guest_name="Test Guest",
        room_type=room_type,
        rooms=rooms,
        check_in_date=check_in,
        check_out_date=check_out,
        room_rate=Decimal("2000"),
        net_rate=Decimal("1700"),
    )
