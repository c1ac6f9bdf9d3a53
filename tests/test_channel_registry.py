"""
Tests for the Channel Registry and Room-Type Mapper

Tests cover:
- Registration: catalogue defaults, duplicates, unknown channels
- Verification: testing -> active, materialization, scheduling
- Deactivation: soft delete, buffer no longer held back
- Settings, credentials, reconnect
- Rate plans: materialize on add, re-price on edit
- Room-type mappings: upsert, metadata, removal, resolution
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from channel_manager.errors import (
    ChannelNotFound,
    ChannelStateError,
    DuplicateChannel,
    RecordNotFound,
    ValidationError,
)
from channel_manager.models import (
    ChannelStatus,
    InventoryRecord,
    RecordSyncStatus,
)
from channel_manager.services.channel_registry import ChannelRegistry
from channel_manager.services.connectors import VerifyResult
from channel_manager.services.inventory_ledger import InventoryLedger
from channel_manager.services.room_type_mapper import RoomTypeMapper

from conftest import HOTEL_ID, SYNC_DAYS, FakeConnector, add_channel


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def scheduler():
    return MagicMock()


@pytest.fixture
def registry(db, hotel, connector, scheduler):
    return ChannelRegistry(db, connector_factory=lambda channel: connector, scheduler=scheduler)


def records_of(db, channel_id, room_type="deluxe"):
    db.expire_all()
    return db.query(InventoryRecord).filter(
        InventoryRecord.channel_id == channel_id,
        InventoryRecord.room_type == room_type
    ).order_by(InventoryRecord.date).all()


class TestRegister:
    """Tests for channel registration"""

    def test_register_uses_catalogue_defaults(self, registry):
        channel = registry.register_channel(HOTEL_ID, {
            "channel_name": "makemytrip",
            "credentials": {"api_key": "mmt-key"},
            "property_id": "MMT-42",
        })

        assert channel.status == ChannelStatus.TESTING.value
        assert channel.display_name == "MakeMyTrip"
        assert channel.commission_rate == Decimal("18")
        assert channel.api_endpoint == "https://partners.makemytrip.com/api"
        assert channel.credentials == {"api_key": "mmt-key"}

    def test_explicit_commission_wins(self, registry):
        channel = registry.register_channel(HOTEL_ID, {
            "channel_name": "expedia",
            "commission_rate": "12.5",
        })
        assert channel.commission_rate == Decimal("12.5")

    def test_duplicate_channel_rejected(self, registry):
        with pytest.raises(DuplicateChannel):
            registry.register_channel(HOTEL_ID, {"channel_name": "booking_com"})

    def test_same_channel_for_another_hotel(self, registry):
        channel = registry.register_channel("hotel-2", {"channel_name": "booking_com"})
        assert channel.hotel_id == "hotel-2"

    def test_reregister_after_deactivation(self, registry, hotel):
        registry.deactivate_channel(hotel.agoda.id)

        channel = registry.register_channel(HOTEL_ID, {"channel_name": "agoda"})

        assert channel.id != hotel.agoda.id
        assert channel.status == ChannelStatus.TESTING.value

    def test_unknown_channel_needs_endpoint(self, registry):
        with pytest.raises(ValidationError):
            registry.register_channel(HOTEL_ID, {"channel_name": "hostelworld"})

        channel = registry.register_channel(HOTEL_ID, {
            "channel_name": "hostelworld",
            "api_endpoint": "https://partners.hostelworld.test/api",
        })
        assert channel.commission_rate == Decimal("0")

    def test_direct_cannot_be_registered(self, registry):
        with pytest.raises(ValidationError):
            registry.register_channel(HOTEL_ID, {"channel_name": "direct"})

    def test_invalid_settings_rejected(self, registry):
        with pytest.raises(ValidationError):
            registry.register_channel(HOTEL_ID, {"channel_name": "expedia", "cutoff_time": "25:00"})

        with pytest.raises(ValidationError):
            registry.register_channel(HOTEL_ID, {"channel_name": "expedia", "min_stay": 3, "max_stay": 2})

    def test_supported_channels(self, registry):
        ids = [c["id"] for c in registry.supported_channels()]
        assert "booking_com" in ids
        assert "direct" not in ids


class TestVerify:
    """Tests for the verification handshake"""

    @pytest.fixture
    def expedia(self, registry):
        channel = registry.register_channel(HOTEL_ID, {
            "channel_name": "expedia",
            "credentials": {"api_key": "exp-key"},
            "inventory_buffer": 2,
        })
        registry.add_rate_plan(channel.id, {"room_type": "deluxe", "name": "BAR", "base_rate": "2100"})
        return channel

    def test_testing_channel_has_no_records(self, db, expedia):
        assert records_of(db, expedia.id) == []

    def test_verify_activates_and_materializes(self, db, registry, connector, scheduler, expedia):
        outcome = registry.verify_channel(expedia.id)

        assert outcome.success is True
        assert outcome.property_name == "Test Property"
        assert outcome.channel.status == ChannelStatus.ACTIVE.value
        assert outcome.channel.next_sync_at is not None
        assert connector.calls == ["verify"]
        assert connector.closed == 1

        records = records_of(db, expedia.id)
        assert len(records) == SYNC_DAYS
        assert all(r.sync_status == RecordSyncStatus.PENDING.value for r in records)
        assert records[0].sell_rate == Decimal("2100.00")

        scheduler.add_channel.assert_called_once()
        scheduler.trigger_full_sync.assert_called_once_with(expedia.id)

    def test_new_buffer_holds_back_shared_stock(self, db, registry, hotel, expedia):
        registry.verify_channel(expedia.id)

        assert InventoryLedger(db).ceiling(HOTEL_ID, "deluxe") == 8
        assert records_of(db, hotel.agoda.id)[0].available_rooms == 8

    def test_failed_verification_stays_testing(self, db, registry, connector, scheduler, expedia):
        connector.verify_result = VerifyResult(success=False, error="Invalid or missing credentials")

        outcome = registry.verify_channel(expedia.id)

        assert outcome.success is False
        assert outcome.error == "Invalid or missing credentials"
        db.refresh(expedia)
        assert expedia.status == ChannelStatus.TESTING.value
        assert expedia.last_error == "Invalid or missing credentials"
        assert records_of(db, expedia.id) == []
        scheduler.add_channel.assert_not_called()

    def test_verify_deactivated_channel(self, registry, hotel):
        registry.deactivate_channel(hotel.agoda.id)

        with pytest.raises(ChannelStateError):
            registry.verify_channel(hotel.agoda.id)

    def test_unknown_channel(self, registry):
        with pytest.raises(ChannelNotFound):
            registry.verify_channel("missing")

    def test_reconnect_after_error(self, db, registry, hotel):
        hotel.booking_com.status = ChannelStatus.ERROR.value
        hotel.booking_com.consecutive_failures = 5
        db.commit()

        outcome = registry.reconnect(hotel.booking_com.id, {"api_key": "rotated"})

        assert outcome.success is True
        db.refresh(hotel.booking_com)
        assert hotel.booking_com.status == ChannelStatus.ACTIVE.value
        assert hotel.booking_com.credentials == {"api_key": "rotated"}
        assert hotel.booking_com.consecutive_failures == 0


class TestDeactivate:
    """Tests for channel deactivation"""

    def test_deactivate_soft_deletes(self, db, registry, scheduler, hotel):
        channel = registry.deactivate_channel(hotel.agoda.id)

        assert channel.status == ChannelStatus.INACTIVE.value
        assert channel.deleted_at is not None
        assert channel.next_sync_at is None
        scheduler.remove_channel.assert_called_once_with(hotel.agoda.id)
        # History stays
        assert len(records_of(db, hotel.agoda.id)) == SYNC_DAYS
        assert hotel.agoda.id not in [c.id for c in registry.list_channels(HOTEL_ID)]
        assert hotel.agoda.id in [c.id for c in registry.list_channels(HOTEL_ID, include_deleted=True)]

    def test_deactivated_buffer_is_released(self, db, registry, hotel):
        registry.update_settings(hotel.agoda.id, {"inventory_buffer": 3})
        assert records_of(db, hotel.booking_com.id)[0].available_rooms == 7

        registry.deactivate_channel(hotel.agoda.id)

        assert records_of(db, hotel.booking_com.id)[0].available_rooms == 10

    def test_direct_cannot_be_deactivated(self, registry, hotel):
        with pytest.raises(ChannelStateError):
            registry.deactivate_channel(hotel.direct.id)


class TestSettings:
    """Tests for settings and credential updates"""

    def test_buffer_change_recomputes(self, db, registry, hotel):
        registry.update_settings(hotel.booking_com.id, {"inventory_buffer": 2})

        for record in records_of(db, hotel.agoda.id):
            assert record.available_rooms == 8
            assert record.sync_status == RecordSyncStatus.PENDING.value

    def test_restriction_change_refreshes_records(self, db, registry, hotel):
        registry.update_settings(hotel.booking_com.id, {"advance_booking_days": 2, "min_stay": 2})

        today = date.today()
        for record in records_of(db, hotel.booking_com.id):
            assert record.stop_sell is (record.date > today + timedelta(days=2))
            assert record.min_stay == 2

    def test_frequency_change_reschedules(self, registry, scheduler, hotel):
        registry.update_settings(hotel.booking_com.id, {"sync_frequency_minutes": 30})
        scheduler.add_channel.assert_called_once()

    def test_disabling_auto_sync_unschedules(self, registry, scheduler, hotel):
        registry.update_settings(hotel.booking_com.id, {"auto_sync": False})
        scheduler.remove_channel.assert_called_once_with(hotel.booking_com.id)

    def test_direct_has_no_buffer(self, registry, hotel):
        with pytest.raises(ValidationError):
            registry.update_settings(hotel.direct.id, {"inventory_buffer": 1})

    def test_invalid_frequency(self, registry, hotel):
        with pytest.raises(ValidationError):
            registry.update_settings(hotel.booking_com.id, {"sync_frequency_minutes": 0})

    def test_credentials_on_error_channel_back_to_testing(self, db, registry, hotel):
        hotel.agoda.status = ChannelStatus.ERROR.value
        db.commit()

        channel = registry.update_credentials(hotel.agoda.id, {"api_key": "new"}, property_id="AGD-9")

        assert channel.status == ChannelStatus.TESTING.value
        assert channel.property_id == "AGD-9"

    def test_credentials_on_active_channel_keep_status(self, registry, hotel):
        channel = registry.update_credentials(hotel.agoda.id, {"api_key": "new"})
        assert channel.status == ChannelStatus.ACTIVE.value

    def test_direct_has_no_credentials(self, registry, hotel):
        with pytest.raises(ChannelStateError):
            registry.update_credentials(hotel.direct.id, {"api_key": "x"})

    def test_get_channel_scoped_to_hotel(self, registry, hotel):
        with pytest.raises(ChannelNotFound):
            registry.get_channel(hotel.agoda.id, hotel_id="hotel-2")

    def test_ensure_direct_channel_is_idempotent(self, registry, hotel):
        assert registry.ensure_direct_channel(HOTEL_ID).id == hotel.direct.id


class TestRatePlans:
    """Tests for rate plan management"""

    def test_add_plan_to_active_channel_materializes(self, db, registry, hotel):
        registry.add_rate_plan(hotel.booking_com.id, {
            "room_type": "standard",
            "name": "Standard BAR",
            "base_rate": "1500",
        })

        records = records_of(db, hotel.booking_com.id, "standard")
        assert len(records) == SYNC_DAYS
        assert records[0].available_rooms == 5

    def test_add_plan_for_unknown_room_type(self, registry, hotel):
        with pytest.raises(ValidationError):
            registry.add_rate_plan(hotel.booking_com.id, {"room_type": "villa", "name": "X", "base_rate": "9000"})

    def test_update_plan_reprices(self, db, registry, hotel):
        registry.update_rate_plan(hotel.booking_plan.id, {"base_rate": "2500"})

        for record in records_of(db, hotel.booking_com.id):
            assert record.sell_rate == Decimal("2500.00")
            assert record.sync_status == RecordSyncStatus.PENDING.value

    def test_update_missing_plan(self, registry):
        with pytest.raises(RecordNotFound):
            registry.update_rate_plan("missing", {"base_rate": "2500"})


class TestRoomTypeMapper:
    """Tests for room-type mappings"""

    @pytest.fixture
    def mapper(self, db, hotel):
        return RoomTypeMapper(db)

    def test_upsert_with_metadata(self, db, mapper, hotel):
        mapping = mapper.upsert_mapping(
            hotel.booking_com.id, "standard", "BDC-STD",
            external_room_type_name="Standard Double",
            max_occupancy=2,
            bed_type="Queen",
            amenities=["wifi", "ac"],
        )

        assert mapping.external_room_type_id == "BDC-STD"
        assert mapping.bed_type == "Queen"
        assert mapping.amenities == ["wifi", "ac"]
        assert mapper.get_mapping(hotel.booking_com.id, "standard").id == mapping.id

    def test_upsert_replaces_external_id_and_requeues(self, db, mapper, ledger_synced):
        hotel = ledger_synced
        mapper.upsert_mapping(hotel.booking_com.id, "deluxe", "BDC-DLX-2")

        assert len(mapper.list_mappings(hotel.booking_com.id)) == 1
        assert mapper.get_mapping(hotel.booking_com.id, "deluxe").external_room_type_id == "BDC-DLX-2"
        for record in records_of(db, hotel.booking_com.id):
            assert record.sync_status == RecordSyncStatus.PENDING.value
        # Other channels untouched
        for record in records_of(db, hotel.agoda.id):
            assert record.sync_status == RecordSyncStatus.SUCCESS.value

    def test_unknown_room_type(self, mapper, hotel):
        with pytest.raises(ValidationError):
            mapper.upsert_mapping(hotel.booking_com.id, "villa", "BDC-VILLA")

    def test_unknown_metadata_field(self, mapper, hotel):
        with pytest.raises(ValidationError):
            mapper.upsert_mapping(hotel.booking_com.id, "deluxe", "BDC-DLX", view="sea")

    def test_missing_external_id(self, mapper, hotel):
        with pytest.raises(ValidationError):
            mapper.upsert_mapping(hotel.booking_com.id, "deluxe", "")

    def test_resolve_external_id(self, mapper, hotel):
        assert mapper.resolve_internal_room_type(hotel.booking_com.id, "BDC-DLX") == "deluxe"
        assert mapper.resolve_internal_room_type(hotel.booking_com.id, "standard") == "standard"

        with pytest.raises(ValidationError):
            mapper.resolve_internal_room_type(hotel.booking_com.id, "AGD-DLX")

    def test_remove_mapping(self, mapper, hotel):
        assert mapper.remove_mapping(hotel.agoda.id, "deluxe") is True
        assert mapper.remove_mapping(hotel.agoda.id, "deluxe") is False
        assert mapper.get_mapping(hotel.agoda.id, "deluxe") is None
        assert mapper.mappings_by_room_type(hotel.agoda.id) == {}

        with pytest.raises(ValidationError):
            mapper.resolve_internal_room_type(hotel.agoda.id, "AGD-DLX")

    def test_remapping_reactivates(self, mapper, hotel):
        mapper.remove_mapping(hotel.agoda.id, "deluxe")

        mapping = mapper.upsert_mapping(hotel.agoda.id, "deluxe", "AGD-DLX-NEW")

        assert mapping.is_active is True
        assert mapper.resolve_internal_room_type(hotel.agoda.id, "AGD-DLX-NEW") == "deluxe"


@pytest.fixture
def ledger_synced(db, hotel):
    """The seeded hotel with every record already pushed"""
    ledger = InventoryLedger(db)
    for record in db.query(InventoryRecord).all():
        ledger.mark_sync_result(record.id, record.version, True)
    db.commit()
    return hotel
