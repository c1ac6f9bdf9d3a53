"""
Tests for the Sync Orchestrator

Tests cover:
- Per-record outcomes: success / partial / failed with exact counts
- Chunking and push-before-pull order
- Idempotent pushes (nothing pending, nothing sent)
- Retry with exponential backoff, auth failures
- Rate parity, missing mappings and same-day cutoff
- Records changed mid-push stay pending
- Per-channel run guard and coalesced reruns
- Booking import and channel failure thresholds
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import MagicMock, call, patch

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from channel_manager.config import settings
from channel_manager.errors import ConnectorAuthError, ConnectorError, ConnectorTransientError
from channel_manager.models import (
    ChannelBooking,
    ChannelStatus,
    InventoryRecord,
    RecordSyncStatus,
    SyncLog,
    SyncStatus,
    SyncType,
)
from channel_manager.services.connectors import get_connector
from channel_manager.services.inventory_ledger import InventoryLedger
from channel_manager.services.sync_orchestrator import (
    ChannelRunGuard,
    SyncOrchestrator,
    SCHEDULED_TICK,
    ordered_sync_types,
)

from conftest import FakeConnector, SYNC_DAYS, add_channel, booking_payload


def make_orchestrator(db, connector, sleep=None, guard=None, **kwargs):
    factory = connector if callable(connector) else (lambda channel: connector)
    return SyncOrchestrator(
        db,
        connector_factory=factory,
        guard=guard or ChannelRunGuard(),
        sleep=sleep or MagicMock(),
        max_retries=kwargs.pop("max_retries", 3),
        base_delay=kwargs.pop("base_delay", 1.0),
        max_delay=kwargs.pop("max_delay", 30.0),
        **kwargs
    )


def channel_records(db, channel_id):
    return db.query(InventoryRecord).filter(
        InventoryRecord.channel_id == channel_id
    ).order_by(InventoryRecord.date).all()


def logs_of(db, channel_id, sync_type):
    return db.query(SyncLog).filter(
        SyncLog.channel_id == channel_id,
        SyncLog.sync_type == sync_type.value
    ).order_by(SyncLog.started_at).all()


class TestSyncTypeOrdering:
    """Tests for run ordering"""

    def test_push_types_run_before_import(self):
        order = ordered_sync_types([SyncType.BOOKING_IMPORT, SyncType.AVAILABILITY, SyncType.RATES])
        assert order == [SyncType.RATES, SyncType.AVAILABILITY, SyncType.BOOKING_IMPORT]

    def test_inventory_covers_rates_and_availability(self):
        order = ordered_sync_types([SyncType.RATES, SyncType.INVENTORY, SyncType.AVAILABILITY])
        assert order == [SyncType.INVENTORY]

    def test_accepts_plain_strings(self):
        assert ordered_sync_types(["booking_import", "rates"]) == [SyncType.RATES, SyncType.BOOKING_IMPORT]


class TestPushOutcomes:
    """Tests for push batches"""

    def test_partial_batch_counts(self, db, hotel):
        """10 records, channel rejects 3: partial 10 / 7 / 3"""
        records = channel_records(db, hotel.booking_com.id)
        rejected = {r.id for r in records[:3]}
        connector = FakeConnector(fail_keys=rejected)

        outcome = make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.RATES])

        batch = outcome.batch(SyncType.RATES)
        assert batch.status == SyncStatus.PARTIAL
        assert (batch.processed, batch.successful, batch.failed) == (10, 7, 3)
        assert outcome.failed is False

        log = logs_of(db, hotel.booking_com.id, SyncType.RATES)[0]
        assert log.status == SyncStatus.PARTIAL.value
        assert (log.records_processed, log.records_successful, log.records_failed) == (10, 7, 3)
        assert log.direction == "push"

        for record in channel_records(db, hotel.booking_com.id):
            expected = RecordSyncStatus.FAILED if record.id in rejected else RecordSyncStatus.SUCCESS
            assert record.sync_status == expected.value

    def test_successful_batch_marks_records_synced(self, db, hotel):
        connector = FakeConnector()

        outcome = make_orchestrator(db, connector).trigger(
            hotel.booking_com.id, [SyncType.RATES, SyncType.AVAILABILITY]
        )

        assert [b.status for b in outcome.batches] == [SyncStatus.SUCCESS, SyncStatus.SUCCESS]
        for record in channel_records(db, hotel.booking_com.id):
            assert record.sync_status == RecordSyncStatus.SUCCESS.value
            assert record.last_synced_at is not None

    def test_record_failing_one_push_is_failed(self, db, hotel):
        """Rates ok but availability rejected: the record is failed"""
        records = channel_records(db, hotel.booking_com.id)
        connector = FakeConnector()

        def reject_first():
            connector.fail_keys = {records[0].id}

        connector.hooks["push_availability"] = reject_first
        make_orchestrator(db, connector).trigger(
            hotel.booking_com.id, [SyncType.RATES, SyncType.AVAILABILITY]
        )

        db.refresh(records[0])
        assert records[0].sync_status == RecordSyncStatus.FAILED.value

    def test_full_inventory_push_sends_rates_and_availability(self, db, hotel):
        connector = FakeConnector()

        outcome = make_orchestrator(db, connector).full_sync(hotel.booking_com.id)

        assert connector.calls == ["push_rates", "push_availability", "pull_bookings"]
        assert outcome.batch(SyncType.INVENTORY).processed == SYNC_DAYS

    def test_push_is_chunked(self, db, hotel):
        connector = FakeConnector()

        with patch("channel_manager.services.sync_orchestrator.PUSH_CHUNK_SIZE", 4):
            make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.RATES])

        assert connector.calls == ["push_rates"] * 3
        assert len(connector.pushed["push_rates"]) == SYNC_DAYS

    def test_push_runs_before_pull(self, db, hotel):
        connector = FakeConnector()

        make_orchestrator(db, connector).trigger(
            hotel.booking_com.id,
            [SyncType.BOOKING_IMPORT, SyncType.AVAILABILITY, SyncType.RATES]
        )

        assert connector.calls == ["push_rates", "push_availability", "pull_bookings"]

    def test_second_push_sends_nothing(self, db, hotel):
        """Synced records are not pending, so a repeat run is a no-op"""
        connector = FakeConnector()
        orchestrator = make_orchestrator(db, connector)
        orchestrator.trigger(hotel.booking_com.id, [SyncType.RATES, SyncType.AVAILABILITY])
        connector.calls.clear()

        outcome = orchestrator.trigger(hotel.booking_com.id, [SyncType.RATES, SyncType.AVAILABILITY])

        assert connector.calls == []
        assert all(b.processed == 0 and b.status == SyncStatus.SUCCESS for b in outcome.batches)
        assert outcome.failed is False

    def test_push_payload_carries_absolute_values(self, db, hotel):
        connector = FakeConnector()

        make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.RATES, SyncType.AVAILABILITY])

        pushed = connector.pushed["push_availability"][0]
        assert pushed.external_room_type_id == "BDC-DLX"
        assert pushed.external_rate_plan_id == "BDC-DLX-BAR"
        assert pushed.availability == 10
        assert pushed.rate == Decimal("2000.00")
        assert pushed.rate_payload()["rate"] == "2000.00"

    def test_direct_channel_pushes_without_mappings(self, db, hotel):
        orchestrator = SyncOrchestrator(db, connector_factory=get_connector, guard=ChannelRunGuard())

        outcome = orchestrator.trigger(hotel.direct.id, [SyncType.RATES])

        batch = outcome.batch(SyncType.RATES)
        assert batch.status == SyncStatus.SUCCESS
        assert batch.processed == 2 * SYNC_DAYS

    def test_connector_is_closed(self, db, hotel):
        connector = FakeConnector()
        make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.RATES])
        assert connector.closed == 1


class TestRecordValidation:
    """Tests for per-record validation before a push"""

    def test_parity_violation_fails_record_without_push(self, db, hotel):
        """booking_com sells at 1800 while direct sells at 2000"""
        hotel.booking_com.rate_parity = True
        hotel.booking_plan.discount_percentage = Decimal("-10")
        db.commit()
        InventoryLedger(db).refresh_rates(hotel.booking_plan)
        connector = FakeConnector()

        outcome = make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.RATES])

        batch = outcome.batch(SyncType.RATES)
        assert batch.status == SyncStatus.FAILED
        assert batch.failed == SYNC_DAYS
        assert connector.calls == []
        record = channel_records(db, hotel.booking_com.id)[0]
        assert record.sync_status == RecordSyncStatus.FAILED.value
        assert "parity" in record.error_message

    def test_matching_rates_pass_parity(self, db, hotel):
        hotel.booking_com.rate_parity = True
        db.commit()

        outcome = make_orchestrator(db, FakeConnector()).trigger(hotel.booking_com.id, [SyncType.RATES])

        assert outcome.batch(SyncType.RATES).status == SyncStatus.SUCCESS

    def test_missing_mapping_fails_record(self, db, hotel):
        from channel_manager.services.room_type_mapper import RoomTypeMapper

        RoomTypeMapper(db).remove_mapping(hotel.agoda.id, "deluxe")
        connector = FakeConnector()

        outcome = make_orchestrator(db, connector).trigger(hotel.agoda.id, [SyncType.AVAILABILITY])

        batch = outcome.batch(SyncType.AVAILABILITY)
        assert batch.status == SyncStatus.FAILED
        assert "No room-type mapping" in batch.error
        assert connector.calls == []

    def test_cutoff_closes_same_day_arrival(self, db, hotel):
        hotel.booking_com.cutoff_time = "18:00"
        db.commit()
        connector = FakeConnector()
        today = date.today()

        with patch.object(SyncOrchestrator, "_hotel_today", return_value=(today, "18:30")):
            make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.AVAILABILITY])

        pushed = {p.date: p for p in connector.pushed["push_availability"]}
        assert pushed[today].closed_to_arrival is True
        assert pushed[today + timedelta(days=1)].closed_to_arrival is False

    def test_before_cutoff_arrival_stays_open(self, db, hotel):
        hotel.booking_com.cutoff_time = "18:00"
        db.commit()
        connector = FakeConnector()
        today = date.today()

        with patch.object(SyncOrchestrator, "_hotel_today", return_value=(today, "17:59")):
            make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.AVAILABILITY])

        pushed = {p.date: p for p in connector.pushed["push_availability"]}
        assert pushed[today].closed_to_arrival is False

    def test_record_changed_mid_push_stays_pending(self, db, hotel):
        """A booking lands while the push is in flight"""
        night = date.today() + timedelta(days=1)
        connector = FakeConnector(hooks={
            "push_rates": lambda: InventoryLedger(db).reserve(hotel.agoda.id, "deluxe", night)
        })

        make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.RATES])

        for record in channel_records(db, hotel.booking_com.id):
            if record.date == night:
                assert record.sync_status == RecordSyncStatus.PENDING.value
                assert record.available_rooms == 9
            else:
                assert record.sync_status == RecordSyncStatus.SUCCESS.value


class TestRetries:
    """Tests for transient and auth failures"""

    def test_transient_errors_are_retried_with_backoff(self, db, hotel):
        sleep = MagicMock()
        connector = FakeConnector(errors=[
            ConnectorTransientError("OTA service unavailable", 503),
            ConnectorTransientError("OTA service unavailable", 503),
        ])

        outcome = make_orchestrator(db, connector, sleep=sleep).trigger(
            hotel.booking_com.id, [SyncType.RATES]
        )

        batch = outcome.batch(SyncType.RATES)
        assert batch.status == SyncStatus.SUCCESS
        assert batch.attempts == 3
        assert sleep.call_args_list == [call(1.0), call(2.0)]
        assert logs_of(db, hotel.booking_com.id, SyncType.RATES)[0].attempts == 3

    def test_retries_stop_after_max_attempts(self, db, hotel):
        """max_retries=3: four attempts, then every record is failed"""
        sleep = MagicMock()
        connector = FakeConnector(errors=[ConnectorTransientError("Timeout", None)] * 5)

        outcome = make_orchestrator(db, connector, sleep=sleep).trigger(
            hotel.booking_com.id, [SyncType.RATES]
        )

        batch = outcome.batch(SyncType.RATES)
        assert connector.calls == ["push_rates"] * 4
        assert sleep.call_args_list == [call(1.0), call(2.0), call(4.0)]
        assert batch.status == SyncStatus.FAILED
        assert batch.attempts == 4
        assert batch.failed == SYNC_DAYS
        assert outcome.failed is True

        db.refresh(hotel.booking_com)
        assert hotel.booking_com.consecutive_failures == 1
        assert hotel.booking_com.status == ChannelStatus.ACTIVE.value

    def test_backoff_is_capped(self, db, hotel):
        sleep = MagicMock()
        orchestrator = make_orchestrator(db, FakeConnector(), sleep=sleep, max_retries=4, max_delay=3.0)
        fn = MagicMock(side_effect=ConnectorTransientError("Too many requests", 429))

        with pytest.raises(ConnectorTransientError) as exc_info:
            orchestrator.call_with_retry(fn)

        assert exc_info.value.attempts == 5
        assert sleep.call_args_list == [call(1.0), call(2.0), call(3.0), call(3.0)]

    def test_non_transient_error_is_not_retried(self, db, hotel):
        sleep = MagicMock()
        orchestrator = make_orchestrator(db, FakeConnector(), sleep=sleep)
        fn = MagicMock(side_effect=ConnectorError("Invalid request data", 422))

        with pytest.raises(ConnectorError):
            orchestrator.call_with_retry(fn)

        assert fn.call_count == 1
        sleep.assert_not_called()

    def test_auth_error_moves_channel_to_error(self, db, hotel):
        """Credentials rejected: run stops, channel -> error, records stay pending"""
        connector = FakeConnector(errors=[ConnectorAuthError("Invalid or missing credentials", 401)])

        outcome = make_orchestrator(db, connector).trigger(hotel.booking_com.id, SCHEDULED_TICK)

        assert outcome.aborted is True
        assert outcome.failed is True
        assert connector.calls == ["push_rates"]

        db.refresh(hotel.booking_com)
        assert hotel.booking_com.status == ChannelStatus.ERROR.value
        assert "Invalid or missing credentials" in hotel.booking_com.last_error
        assert hotel.booking_com.next_sync_at is None

        for record in channel_records(db, hotel.booking_com.id):
            assert record.sync_status == RecordSyncStatus.PENDING.value

    def test_channel_in_error_is_skipped(self, db, hotel):
        hotel.booking_com.status = ChannelStatus.ERROR.value
        db.commit()
        connector = FakeConnector()

        outcome = make_orchestrator(db, connector).trigger(hotel.booking_com.id)

        assert outcome.skipped is True
        assert connector.calls == []

    def test_consecutive_failures_move_channel_to_error(self, db, hotel, monkeypatch):
        monkeypatch.setattr(settings, "channel_max_consecutive_failures", 2)
        connector = FakeConnector(errors=[ConnectorError("Resource not found", 404)] * 2)
        orchestrator = make_orchestrator(db, connector)

        orchestrator.trigger(hotel.booking_com.id, [SyncType.BOOKING_IMPORT])
        db.refresh(hotel.booking_com)
        assert hotel.booking_com.status == ChannelStatus.ACTIVE.value
        assert hotel.booking_com.consecutive_failures == 1

        orchestrator.trigger(hotel.booking_com.id, [SyncType.BOOKING_IMPORT])
        db.refresh(hotel.booking_com)
        assert hotel.booking_com.status == ChannelStatus.ERROR.value
        assert hotel.booking_com.consecutive_failures == 2

    def test_successful_run_resets_failures(self, db, hotel):
        hotel.booking_com.consecutive_failures = 3
        hotel.booking_com.last_error = "Timeout"
        db.commit()

        make_orchestrator(db, FakeConnector()).trigger(hotel.booking_com.id, [SyncType.RATES])

        db.refresh(hotel.booking_com)
        assert hotel.booking_com.consecutive_failures == 0
        assert hotel.booking_com.last_error is None
        assert hotel.booking_com.last_sync_at is not None
        assert hotel.booking_com.next_sync_at is not None


class TestRunGuard:
    """Tests for one run per channel and coalescing"""

    def test_trigger_during_run_is_coalesced(self, db, hotel):
        guard = ChannelRunGuard()
        guard.enter(hotel.booking_com.id, [SyncType.RATES])
        connector = FakeConnector()

        outcome = make_orchestrator(db, connector, guard=guard).trigger(hotel.booking_com.id)

        assert outcome is None
        assert connector.calls == []
        assert guard.finish(hotel.booking_com.id) == set(SCHEDULED_TICK)
        assert guard.finish(hotel.booking_com.id) is None
        assert guard.is_running(hotel.booking_com.id) is False

    def test_coalesced_request_runs_once_after_current_run(self, db, hotel):
        guard = ChannelRunGuard()
        connector = FakeConnector()
        orchestrator = make_orchestrator(db, connector, guard=guard)
        nested = []
        connector.hooks["pull_bookings"] = lambda: nested.append(
            orchestrator.trigger(hotel.booking_com.id, [SyncType.AVAILABILITY])
        )

        orchestrator.trigger(hotel.booking_com.id)

        assert nested == [None]
        assert connector.calls.count("pull_bookings") == 1
        assert len(logs_of(db, hotel.booking_com.id, SyncType.AVAILABILITY)) == 2
        assert guard.is_running(hotel.booking_com.id) is False

    def test_guard_is_released_on_crash(self, db, hotel):
        guard = ChannelRunGuard()

        def exploding_factory(channel):
            raise RuntimeError("connector exploded")

        orchestrator = make_orchestrator(db, exploding_factory, guard=guard)
        with pytest.raises(RuntimeError):
            orchestrator.trigger(hotel.booking_com.id)

        assert guard.is_running(hotel.booking_com.id) is False

    def test_channels_run_independently(self, db, hotel):
        guard = ChannelRunGuard()
        guard.enter(hotel.agoda.id, [SyncType.RATES])

        outcome = make_orchestrator(db, FakeConnector(), guard=guard).trigger(
            hotel.booking_com.id, [SyncType.RATES]
        )

        assert outcome is not None


class TestBookingImport:
    """Tests for the pull batch"""

    def test_import_counts_rejected_payloads(self, db, hotel):
        bad = booking_payload("BDC-2")
        del bad["guest_name"]
        connector = FakeConnector(bookings=[booking_payload("BDC-1"), bad])

        outcome = make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.BOOKING_IMPORT])

        batch = outcome.batch(SyncType.BOOKING_IMPORT)
        assert batch.status == SyncStatus.PARTIAL
        assert (batch.processed, batch.successful, batch.failed) == (2, 1, 1)
        assert db.query(ChannelBooking).count() == 1

        log = logs_of(db, hotel.booking_com.id, SyncType.BOOKING_IMPORT)[0]
        assert log.direction == "pull"
        assert log.response_data["results"][0]["key"] == "BDC-2"

    def test_imported_booking_reduces_every_channel(self, db, hotel):
        connector = FakeConnector(bookings=[booking_payload("BDC-1", rooms=3)])

        make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.BOOKING_IMPORT])

        night = date.today() + timedelta(days=2)
        agoda_record = db.query(InventoryRecord).filter(
            InventoryRecord.channel_id == hotel.agoda.id,
            InventoryRecord.date == night
        ).one()
        assert agoda_record.available_rooms == 7
        assert agoda_record.sync_status == RecordSyncStatus.PENDING.value

    def test_empty_import_is_success(self, db, hotel):
        outcome = make_orchestrator(db, FakeConnector()).trigger(
            hotel.booking_com.id, [SyncType.BOOKING_IMPORT]
        )
        assert outcome.batch(SyncType.BOOKING_IMPORT).status == SyncStatus.SUCCESS
        assert outcome.failed is False

    def test_import_asks_for_changes_since_last_import(self, db, hotel):
        connector = FakeConnector()
        orchestrator = make_orchestrator(db, connector)

        orchestrator.trigger(hotel.booking_com.id, [SyncType.BOOKING_IMPORT])
        orchestrator.trigger(hotel.booking_com.id, [SyncType.BOOKING_IMPORT])

        first_log = logs_of(db, hotel.booking_com.id, SyncType.BOOKING_IMPORT)[0]
        assert connector.since_values[0] is None
        assert connector.since_values[1] == first_log.started_at

    def test_pull_failure_is_failed_batch(self, db, hotel):
        connector = FakeConnector(errors=[ConnectorError("Resource not found", 404)])

        outcome = make_orchestrator(db, connector).trigger(hotel.booking_com.id, [SyncType.BOOKING_IMPORT])

        batch = outcome.batch(SyncType.BOOKING_IMPORT)
        assert batch.status == SyncStatus.FAILED
        assert batch.error == "Resource not found"
        assert outcome.failed is True

    def test_redelivered_booking_is_not_duplicated(self, db, hotel):
        connector = FakeConnector(bookings=[booking_payload("BDC-1")])
        orchestrator = make_orchestrator(db, connector)

        orchestrator.trigger(hotel.booking_com.id, [SyncType.BOOKING_IMPORT])
        orchestrator.trigger(hotel.booking_com.id, [SyncType.BOOKING_IMPORT])

        assert db.query(ChannelBooking).count() == 1


class TestRetryFailed:
    """Tests for re-pushing failed records"""

    def test_retry_failed_pushes_only_failed_records(self, db, hotel):
        records = channel_records(db, hotel.booking_com.id)
        connector = FakeConnector(fail_keys={records[0].id})
        orchestrator = make_orchestrator(db, connector)
        orchestrator.trigger(hotel.booking_com.id, [SyncType.RATES, SyncType.AVAILABILITY])
        connector.fail_keys = set()
        connector.pushed["push_rates"].clear()

        outcome = orchestrator.retry_failed(hotel.booking_com.id)

        assert [p.key for p in connector.pushed["push_rates"]] == [records[0].id]
        assert outcome.batch(SyncType.RATES).status == SyncStatus.SUCCESS


class TestHotelSync:
    """Tests for syncing every channel of a hotel"""

    def test_full_sync_for_each_auto_sync_channel(self, db, hotel):
        connector = FakeConnector()
        orchestrator = make_orchestrator(db, connector)

        results = orchestrator.sync_hotel(hotel.booking_com.hotel_id)

        assert set(results) == {hotel.booking_com.id, hotel.agoda.id}
        assert hotel.direct.id not in results
        for outcome in results.values():
            assert [b.sync_type for b in outcome.batches] == [SyncType.INVENTORY, SyncType.BOOKING_IMPORT]
        assert connector.calls.count("pull_bookings") == 2

    def test_skips_auto_sync_off_and_inactive_channels(self, db, hotel):
        hotel.agoda.auto_sync = False
        add_channel(db, "expedia", status=ChannelStatus.ERROR.value)
        add_channel(db, "goibibo", hotel_id="hotel-2")
        db.commit()

        results = make_orchestrator(db, FakeConnector()).sync_hotel(hotel.booking_com.hotel_id)

        assert list(results) == [hotel.booking_com.id]

    def test_one_broken_channel_does_not_stop_the_rest(self, db, hotel):
        connector = FakeConnector()

        def factory(channel):
            if channel.id == hotel.agoda.id:
                raise ConnectorError("No API endpoint configured for channel")
            return connector

        results = make_orchestrator(db, factory).sync_hotel(hotel.booking_com.hotel_id)

        assert results[hotel.agoda.id].aborted is True
        assert results[hotel.agoda.id].error == "No API endpoint configured for channel"
        assert results[hotel.booking_com.id].failed is False
        assert "pull_bookings" in connector.calls

    def test_no_channels(self, db, hotel):
        assert make_orchestrator(db, FakeConnector()).sync_hotel("hotel-without-channels") == {}
