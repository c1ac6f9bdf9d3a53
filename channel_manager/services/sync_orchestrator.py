"""
Sync Orchestrator

Executes push (rates / availability / full inventory) and pull (booking
import) batches against one channel's connector.

Per channel:
- one run in flight; triggers arriving mid-run coalesce into exactly one
  more pass after the current run finishes
- push before pull inside a run
- each sync type is an independent batch; a bad record never aborts it
- outcome success / failed / partial with exact counts in the sync log

Failures:
- ConnectorTransientError: retried with exponential backoff
- ConnectorAuthError: channel -> error, run stops, never retried
- ValidationError / ParityViolation: that record only
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import (
    ChannelManagerError,
    ChannelNotFound,
    ConnectorAuthError,
    ConnectorError,
    ConnectorTransientError,
    ParityViolation,
    ValidationError
)
from ..models.channel import Channel, ChannelStatus
from ..models.inventory import InventoryRecord
from ..models.sync_log import SyncLog, SyncType, SyncStatus
from ..utils.logging_config import set_channel_context
from .booking_reconciler import BookingReconciler
from .connectors import BaseConnector, PushRecord, RecordResult, get_connector
from .front_desk import FrontDeskGateway
from .inventory_ledger import InventoryLedger
from .room_type_mapper import RoomTypeMapper
from .sync_log_service import SyncLogService

logger = logging.getLogger(__name__)

# Push order inside a run; booking import always last
RUN_ORDER = [SyncType.INVENTORY, SyncType.RATES, SyncType.AVAILABILITY, SyncType.BOOKING_IMPORT]

# What a scheduled tick does
SCHEDULED_TICK = [SyncType.RATES, SyncType.AVAILABILITY, SyncType.BOOKING_IMPORT]

# Records per connector call
PUSH_CHUNK_SIZE = 100


@dataclass
class BatchOutcome:
    """Result of one sync-type batch"""
    sync_type: SyncType
    status: SyncStatus
    processed: int = 0
    successful: int = 0
    failed: int = 0
    attempts: int = 1
    error: Optional[str] = None
    log_id: Optional[str] = None


@dataclass
class RunOutcome:
    """Result of one pass over a channel"""
    channel_id: str
    batches: List[BatchOutcome] = field(default_factory=list)
    aborted: bool = False
    skipped: bool = False
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        if self.aborted:
            return True
        # Empty batches that went through say nothing about channel health
        relevant = [
            b for b in self.batches
            if b.processed > 0 or b.status == SyncStatus.FAILED
        ]
        return bool(relevant) and all(b.status == SyncStatus.FAILED for b in relevant)

    def batch(self, sync_type: SyncType) -> Optional[BatchOutcome]:
        for b in self.batches:
            if b.sync_type == sync_type:
                return b
        return None


class ChannelRunGuard:
    """
    Per-channel mutual exclusion with coalescing.

    enter() either takes the channel or, when a run is in flight, records
    the requested sync types as a rerun and returns False. finish() hands
    back the merged rerun request (keeping the channel held) or releases.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running: Set[str] = set()
        self._rerun: Dict[str, Set[SyncType]] = {}

    def enter(self, channel_id: str, sync_types: Iterable[SyncType]) -> bool:
        with self._lock:
            if channel_id in self._running:
                self._rerun.setdefault(channel_id, set()).update(sync_types)
                return False
            self._running.add(channel_id)
            return True

    def finish(self, channel_id: str) -> Optional[Set[SyncType]]:
        with self._lock:
            pending = self._rerun.pop(channel_id, None)
            if not pending:
                self._running.discard(channel_id)
                return None
            return pending

    def release(self, channel_id: str) -> None:
        with self._lock:
            self._rerun.pop(channel_id, None)
            self._running.discard(channel_id)

    def is_running(self, channel_id: str) -> bool:
        with self._lock:
            return channel_id in self._running


# Shared by every orchestrator in the process (scheduler jobs and API)
run_guard = ChannelRunGuard()


def ordered_sync_types(sync_types: Iterable[SyncType]) -> List[SyncType]:
    """Run order; a full inventory push already covers rates and availability"""
    requested = {SyncType(s) for s in sync_types}
    if SyncType.INVENTORY in requested:
        requested -= {SyncType.RATES, SyncType.AVAILABILITY}
    return [s for s in RUN_ORDER if s in requested]


def _split_into_chunks(items: List, size: int) -> List[List]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class SyncOrchestrator:
    """
    Runs sync batches for one channel at a time.

    `sleep` is injectable so tests can run backoff without waiting.
    """

    def __init__(
        self,
        db: Session,
        connector_factory: Optional[Callable[[Channel], BaseConnector]] = None,
        ledger: Optional[InventoryLedger] = None,
        guard: Optional[ChannelRunGuard] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None
    ):
        self.db = db
        self.connector_factory = connector_factory or get_connector
        self.ledger = ledger or InventoryLedger(db)
        self.front_desk: FrontDeskGateway = self.ledger.front_desk
        self.mapper = RoomTypeMapper(db)
        self.sync_log = SyncLogService(db)
        self.guard = guard or run_guard
        self.sleep = sleep
        self.max_retries = settings.sync_max_retries if max_retries is None else max_retries
        self.base_delay = settings.sync_retry_base_delay if base_delay is None else base_delay
        self.max_delay = settings.sync_retry_max_delay if max_delay is None else max_delay

    # ==================
    # Entry Points
    # ==================

    def trigger(
        self,
        channel_id: str,
        sync_types: Optional[Iterable[SyncType]] = None
    ) -> Optional[RunOutcome]:
        """
        Run a sync for a channel, or coalesce into the run in flight.

        Returns the outcome of the last pass, or None when the request was
        folded into a running sync.
        """
        requested = set(sync_types or SCHEDULED_TICK)
        if not self.guard.enter(channel_id, requested):
            logger.info(f"Sync already running for channel {channel_id}, request coalesced")
            return None

        outcome = None
        try:
            while True:
                outcome = self.run_channel_sync(channel_id, requested)
                pending = self.guard.finish(channel_id)
                if not pending:
                    break
                channel = self.db.query(Channel).filter(Channel.id == channel_id).populate_existing().first()
                if channel is None or not channel.is_active:
                    logger.info(f"Channel {channel_id} no longer active, dropping coalesced rerun")
                    self.guard.release(channel_id)
                    break
                logger.info(f"Running coalesced sync for channel {channel_id}")
                requested = pending
        except Exception:
            self.guard.release(channel_id)
            raise
        return outcome

    def full_sync(self, channel_id: str) -> Optional[RunOutcome]:
        """Full snapshot push over the sync horizon, then booking import"""
        return self.trigger(channel_id, [SyncType.INVENTORY, SyncType.BOOKING_IMPORT])

    def sync_hotel(self, hotel_id: str) -> Dict[str, Optional[RunOutcome]]:
        """
        Full sync for every active OTA channel of a hotel with auto_sync on.

        Channels run one after another; a channel that cannot be synced is
        reported as aborted and the rest still run.
        """
        channels = self.db.query(Channel).filter(
            and_(
                Channel.hotel_id == hotel_id,
                Channel.status == ChannelStatus.ACTIVE.value,
                Channel.deleted_at.is_(None),
                Channel.auto_sync.is_(True)
            )
        ).order_by(Channel.channel_name).all()
        channel_ids = [c.id for c in channels if not c.is_direct]

        results: Dict[str, Optional[RunOutcome]] = {}
        for channel_id in channel_ids:
            try:
                results[channel_id] = self.full_sync(channel_id)
            except ChannelManagerError as e:
                self.db.rollback()
                logger.error(f"Hotel sync: channel {channel_id} failed: {e}")
                results[channel_id] = RunOutcome(channel_id=channel_id, aborted=True, error=str(e))

        logger.info(f"Hotel sync for {hotel_id}: {len(channel_ids)} channel(s)")
        return results

    def retry_failed(self, channel_id: str) -> Optional[RunOutcome]:
        """Put failed records back in the queue and push them"""
        count = self.ledger.mark_failed_pending(channel_id)
        logger.info(f"Re-queued {count} failed record(s) for channel {channel_id}")
        return self.trigger(channel_id, [SyncType.RATES, SyncType.AVAILABILITY])

    # ==================
    # Run
    # ==================

    def run_channel_sync(self, channel_id: str, sync_types: Iterable[SyncType]) -> RunOutcome:
        """One pass over the requested sync types, push before pull"""
        channel = self.db.query(Channel).filter(Channel.id == channel_id).populate_existing().first()
        if channel is None:
            raise ChannelNotFound(channel_id)

        outcome = RunOutcome(channel_id=channel_id)
        if not channel.is_active:
            outcome.skipped = True
            outcome.error = f"Channel is {channel.status}"
            return outcome

        connector = self.connector_factory(channel)
        set_channel_context(channel.id)
        run_started = datetime.utcnow()
        types = ordered_sync_types(sync_types)

        # Pending records are read once so rates and availability describe
        # the same snapshot; each record is settled after both pushes
        pending: Optional[List[InventoryRecord]] = None
        settle: Dict[str, Tuple[InventoryRecord, int, List[RecordResult]]] = {}

        try:
            for sync_type in types:
                try:
                    if sync_type == SyncType.INVENTORY:
                        records = self.ledger.snapshot_records(channel.id)
                        batch = self._push_batch(channel, connector, sync_type, records, settle)
                    elif sync_type in (SyncType.RATES, SyncType.AVAILABILITY):
                        if pending is None:
                            pending = self.ledger.pending_records(channel.id)
                        batch = self._push_batch(channel, connector, sync_type, pending, settle)
                    else:
                        batch = self._import_batch(channel, connector)
                    outcome.batches.append(batch)
                except ConnectorAuthError as e:
                    outcome.batches.append(self._auth_failure(channel, sync_type, e, run_started))
                    outcome.aborted = True
                    outcome.error = e.message
                    break
        finally:
            connector.close()
            set_channel_context('')

        self._settle_records(settle)
        self._finish_run(channel, outcome, run_started)
        return outcome

    def call_with_retry(self, fn: Callable[[], Any]) -> Tuple[Any, int]:
        """
        Call fn, retrying ConnectorTransientError with exponential backoff.
        Returns (result, attempts). The last error is re-raised with an
        `attempts` attribute once retries run out.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(), attempt
            except ConnectorTransientError as e:
                if attempt > self.max_retries:
                    e.attempts = attempt
                    raise
                delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
                logger.warning(
                    f"Transient connector error (attempt {attempt}/{self.max_retries + 1}), "
                    f"retrying in {delay:.1f}s: {e.message}"
                )
                self.sleep(delay)

    # ==================
    # Push
    # ==================

    def _hotel_today(self) -> Tuple[date, str]:
        now = datetime.now(ZoneInfo(settings.hotel_timezone))
        return now.date(), now.strftime("%H:%M")

    def _build_push_record(
        self,
        channel: Channel,
        record: InventoryRecord,
        mappings: Dict,
        direct_rates: Dict,
        today: date,
        now_hhmm: str
    ) -> PushRecord:
        """Validate one record and turn it into connector input"""
        if channel.is_direct:
            external_id, external_plan = record.room_type, None
        else:
            mapping = mappings.get(record.room_type)
            if mapping is None:
                raise ValidationError(
                    f"No room-type mapping for {record.room_type}", record_key=record.id
                )
            external_id, external_plan = mapping.external_room_type_id, mapping.external_rate_plan_id

        if record.sell_rate is None:
            raise ValidationError(f"No sell rate for {record.room_type} {record.date}", record_key=record.id)

        sell_rate = Decimal(str(record.sell_rate))
        if channel.rate_parity and not channel.is_direct:
            direct = direct_rates.get((record.room_type, record.date))
            if direct is not None and direct != sell_rate:
                raise ParityViolation(record.room_type, record.date, sell_rate, direct)

        closed_to_arrival = bool(record.closed_to_arrival)
        if channel.cutoff_time and record.date == today and now_hhmm >= channel.cutoff_time:
            closed_to_arrival = True

        return PushRecord(
            key=record.id,
            room_type=record.room_type,
            external_room_type_id=external_id,
            date=record.date,
            availability=record.available_rooms,
            rate=sell_rate,
            external_rate_plan_id=external_plan,
            stop_sell=bool(record.stop_sell),
            closed_to_arrival=closed_to_arrival,
            closed_to_departure=bool(record.closed_to_departure),
            min_stay=record.min_stay,
            max_stay=record.max_stay,
        )

    def _direct_rates(self, channel: Channel, records: List[InventoryRecord]) -> Dict:
        if not channel.rate_parity or channel.is_direct:
            return {}
        by_room: Dict[str, List[date]] = {}
        for r in records:
            by_room.setdefault(r.room_type, []).append(r.date)
        rates = {}
        for room_type, dates in by_room.items():
            for d, rate in self.front_desk.direct_rates(channel.hotel_id, room_type, dates).items():
                rates[(room_type, d)] = rate
        return rates

    def _push_batch(
        self,
        channel: Channel,
        connector: BaseConnector,
        sync_type: SyncType,
        records: List[InventoryRecord],
        settle: Dict
    ) -> BatchOutcome:
        started_at = datetime.utcnow()
        mappings = self.mapper.mappings_by_room_type(channel.id)
        direct_rates = self._direct_rates(channel, records)
        today, now_hhmm = self._hotel_today()

        results: Dict[str, RecordResult] = {}
        to_push: List[PushRecord] = []
        for record in records:
            settle.setdefault(record.id, (record, record.version, []))
            try:
                to_push.append(self._build_push_record(channel, record, mappings, direct_rates, today, now_hhmm))
            except ParityViolation as e:
                logger.warning(str(e))
                results[record.id] = RecordResult(key=record.id, success=False, error=str(e))
            except ValidationError as e:
                results[record.id] = RecordResult(key=record.id, success=False, error=e.message)

        calls = []
        if sync_type in (SyncType.INVENTORY, SyncType.RATES):
            calls.append(connector.push_rates)
        if sync_type in (SyncType.INVENTORY, SyncType.AVAILABILITY):
            calls.append(connector.push_availability)

        attempts = 1
        errors = []
        for chunk in _split_into_chunks(to_push, PUSH_CHUNK_SIZE):
            for call in calls:
                try:
                    result, used = self.call_with_retry(lambda: call(channel.property_id, chunk))
                    attempts = max(attempts, used)
                    by_key = result.by_key()
                    for push in chunk:
                        r = by_key.get(push.key) or RecordResult(
                            key=push.key, success=False, error="No result returned for record"
                        )
                        self._merge_result(results, r)
                except ConnectorAuthError:
                    raise
                except ConnectorError as e:
                    attempts = max(attempts, getattr(e, "attempts", 1))
                    errors.append(e.message)
                    for push in chunk:
                        self._merge_result(results, RecordResult(key=push.key, success=False, error=e.message))

        for record_id, r in results.items():
            if record_id in settle:
                settle[record_id][2].append(r)

        processed = len(records)
        successful = sum(1 for r in results.values() if r.success)
        failed = processed - successful
        failures = [r.error for r in results.values() if not r.success and r.error]
        error_message = "; ".join(errors) if errors else (failures[0] if failures else None)

        log = self.sync_log.record(
            channel=channel,
            sync_type=sync_type,
            processed=processed,
            successful=successful,
            failed=failed,
            started_at=started_at,
            request_payload={
                "property_id": channel.property_id,
                "values": [
                    p.rate_payload() if sync_type == SyncType.RATES else p.availability_payload()
                    for p in to_push
                ],
            },
            response_data={
                "results": [
                    {"key": r.key, "success": r.success, "error": r.error}
                    for r in results.values() if not r.success
                ],
            },
            error_message=error_message,
            attempts=attempts
        )
        return BatchOutcome(
            sync_type=sync_type,
            status=SyncStatus(log.status),
            processed=processed,
            successful=successful,
            failed=failed,
            attempts=attempts,
            error=error_message,
            log_id=log.id
        )

    def _merge_result(self, results: Dict[str, RecordResult], result: RecordResult) -> None:
        """A record pushed by several calls is ok only if every call was ok"""
        existing = results.get(result.key)
        if existing is None or (existing.success and not result.success):
            results[result.key] = result

    def _settle_records(self, settle: Dict) -> None:
        """Write push outcomes back to the ledger (compare-and-set on version)"""
        if not settle:
            return
        stale = 0
        for record_id, (record, version, outcomes) in settle.items():
            if not outcomes:
                continue
            failed = [o for o in outcomes if not o.success]
            ok = not failed
            error = failed[0].error if failed else None
            if not self.ledger.mark_sync_result(record_id, version, ok, error):
                stale += 1
        self.db.commit()
        if stale:
            logger.info(f"{stale} record(s) changed during push and stay pending")

    # ==================
    # Pull
    # ==================

    def _last_import_start(self, channel: Channel) -> Optional[datetime]:
        last = self.db.query(SyncLog).filter(
            and_(
                SyncLog.channel_id == channel.id,
                SyncLog.sync_type == SyncType.BOOKING_IMPORT.value,
                SyncLog.status.in_([SyncStatus.SUCCESS.value, SyncStatus.PARTIAL.value])
            )
        ).order_by(SyncLog.started_at.desc()).first()
        return last.started_at if last else channel.last_sync_at

    def _import_batch(self, channel: Channel, connector: BaseConnector) -> BatchOutcome:
        started_at = datetime.utcnow()
        since = self._last_import_start(channel)

        try:
            payloads, attempts = self.call_with_retry(
                lambda: connector.pull_bookings(channel.property_id, since)
            )
        except ConnectorAuthError:
            raise
        except ConnectorError as e:
            attempts = getattr(e, "attempts", 1)
            log = self.sync_log.record(
                channel=channel,
                sync_type=SyncType.BOOKING_IMPORT,
                processed=0, successful=0, failed=0,
                started_at=started_at,
                status=SyncStatus.FAILED,
                request_payload={"since": since.isoformat() if since else None},
                error_message=e.message,
                attempts=attempts
            )
            return BatchOutcome(
                sync_type=SyncType.BOOKING_IMPORT, status=SyncStatus.FAILED,
                attempts=attempts, error=e.message, log_id=log.id
            )

        reconciler = BookingReconciler(self.db, ledger=self.ledger)
        successful = 0
        errors = []
        for payload in payloads:
            try:
                reconciler.ingest(channel.id, payload)
                successful += 1
            except ChannelManagerError as e:
                self.db.rollback()
                ref = payload.get("external_booking_id") if isinstance(payload, dict) else None
                errors.append({"key": ref, "success": False, "error": str(e)})
                logger.warning(f"Booking {ref} from {channel.channel_name} rejected: {e}")

        processed = len(payloads)
        log = self.sync_log.record(
            channel=channel,
            sync_type=SyncType.BOOKING_IMPORT,
            processed=processed,
            successful=successful,
            failed=processed - successful,
            started_at=started_at,
            request_payload={"since": since.isoformat() if since else None},
            response_data={"results": errors},
            error_message=errors[0]["error"] if errors else None,
            attempts=attempts
        )
        return BatchOutcome(
            sync_type=SyncType.BOOKING_IMPORT,
            status=SyncStatus(log.status),
            processed=processed,
            successful=successful,
            failed=processed - successful,
            attempts=attempts,
            error=log.error_message,
            log_id=log.id
        )

    # ==================
    # Channel State
    # ==================

    def _auth_failure(
        self,
        channel: Channel,
        sync_type: SyncType,
        error: ConnectorAuthError,
        started_at: datetime
    ) -> BatchOutcome:
        """Credentials rejected: channel -> error immediately"""
        self.db.rollback()
        channel.status = ChannelStatus.ERROR.value
        channel.last_error = f"Authentication failed: {error.message}"
        self.db.commit()
        logger.error(f"Channel {channel.channel_name} moved to error: {error.message}")

        log = self.sync_log.record(
            channel=channel,
            sync_type=sync_type,
            processed=0, successful=0, failed=0,
            started_at=started_at,
            status=SyncStatus.FAILED,
            error_message=channel.last_error
        )
        return BatchOutcome(
            sync_type=sync_type, status=SyncStatus.FAILED,
            error=channel.last_error, log_id=log.id
        )

    def _finish_run(self, channel: Channel, outcome: RunOutcome, run_started: datetime) -> None:
        """Failure counting, error threshold, next run time"""
        self.db.refresh(channel)
        now = datetime.utcnow()

        if outcome.failed:
            channel.consecutive_failures = (channel.consecutive_failures or 0) + 1
            errors = [b.error for b in outcome.batches if b.error]
            channel.last_error = outcome.error or (errors[0] if errors else "Sync failed")
            if (
                channel.status == ChannelStatus.ACTIVE.value
                and channel.consecutive_failures >= settings.channel_max_consecutive_failures
            ):
                channel.status = ChannelStatus.ERROR.value
                logger.error(
                    f"Channel {channel.channel_name} moved to error after "
                    f"{channel.consecutive_failures} consecutive failed runs"
                )
        else:
            channel.consecutive_failures = 0
            channel.last_error = None

        channel.last_sync_at = run_started
        if channel.is_active:
            channel.next_sync_at = now + timedelta(minutes=channel.sync_frequency_minutes or 15)
        else:
            channel.next_sync_at = None
        self.db.commit()


def get_sync_orchestrator(db: Session) -> SyncOrchestrator:
    """Factory function to get a sync orchestrator instance"""
    return SyncOrchestrator(db)
