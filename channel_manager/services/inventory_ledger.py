"""
Inventory Ledger

Authoritative per-channel, per-rate-plan, per-room-type, per-date inventory.

Anti-oversell:
- ceiling  = physical rooms - sum(inventory_buffer of active channels
             selling the room type)
- sold     = sum(sold_rooms) over every channel's records for the
             (hotel, room type, date)
- a reservation is rejected when sold + requested > ceiling

On every accepted change all records of the (hotel, room type, date) are
recomputed to available = max(0, ceiling - sold) and marked pending, which
is the compensating decrement pushed to every other channel.

Concurrency:
- in-process lock per (hotel, room type, date), taken in sorted order
- SELECT ... FOR UPDATE on PostgreSQL
- version_id_col compare-and-set on every record write, retried on
  StaleDataError
"""

import uuid
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from ..errors import ChannelManagerError, ChannelNotFound, OversellRejected, ValidationError
from ..models.channel import Channel, ChannelStatus, RoomType
from ..models.rate_plan import RatePlan
from ..models.inventory import InventoryRecord, InventoryAllocation, RecordSyncStatus
from ..models.channel_booking import ChannelBooking
from ..utils.db_helpers import lock_query
from ..utils.locks import stock_locks
from ..utils.logging_config import get_logger
from .front_desk import FrontDeskGateway
from .rate_plan_engine import RatePlanEngine, get_rate_plan_engine

logger = get_logger(__name__)

StockKey = Tuple[str, str, str]


def stock_key(hotel_id: str, room_type: str, stay_date: date) -> StockKey:
    """Lock key for one unit of physical stock (never keyed by channel)"""
    return (hotel_id, room_type, stay_date.isoformat())


class InventoryLedger:
    """
    Service for the channel inventory ledger.

    Key responsibilities:
    - Reserve and release rooms without overselling across channels
    - Materialize records with sell rates and restrictions
    - Recompute availability after stock, buffer or rate changes
    - Hand pending records to the sync orchestrator
    """

    def __init__(
        self,
        db: Session,
        front_desk: Optional[FrontDeskGateway] = None,
        engine: Optional[RatePlanEngine] = None,
        max_cas_retries: int = 3
    ):
        self.db = db
        self.engine = engine or get_rate_plan_engine()
        self.front_desk = front_desk or FrontDeskGateway(db, self.engine)
        self.max_cas_retries = max_cas_retries

    # ==================
    # Helpers
    # ==================

    def _date_range(self, start: date, end: date) -> List[date]:
        """Dates from start (inclusive) to end (exclusive)."""
        dates = []
        current = start
        while current < end:
            dates.append(current)
            current += timedelta(days=1)
        return dates

    def _get_channel(self, channel_id: str) -> Channel:
        channel = self.db.query(Channel).filter(Channel.id == channel_id).first()
        if not channel:
            raise ChannelNotFound(channel_id)
        return channel

    def _atomic(self, keys: Iterable[StockKey], work: Callable):
        """
        Run `work` under the stock locks for `keys` and commit.

        A StaleDataError means another writer got to a record first; the
        session is rolled back and the work is redone on fresh rows.
        """
        keys = list(keys)
        for attempt in range(self.max_cas_retries):
            with stock_locks.acquire_many(keys):
                try:
                    result = work()
                    self.db.commit()
                    return result
                except StaleDataError:
                    self.db.rollback()
                    logger.warning(
                        f"Stale inventory write, retrying ({attempt + 1}/{self.max_cas_retries})"
                    )
        raise ChannelManagerError(
            f"Inventory write kept conflicting after {self.max_cas_retries} attempts"
        )

    def _locked_records(self, hotel_id: str, room_type: str, stay_date: date) -> List[InventoryRecord]:
        """Every channel's record for one stock key, fresh from the database"""
        query = self.db.query(InventoryRecord).filter(
            and_(
                InventoryRecord.hotel_id == hotel_id,
                InventoryRecord.room_type == room_type,
                InventoryRecord.date == stay_date
            )
        ).populate_existing()
        return lock_query(self.db, query).all()

    def _records_by_id(self, record_ids: List[str]) -> Dict[str, InventoryRecord]:
        if not record_ids:
            return {}
        query = self.db.query(InventoryRecord).filter(
            InventoryRecord.id.in_(set(record_ids))
        ).populate_existing()
        return {r.id: r for r in lock_query(self.db, query).all()}

    def buffer_total(self, hotel_id: str, room_type: str) -> int:
        """Sum of buffers of active channels that sell this room type"""
        selling = self.db.query(RatePlan.channel_id).filter(
            and_(
                RatePlan.room_type == room_type,
                RatePlan.is_active == True
            )
        )
        total = self.db.query(func.coalesce(func.sum(Channel.inventory_buffer), 0)).filter(
            and_(
                Channel.hotel_id == hotel_id,
                Channel.status == ChannelStatus.ACTIVE.value,
                Channel.deleted_at.is_(None),
                Channel.id.in_(selling)
            )
        ).scalar()
        return int(total or 0)

    def ceiling(self, hotel_id: str, room_type: str) -> int:
        """Rooms all channels together may sell for one room type"""
        physical = self.front_desk.physical_rooms(hotel_id, room_type)
        return max(0, physical - self.buffer_total(hotel_id, room_type))

    def _apply_ceiling(
        self,
        records: List[InventoryRecord],
        ceiling: int,
        force_pending: bool = False
    ) -> int:
        """
        Set available/total on every record of one stock key.
        Returns the global sold count.
        """
        sold = sum(r.sold_rooms or 0 for r in records)
        available = max(0, ceiling - sold)
        if sold > ceiling and records:
            logger.warning(
                f"Stock key {records[0].room_type} {records[0].date} is over ceiling: "
                f"sold={sold} ceiling={ceiling}"
            )

        for record in records:
            total = (record.sold_rooms or 0) + available
            changed = record.available_rooms != available or record.total_rooms != total
            record.available_rooms = available
            record.total_rooms = total
            if changed or force_pending:
                record.sync_status = RecordSyncStatus.PENDING.value
                record.error_message = None
        return sold

    def _restrictions(self, channel: Channel, plan: RatePlan, stay_date: date, today: date) -> Dict:
        """Restrictions from the plan, falling back to channel settings"""
        stop_sell = False
        window = plan.advance_booking_days or channel.advance_booking_days
        if window is not None and stay_date > today + timedelta(days=window):
            stop_sell = True

        return {
            "min_stay": plan.min_stay or channel.min_stay,
            "max_stay": plan.max_stay or channel.max_stay,
            "stop_sell": stop_sell,
        }

    def _owning_plan(self, channel: Channel, room_type: str, rate_plan_id: Optional[str]) -> RatePlan:
        query = self.db.query(RatePlan).filter(
            and_(
                RatePlan.channel_id == channel.id,
                RatePlan.room_type == room_type
            )
        )
        if rate_plan_id:
            query = query.filter(RatePlan.id == rate_plan_id)
        else:
            query = query.filter(RatePlan.is_active == True)
        plan = query.order_by(RatePlan.created_at).first()
        if not plan:
            raise ValidationError(
                f"Channel {channel.channel_name} has no rate plan for room type {room_type}"
            )
        return plan

    def _new_record(self, channel: Channel, plan: RatePlan, stay_date: date) -> InventoryRecord:
        today = date.today()
        record = InventoryRecord(
            id=str(uuid.uuid4()),
            hotel_id=channel.hotel_id,
            channel_id=channel.id,
            rate_plan_id=plan.id,
            room_type=plan.room_type,
            date=stay_date,
            total_rooms=0,
            available_rooms=0,
            sold_rooms=0,
            sell_rate=self.engine.compute_sell_rate(plan, stay_date),
            sync_status=RecordSyncStatus.PENDING.value,
            **self._restrictions(channel, plan, stay_date, today)
        )
        self.db.add(record)
        return record

    # ==================
    # Reservations
    # ==================

    def reserve(
        self,
        channel_id: str,
        room_type: str,
        stay_date: date,
        count: int = 1,
        booking: Optional[ChannelBooking] = None,
        rate_plan_id: Optional[str] = None
    ) -> InventoryAllocation:
        """
        Reserve `count` rooms for one night. Raises OversellRejected.
        """
        allocations = self.reserve_stay(
            channel_id, room_type, stay_date, stay_date + timedelta(days=1),
            rooms=count, booking=booking, rate_plan_id=rate_plan_id
        )
        return allocations[0]

    def reserve_stay(
        self,
        channel_id: str,
        room_type: str,
        check_in: date,
        check_out: date,
        rooms: int = 1,
        booking: Optional[ChannelBooking] = None,
        rate_plan_id: Optional[str] = None
    ) -> List[InventoryAllocation]:
        """
        Reserve every night of a stay or none of them.

        `booking`, when given, is persisted in the same transaction as the
        allocations. On OversellRejected nothing is written and the
        booking is left to the caller.
        """
        if rooms < 1:
            raise ValidationError(f"Room count must be positive, got {rooms}")
        if check_out <= check_in:
            raise ValidationError("check_out must be after check_in")

        channel = self._get_channel(channel_id)
        plan = self._owning_plan(channel, room_type, rate_plan_id)
        nights = self._date_range(check_in, check_out)
        keys = [stock_key(channel.hotel_id, room_type, d) for d in nights]

        def work():
            ceiling = self.ceiling(channel.hotel_id, room_type)

            # Check every night before touching anything
            by_night = {}
            for night in nights:
                records = self._locked_records(channel.hotel_id, room_type, night)
                sold = sum(r.sold_rooms or 0 for r in records)
                if sold + rooms > ceiling:
                    logger.oversell_rejected(channel.id, room_type, night.isoformat(), rooms, ceiling)
                    raise OversellRejected(room_type, night, rooms, sold, ceiling)
                by_night[night] = records

            if booking is not None:
                if not booking.id:
                    booking.id = str(uuid.uuid4())
                self.db.add(booking)

            allocations = []
            for night in nights:
                records = by_night[night]
                owning = next(
                    (r for r in records if r.channel_id == channel.id and r.rate_plan_id == plan.id),
                    None
                )
                if owning is None:
                    owning = self._new_record(channel, plan, night)
                    records.append(owning)

                owning.sold_rooms = (owning.sold_rooms or 0) + rooms
                self._apply_ceiling(records, ceiling, force_pending=True)

                allocation = InventoryAllocation(
                    record_id=owning.id,
                    booking_id=booking.id if booking is not None else None,
                    channel_id=channel.id,
                    room_type=room_type,
                    date=night,
                    rooms=rooms
                )
                self.db.add(allocation)
                allocations.append(allocation)

            self.db.flush()
            return allocations

        allocations = self._atomic(keys, work)
        logger.info(
            f"Reserved {rooms} x {room_type} for {len(nights)} night(s) "
            f"from {check_in} on channel {channel.channel_name}"
        )
        return allocations

    def release(self, allocation: InventoryAllocation) -> int:
        """Give one allocation's rooms back. Returns rooms released."""
        return self._release_allocations([allocation.id])

    def release_booking(self, booking_id: str, from_date: Optional[date] = None) -> int:
        """
        Release every open allocation of a booking.
        With from_date, only nights on or after that date are released.
        Returns rooms released (summed over nights).
        """
        query = self.db.query(InventoryAllocation.id).filter(
            and_(
                InventoryAllocation.booking_id == booking_id,
                InventoryAllocation.released_at.is_(None)
            )
        )
        if from_date:
            query = query.filter(InventoryAllocation.date >= from_date)
        allocation_ids = [row[0] for row in query.all()]
        if not allocation_ids:
            return 0
        return self._release_allocations(allocation_ids)

    def _release_allocations(self, allocation_ids: List[str]) -> int:
        allocations = self.db.query(InventoryAllocation).filter(
            InventoryAllocation.id.in_(allocation_ids)
        ).all()
        records_by_id = {
            r.id: r for r in self.db.query(InventoryRecord).filter(
                InventoryRecord.id.in_([a.record_id for a in allocations])
            ).all()
        }
        keys = set()
        for a in allocations:
            record = records_by_id.get(a.record_id)
            if record:
                keys.add(stock_key(record.hotel_id, a.room_type, a.date))

        def work():
            released = 0
            touched = {}
            fresh = self.db.query(InventoryAllocation).filter(
                and_(
                    InventoryAllocation.id.in_(allocation_ids),
                    InventoryAllocation.released_at.is_(None)
                )
            ).populate_existing().all()

            records = self._records_by_id([a.record_id for a in fresh])
            for allocation in fresh:
                record = records.get(allocation.record_id)
                allocation.released_at = datetime.utcnow()
                released += allocation.rooms
                if record is None:
                    continue
                record.sold_rooms = max(0, (record.sold_rooms or 0) - allocation.rooms)
                touched[(record.hotel_id, record.room_type, record.date)] = True

            # Re-reads below refresh loaded rows, so write the decrements first
            self.db.flush()
            for hotel_id, room_type, night in touched:
                records = self._locked_records(hotel_id, room_type, night)
                self._apply_ceiling(records, self.ceiling(hotel_id, room_type), force_pending=True)

            self.db.flush()
            return released

        released = self._atomic(keys, work)
        if released:
            logger.info(f"Released {released} room-night(s) across {len(keys)} stock key(s)")
        return released

    def rebook(
        self,
        booking: ChannelBooking,
        room_type: str,
        check_in: date,
        check_out: date,
        rooms: int
    ) -> List[InventoryAllocation]:
        """
        Move a booking's open allocations to a new stay.

        The new stay is checked as if the booking's current rooms were
        already free. On OversellRejected nothing changes.
        """
        if rooms < 1:
            raise ValidationError(f"Room count must be positive, got {rooms}")
        if check_out <= check_in:
            raise ValidationError("check_out must be after check_in")

        channel = self._get_channel(booking.channel_id)
        plan = self._owning_plan(channel, room_type, None)
        nights = self._date_range(check_in, check_out)

        old = self.db.query(InventoryAllocation).filter(
            and_(
                InventoryAllocation.booking_id == booking.id,
                InventoryAllocation.released_at.is_(None)
            )
        ).all()
        keys = {stock_key(channel.hotel_id, room_type, d) for d in nights}
        keys.update(stock_key(channel.hotel_id, a.room_type, a.date) for a in old)
        old_ids = [a.id for a in old]

        def work():
            held = self.db.query(InventoryAllocation).filter(
                and_(
                    InventoryAllocation.id.in_(old_ids),
                    InventoryAllocation.released_at.is_(None)
                )
            ).populate_existing().all()
            held_rooms = {}
            for a in held:
                if a.room_type == room_type:
                    held_rooms[a.date] = held_rooms.get(a.date, 0) + a.rooms

            ceiling = self.ceiling(channel.hotel_id, room_type)
            for night in nights:
                records = self._locked_records(channel.hotel_id, room_type, night)
                sold = sum(r.sold_rooms or 0 for r in records) - held_rooms.get(night, 0)
                if sold + rooms > ceiling:
                    logger.oversell_rejected(channel.id, room_type, night.isoformat(), rooms, ceiling)
                    raise OversellRejected(room_type, night, rooms, sold, ceiling)

            # Give back the old stay
            touched = set()
            held_records = self._records_by_id([a.record_id for a in held])
            for a in held:
                record = held_records.get(a.record_id)
                a.released_at = datetime.utcnow()
                if record is not None:
                    record.sold_rooms = max(0, (record.sold_rooms or 0) - a.rooms)
                    touched.add((record.room_type, record.date))
            self.db.flush()

            # Take the new one
            allocations = []
            for night in nights:
                records = self._locked_records(channel.hotel_id, room_type, night)
                owning = next(
                    (r for r in records if r.channel_id == channel.id and r.rate_plan_id == plan.id),
                    None
                )
                if owning is None:
                    owning = self._new_record(channel, plan, night)
                owning.sold_rooms = (owning.sold_rooms or 0) + rooms
                touched.add((room_type, night))
                allocation = InventoryAllocation(
                    record_id=owning.id,
                    booking_id=booking.id,
                    channel_id=channel.id,
                    room_type=room_type,
                    date=night,
                    rooms=rooms
                )
                self.db.add(allocation)
                allocations.append(allocation)

            self.db.flush()
            for touched_room_type, night in touched:
                records = self._locked_records(channel.hotel_id, touched_room_type, night)
                self._apply_ceiling(
                    records, self.ceiling(channel.hotel_id, touched_room_type), force_pending=True
                )
            self.db.flush()
            return allocations

        allocations = self._atomic(keys, work)
        logger.info(
            f"Rebooked {booking.external_booking_id}: {rooms} x {room_type} "
            f"{check_in} -> {check_out}"
        )
        return allocations

    def open_allocations(self, booking_id: str) -> List[InventoryAllocation]:
        return self.db.query(InventoryAllocation).filter(
            and_(
                InventoryAllocation.booking_id == booking_id,
                InventoryAllocation.released_at.is_(None)
            )
        ).order_by(InventoryAllocation.date).all()

    # ==================
    # Materialization & Recompute
    # ==================

    def materialize(
        self,
        channel: Channel,
        rate_plan: RatePlan,
        start: date,
        end: date
    ) -> int:
        """
        Create missing records for [start, end) with sell rates and
        restrictions, and bring every record's availability up to date.
        Returns number of records created.
        """
        nights = self._date_range(start, end)
        keys = [stock_key(channel.hotel_id, rate_plan.room_type, d) for d in nights]
        today = date.today()

        def work():
            created = 0
            ceiling = self.ceiling(channel.hotel_id, rate_plan.room_type)
            for night in nights:
                records = self._locked_records(channel.hotel_id, rate_plan.room_type, night)
                owning = next(
                    (r for r in records if r.channel_id == channel.id and r.rate_plan_id == rate_plan.id),
                    None
                )
                if owning is None:
                    owning = self._new_record(channel, rate_plan, night)
                    records.append(owning)
                    created += 1
                else:
                    self._refresh_record(owning, channel, rate_plan, today)
                self._apply_ceiling(records, ceiling)
            self.db.flush()
            return created

        created = self._atomic(keys, work)
        logger.info(
            f"Materialized {channel.channel_name}/{rate_plan.room_type}: "
            f"{created} new record(s) for {start} -> {end}"
        )
        return created

    def materialize_channel(self, channel: Channel, days: Optional[int] = None) -> int:
        """Materialize every active rate plan of a channel over the sync horizon"""
        days = days or settings.channel_sync_days
        start = date.today()
        end = start + timedelta(days=days)
        created = 0
        plans = self.db.query(RatePlan).filter(
            and_(
                RatePlan.channel_id == channel.id,
                RatePlan.is_active == True
            )
        ).all()
        for plan in plans:
            created += self.materialize(channel, plan, start, end)
        return created

    def _refresh_record(self, record: InventoryRecord, channel: Channel, plan: RatePlan, today: date) -> bool:
        """Recompute sell rate and restrictions; mark pending when anything changed"""
        changed = False
        new_rate = self.engine.compute_sell_rate(plan, record.date)
        if record.sell_rate is None or Decimal(str(record.sell_rate)) != new_rate:
            record.sell_rate = new_rate
            changed = True

        for field, value in self._restrictions(channel, plan, record.date, today).items():
            if getattr(record, field) != value:
                setattr(record, field, value)
                changed = True

        if changed:
            record.sync_status = RecordSyncStatus.PENDING.value
            record.error_message = None
        return changed

    def refresh_rates(self, rate_plan: RatePlan, from_date: Optional[date] = None) -> int:
        """
        Re-price a rate plan's records after an edit. Past dates are left
        alone. Returns number of records whose rate changed.
        """
        from_date = from_date or date.today()
        channel = self._get_channel(rate_plan.channel_id)
        dates = [row[0] for row in self.db.query(InventoryRecord.date).filter(
            and_(
                InventoryRecord.rate_plan_id == rate_plan.id,
                InventoryRecord.date >= from_date
            )
        ).all()]
        keys = [stock_key(channel.hotel_id, rate_plan.room_type, d) for d in dates]
        today = date.today()

        def work():
            changed = 0
            records = self.db.query(InventoryRecord).filter(
                and_(
                    InventoryRecord.rate_plan_id == rate_plan.id,
                    InventoryRecord.date >= from_date
                )
            ).populate_existing().all()
            for record in records:
                if self._refresh_record(record, channel, rate_plan, today):
                    changed += 1
            self.db.flush()
            return changed

        changed = self._atomic(keys, work)
        logger.info(f"Refreshed rate plan {rate_plan.id}: {changed} record(s) re-priced")
        return changed

    def recompute_room_type(self, hotel_id: str, room_type: str, from_date: Optional[date] = None) -> int:
        """
        Recompute availability for every future record of a room type.
        Used after physical stock or buffer changes. Returns records touched.
        """
        from_date = from_date or date.today()
        dates = sorted({row[0] for row in self.db.query(InventoryRecord.date).filter(
            and_(
                InventoryRecord.hotel_id == hotel_id,
                InventoryRecord.room_type == room_type,
                InventoryRecord.date >= from_date
            )
        ).all()})
        keys = [stock_key(hotel_id, room_type, d) for d in dates]

        def work():
            touched = 0
            ceiling = self.ceiling(hotel_id, room_type)
            for night in dates:
                records = self._locked_records(hotel_id, room_type, night)
                self._apply_ceiling(records, ceiling)
                touched += len(records)
            self.db.flush()
            return touched

        return self._atomic(keys, work)

    def recompute_hotel(self, hotel_id: str) -> int:
        """Recompute every room type of a hotel (channel activated/deactivated, buffer edit)"""
        touched = 0
        for code in self.front_desk.room_type_codes(hotel_id):
            touched += self.recompute_room_type(hotel_id, code)
        return touched

    def set_physical_rooms(self, hotel_id: str, room_type: str, count: int) -> List[str]:
        """
        Update physical stock for a room type and recompute its records.
        Returns ids of channels that need a full repush.
        """
        if count < 0:
            raise ValidationError("Physical room count cannot be negative")

        room = self.front_desk.get_room_type(hotel_id, room_type)
        if room is None:
            room = RoomType(hotel_id=hotel_id, code=room_type, name=room_type.title())
            self.db.add(room)
        room.physical_rooms = count
        self.db.commit()

        self.recompute_room_type(hotel_id, room_type)

        channel_ids = [row[0] for row in self.db.query(InventoryRecord.channel_id).filter(
            and_(
                InventoryRecord.hotel_id == hotel_id,
                InventoryRecord.room_type == room_type
            )
        ).distinct().all()]
        logger.info(f"Physical stock for {room_type} set to {count}; {len(channel_ids)} channel(s) to repush")
        return channel_ids

    # ==================
    # Sync Hand-off
    # ==================

    def pending_records(self, channel_id: str, limit: Optional[int] = None) -> List[InventoryRecord]:
        """Future records of a channel waiting to be pushed"""
        query = self.db.query(InventoryRecord).filter(
            and_(
                InventoryRecord.channel_id == channel_id,
                InventoryRecord.sync_status.in_([
                    RecordSyncStatus.PENDING.value,
                    RecordSyncStatus.PARTIAL.value
                ]),
                InventoryRecord.date >= date.today()
            )
        ).order_by(InventoryRecord.date, InventoryRecord.room_type)
        if limit:
            query = query.limit(limit)
        return query.all()

    def snapshot_records(self, channel_id: str, days: Optional[int] = None) -> List[InventoryRecord]:
        """Every record of a channel over the sync horizon (full push)"""
        days = days or settings.channel_sync_days
        start = date.today()
        return self.db.query(InventoryRecord).filter(
            and_(
                InventoryRecord.channel_id == channel_id,
                InventoryRecord.date >= start,
                InventoryRecord.date < start + timedelta(days=days)
            )
        ).order_by(InventoryRecord.date, InventoryRecord.room_type).all()

    def mark_sync_result(
        self,
        record_id: str,
        version: int,
        success: bool,
        error: Optional[str] = None
    ) -> bool:
        """
        Record a push outcome if the record has not changed since it was
        read. A record updated mid-push keeps its pending status so the
        new values go out on the next run. Returns True when applied.
        """
        values = {
            InventoryRecord.sync_status: (
                RecordSyncStatus.SUCCESS.value if success else RecordSyncStatus.FAILED.value
            ),
            InventoryRecord.error_message: None if success else (error or "Sync failed")[:1000],
            InventoryRecord.version: InventoryRecord.version + 1,
        }
        if success:
            values[InventoryRecord.last_synced_at] = datetime.utcnow()

        updated = self.db.query(InventoryRecord).filter(
            and_(
                InventoryRecord.id == record_id,
                InventoryRecord.version == version
            )
        ).update(values, synchronize_session=False)
        return updated == 1

    def mark_failed_pending(self, channel_id: str) -> int:
        """Put a channel's failed future records back in the queue"""
        count = self.db.query(InventoryRecord).filter(
            and_(
                InventoryRecord.channel_id == channel_id,
                InventoryRecord.sync_status == RecordSyncStatus.FAILED.value,
                InventoryRecord.date >= date.today()
            )
        ).update({
            InventoryRecord.sync_status: RecordSyncStatus.PENDING.value,
            InventoryRecord.version: InventoryRecord.version + 1,
        }, synchronize_session=False)
        self.db.commit()
        return count

    # ==================
    # Read Surface
    # ==================

    def grid(
        self,
        hotel_id: str,
        start: date,
        end: date,
        channel_id: Optional[str] = None,
        room_type: Optional[str] = None
    ) -> Dict[str, List[Dict]]:
        """
        Inventory/rate grid for [start, end).

        rows:    one entry per record
        summary: one entry per (room type, date) with physical stock,
                 ceiling and global sold
        """
        query = self.db.query(InventoryRecord, Channel.channel_name).join(
            Channel, Channel.id == InventoryRecord.channel_id
        ).filter(
            and_(
                InventoryRecord.hotel_id == hotel_id,
                InventoryRecord.date >= start,
                InventoryRecord.date < end
            )
        )
        if channel_id:
            query = query.filter(InventoryRecord.channel_id == channel_id)
        if room_type:
            query = query.filter(InventoryRecord.room_type == room_type)

        rows = []
        sold_by_key: Dict[Tuple[str, date], int] = {}
        for record, channel_name in query.order_by(
            InventoryRecord.date, InventoryRecord.room_type, Channel.channel_name
        ).all():
            rows.append({
                "record_id": record.id,
                "channel_id": record.channel_id,
                "channel_name": channel_name,
                "rate_plan_id": record.rate_plan_id,
                "room_type": record.room_type,
                "date": record.date,
                "total_rooms": record.total_rooms,
                "available_rooms": record.available_rooms,
                "sold_rooms": record.sold_rooms,
                "sell_rate": record.sell_rate,
                "stop_sell": bool(record.stop_sell),
                "closed_to_arrival": bool(record.closed_to_arrival),
                "closed_to_departure": bool(record.closed_to_departure),
                "sync_status": record.sync_status,
                "last_synced_at": record.last_synced_at,
            })
            key = (record.room_type, record.date)
            sold_by_key[key] = sold_by_key.get(key, 0) + (record.sold_rooms or 0)

        summary = []
        ceilings: Dict[str, Tuple[int, int]] = {}
        for (code, night) in sorted(sold_by_key):
            if code not in ceilings:
                ceilings[code] = (
                    self.front_desk.physical_rooms(hotel_id, code),
                    self.ceiling(hotel_id, code)
                )
            physical, ceiling = ceilings[code]
            sold = sold_by_key[(code, night)]
            summary.append({
                "room_type": code,
                "date": night,
                "physical_rooms": physical,
                "ceiling": ceiling,
                "sold_rooms": sold,
                "available_rooms": max(0, ceiling - sold),
            })

        return {"rows": rows, "summary": summary}


def get_inventory_ledger(db: Session) -> InventoryLedger:
    """Factory function to get an inventory ledger instance"""
    return InventoryLedger(db)
