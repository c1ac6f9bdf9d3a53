"""
Booking Reconciler

Turns channel bookings into room commitments in the inventory ledger.

Handles:
- New bookings: validate, dedup on (channel, external reference), reserve
- Modifications: same reference again; stay changes move the allocation
- Cancellations: release the allocation, status cancelled
- Conflicts: a booking the ledger rejects is kept as pending with an
  open BookingConflict; bookings are never discarded

Net rate = room_rate - room_rate * commission / 100, with the channel's
commission captured at ingestion.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..errors import ChannelNotFound, ChannelStateError, OversellRejected, RecordNotFound, ValidationError
from ..models.channel import Channel
from ..models.channel_booking import (
    ChannelBooking,
    ChannelBookingStatus,
    ReconciliationState,
    BookingConflict,
    ConflictStatus
)
from ..schemas.booking import BookingPayload, ConflictAction, DirectBookingCreate, PayloadStatus
from ..utils.logging_config import get_logger
from .channel_registry import ChannelRegistry
from .inventory_ledger import InventoryLedger
from .rate_plan_engine import compute_net_rate
from .room_type_mapper import RoomTypeMapper

logger = get_logger(__name__)


class IngestAction(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    CANCELLED = "cancelled"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"


# Allowed front-desk status transitions
STATUS_TRANSITIONS = {
    ChannelBookingStatus.CONFIRMED.value: {
        ChannelBookingStatus.CHECKED_IN.value,
        ChannelBookingStatus.NO_SHOW.value,
        ChannelBookingStatus.CANCELLED.value,
    },
    ChannelBookingStatus.PENDING.value: {
        ChannelBookingStatus.CANCELLED.value,
    },
    ChannelBookingStatus.CHECKED_IN.value: {
        ChannelBookingStatus.CHECKED_OUT.value,
    },
}

STAY_FIELDS = ("room_type", "check_in_date", "check_out_date", "rooms")
DETAIL_FIELDS = ("guest_name", "guest_email", "guest_phone", "adults", "children", "room_rate", "currency")


class BookingReconciler:
    """
    Service for ingesting channel bookings.

    `last_action` holds what the most recent ingest() did, for logging
    and sync-log counts.
    """

    def __init__(
        self,
        db: Session,
        ledger: Optional[InventoryLedger] = None,
        mapper: Optional[RoomTypeMapper] = None
    ):
        self.db = db
        self.ledger = ledger or InventoryLedger(db)
        self.mapper = mapper or RoomTypeMapper(db)
        self.last_action: Optional[IngestAction] = None

    # ==================
    # Helpers
    # ==================

    def _get_channel(self, channel_id: str) -> Channel:
        channel = self.db.query(Channel).filter(Channel.id == channel_id).first()
        if not channel:
            raise ChannelNotFound(channel_id)
        return channel

    def parse_payload(self, payload: Union[BookingPayload, Dict[str, Any]]) -> BookingPayload:
        """Validate a raw payload; malformed input raises ValidationError"""
        if isinstance(payload, BookingPayload):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError("Booking payload must be an object")
        try:
            return BookingPayload.model_validate(payload)
        except PydanticValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(p) for p in first.get("loc", ()))
            ref = payload.get("external_booking_id") or payload.get("booking_id")
            raise ValidationError(
                f"Invalid booking payload ({location}): {first['msg']}",
                record_key=str(ref) if ref else None
            )

    def find_booking(self, channel_id: str, external_booking_id: str) -> Optional[ChannelBooking]:
        return self.db.query(ChannelBooking).filter(
            and_(
                ChannelBooking.channel_id == channel_id,
                ChannelBooking.external_booking_id == external_booking_id
            )
        ).first()

    def get_booking(self, booking_id: str, hotel_id: Optional[str] = None) -> ChannelBooking:
        query = self.db.query(ChannelBooking).filter(ChannelBooking.id == booking_id)
        if hotel_id:
            query = query.filter(ChannelBooking.hotel_id == hotel_id)
        booking = query.first()
        if not booking:
            raise RecordNotFound(f"Booking {booking_id} not found")
        return booking

    def list_bookings(
        self,
        hotel_id: str,
        status: Optional[str] = None,
        channel_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ChannelBooking]:
        query = self.db.query(ChannelBooking).filter(ChannelBooking.hotel_id == hotel_id)
        if status:
            query = query.filter(ChannelBooking.status == status)
        if channel_id:
            query = query.filter(ChannelBooking.channel_id == channel_id)
        return query.order_by(ChannelBooking.check_in_date.desc()).offset(offset).limit(limit).all()

    def _raw(self, payload: Union[BookingPayload, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(payload, BookingPayload):
            return payload.model_dump(mode="json")
        return payload

    def _open_conflict(
        self,
        booking: ChannelBooking,
        error: OversellRejected,
        reason: str = "oversell"
    ) -> BookingConflict:
        """Park a rejected booking as pending with an open conflict"""
        booking.status = ChannelBookingStatus.PENDING.value
        booking.reconciliation_state = ReconciliationState.CONFLICT.value
        self.db.add(booking)

        details = {
            "room_type": error.room_type,
            "date": error.stay_date.isoformat(),
            "requested": error.requested,
            "sold": error.sold,
            "ceiling": error.ceiling,
            "message": str(error),
        }
        conflict = self.db.query(BookingConflict).filter(
            and_(
                BookingConflict.booking_id == booking.id,
                BookingConflict.status == ConflictStatus.OPEN.value
            )
        ).first()
        if conflict is None:
            conflict = BookingConflict(
                hotel_id=booking.hotel_id,
                channel_id=booking.channel_id,
                booking_id=booking.id,
                reason=reason
            )
            self.db.add(conflict)
        conflict.details = details
        self.db.commit()

        self.last_action = IngestAction.CONFLICT
        logger.booking_ingested(booking.id, booking.external_booking_id, "conflict")
        return conflict

    def _close_conflicts(self, booking: ChannelBooking, note: str) -> None:
        for conflict in self.db.query(BookingConflict).filter(
            and_(
                BookingConflict.booking_id == booking.id,
                BookingConflict.status == ConflictStatus.OPEN.value
            )
        ).all():
            conflict.status = ConflictStatus.RESOLVED.value
            conflict.resolution_note = note
            conflict.resolved_at = datetime.utcnow()

    # ==================
    # Ingestion
    # ==================

    def ingest(self, channel_id: str, payload: Union[BookingPayload, Dict[str, Any]]) -> ChannelBooking:
        """
        Ingest one booking from a channel.

        Returns the stored booking. Raises ValidationError on malformed
        payloads or unmapped room types; ledger rejections never raise.
        """
        channel = self._get_channel(channel_id)
        data = self.parse_payload(payload)

        existing = self.find_booking(channel.id, data.external_booking_id)
        if existing is not None and data.status == PayloadStatus.CANCELLED:
            # A cancellation must go through even if the room mapping is gone
            return self.cancel_booking(existing, note="Cancelled by channel")

        room_type = self.mapper.resolve_internal_room_type(channel.id, data.room_type)
        if existing is not None:
            return self._apply_update(existing, data, room_type, self._raw(payload))

        return self._create(channel, data, room_type, self._raw(payload))

    def _create(
        self,
        channel: Channel,
        data: BookingPayload,
        room_type: str,
        raw: Dict[str, Any],
        raise_on_conflict: bool = False
    ) -> ChannelBooking:
        commission = Decimal(str(channel.commission_rate or 0))
        booking = ChannelBooking(
            id=str(uuid.uuid4()),
            hotel_id=channel.hotel_id,
            channel_id=channel.id,
            external_booking_id=data.external_booking_id,
            guest_name=data.guest_name,
            guest_email=data.guest_email,
            guest_phone=data.guest_phone,
            room_type=room_type,
            rooms=data.rooms,
            adults=data.adults,
            children=data.children,
            check_in_date=data.check_in_date,
            check_out_date=data.check_out_date,
            room_rate=data.room_rate,
            currency=data.currency,
            channel_commission=commission,
            net_rate=compute_net_rate(data.room_rate, commission),
            status=ChannelBookingStatus.CONFIRMED.value,
            reconciliation_state=ReconciliationState.RECONCILED.value,
            is_modified=False,
            raw_payload=raw,
            last_synced_at=datetime.utcnow(),
        )

        if data.status == PayloadStatus.CANCELLED:
            # First sight of a booking that is already cancelled: keep the record
            booking.status = ChannelBookingStatus.CANCELLED.value
            booking.reconciliation_state = ReconciliationState.RELEASED.value
            self.db.add(booking)
            self.db.commit()
            self.last_action = IngestAction.CANCELLED
            logger.booking_ingested(booking.id, booking.external_booking_id, "cancelled")
            return booking

        try:
            self.ledger.reserve_stay(
                channel.id, room_type, data.check_in_date, data.check_out_date,
                rooms=data.rooms, booking=booking
            )
        except OversellRejected as e:
            if raise_on_conflict:
                raise
            self._open_conflict(booking, e)
            return booking

        self.last_action = IngestAction.CREATED
        logger.booking_ingested(booking.id, booking.external_booking_id, "created")
        return booking

    def _apply_update(
        self,
        booking: ChannelBooking,
        data: BookingPayload,
        room_type: str,
        raw: Dict[str, Any]
    ) -> ChannelBooking:
        """Same reference seen again: modification or no-op"""
        if booking.status == ChannelBookingStatus.CANCELLED.value:
            logger.warning(f"Ignoring update for cancelled booking {booking.external_booking_id}")
            self.last_action = IngestAction.UNCHANGED
            return booking

        new_stay = {
            "room_type": room_type,
            "check_in_date": data.check_in_date,
            "check_out_date": data.check_out_date,
            "rooms": data.rooms,
        }
        new_details = {field: getattr(data, field) for field in DETAIL_FIELDS}

        changes = []
        for field, value in list(new_stay.items()) + list(new_details.items()):
            current = getattr(booking, field)
            if field == "room_rate":
                differs = Decimal(str(current)) != Decimal(str(value))
            else:
                differs = current != value
            if differs:
                changes.append(f"{field}: {current} -> {value}")

        stay_changed = any(getattr(booking, f) != new_stay[f] for f in STAY_FIELDS)

        if not changes:
            booking.last_synced_at = datetime.utcnow()
            self.db.commit()
            self.last_action = IngestAction.UNCHANGED
            return booking

        conflict_error = None
        if stay_changed:
            try:
                # Moves whatever is still held (nothing for a parked booking)
                self.ledger.rebook(
                    booking, room_type, data.check_in_date, data.check_out_date, data.rooms
                )
            except OversellRejected as e:
                conflict_error = e
                # The old stay is gone on the channel side
                self.ledger.release_booking(booking.id)

        for field, value in list(new_stay.items()) + list(new_details.items()):
            setattr(booking, field, value)
        booking.net_rate = compute_net_rate(booking.room_rate, booking.channel_commission)
        booking.is_modified = True
        note = f"[{datetime.utcnow().isoformat(timespec='seconds')}] " + "; ".join(changes)
        booking.modification_notes = f"{booking.modification_notes}\n{note}" if booking.modification_notes else note
        booking.raw_payload = raw
        booking.last_synced_at = datetime.utcnow()

        if conflict_error is not None:
            self._open_conflict(booking, conflict_error, reason="modification")
            return booking

        if stay_changed:
            if booking.reconciliation_state == ReconciliationState.CONFLICT.value:
                booking.status = ChannelBookingStatus.CONFIRMED.value
                self._close_conflicts(booking, "Resolved by channel modification")
            booking.reconciliation_state = ReconciliationState.RECONCILED.value

        self.db.commit()
        self.last_action = IngestAction.MODIFIED
        logger.booking_ingested(booking.id, booking.external_booking_id, "modified")
        return booking

    # ==================
    # Cancellation & Status
    # ==================

    def cancel_booking(self, booking: ChannelBooking, note: Optional[str] = None) -> ChannelBooking:
        """Release the booking's rooms and mark it cancelled"""
        if booking.status == ChannelBookingStatus.CANCELLED.value:
            self.last_action = IngestAction.UNCHANGED
            return booking

        # No-op for parked bookings; catches rooms re-taken after a no-show
        released = self.ledger.release_booking(booking.id)

        booking.status = ChannelBookingStatus.CANCELLED.value
        booking.reconciliation_state = ReconciliationState.RELEASED.value
        booking.last_synced_at = datetime.utcnow()
        self._close_conflicts(booking, note or "Booking cancelled")
        self.db.commit()

        self.last_action = IngestAction.CANCELLED
        logger.booking_ingested(booking.id, booking.external_booking_id, "cancelled")
        logger.info(f"Cancelled booking {booking.external_booking_id}, released {released} room-night(s)")
        return booking

    def transition_status(self, booking_id: str, new_status: str, hotel_id: Optional[str] = None) -> ChannelBooking:
        """
        Front-desk status change.

        no_show releases the nights from today on; checked_in / checked_out
        leave the ledger alone.
        """
        booking = self.get_booking(booking_id, hotel_id)
        try:
            new_status = ChannelBookingStatus(new_status).value
        except ValueError:
            raise ValidationError(f"Unknown booking status {new_status}")

        allowed = STATUS_TRANSITIONS.get(booking.status, set())
        if new_status not in allowed:
            raise ChannelStateError(f"Cannot move booking from {booking.status} to {new_status}")

        if new_status == ChannelBookingStatus.CANCELLED.value:
            return self.cancel_booking(booking, note="Cancelled at front desk")

        if new_status == ChannelBookingStatus.NO_SHOW.value:
            released = self.ledger.release_booking(booking.id, from_date=max(date.today(), booking.check_in_date))
            booking.reconciliation_state = ReconciliationState.RELEASED.value
            logger.info(f"No-show {booking.external_booking_id}: released {released} room-night(s)")

        booking.status = new_status
        self.db.commit()
        return booking

    # ==================
    # Direct Channel
    # ==================

    def record_direct_booking(
        self,
        hotel_id: str,
        data: Union[DirectBookingCreate, Dict[str, Any]]
    ) -> ChannelBooking:
        """
        Front-desk booking on the hotel's direct channel.
        Unlike OTA bookings, a rejection raises OversellRejected.
        """
        if isinstance(data, dict):
            try:
                data = DirectBookingCreate(**data)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid booking: {e.errors()[0]['msg']}")

        channel = ChannelRegistry(self.db, ledger=self.ledger).ensure_direct_channel(hotel_id)
        reference = data.external_booking_id or f"DIRECT-{uuid.uuid4().hex[:10].upper()}"
        if self.find_booking(channel.id, reference):
            raise ValidationError(f"Direct booking {reference} already exists")

        payload = BookingPayload.model_validate({
            **data.model_dump(mode="json", exclude={"external_booking_id"}),
            "external_booking_id": reference,
        })
        room_type = self.mapper.resolve_internal_room_type(channel.id, data.room_type)
        return self._create(channel, payload, room_type, payload.model_dump(mode="json"), raise_on_conflict=True)

    # ==================
    # Conflict Queue
    # ==================

    def list_conflicts(
        self,
        hotel_id: str,
        status: Optional[str] = ConflictStatus.OPEN.value,
        channel_id: Optional[str] = None
    ) -> List[BookingConflict]:
        query = self.db.query(BookingConflict).filter(BookingConflict.hotel_id == hotel_id)
        if status:
            query = query.filter(BookingConflict.status == status)
        if channel_id:
            query = query.filter(BookingConflict.channel_id == channel_id)
        return query.order_by(BookingConflict.created_at).all()

    def resolve_conflict(
        self,
        conflict_id: str,
        action: Union[ConflictAction, str],
        note: Optional[str] = None,
        hotel_id: Optional[str] = None
    ) -> BookingConflict:
        """
        Resolve an open conflict.

        retry:   reserve again; the booking is confirmed on success, the
                 conflict stays open (and OversellRejected propagates) if not
        cancel:  cancel the booking
        dismiss: close the conflict, booking left as it is
        """
        action = ConflictAction(action)
        query = self.db.query(BookingConflict).filter(BookingConflict.id == conflict_id)
        if hotel_id:
            query = query.filter(BookingConflict.hotel_id == hotel_id)
        conflict = query.first()
        if conflict is None:
            raise RecordNotFound(f"Conflict {conflict_id} not found")
        if conflict.status != ConflictStatus.OPEN.value:
            raise ChannelStateError(f"Conflict {conflict_id} is already {conflict.status}")

        booking = conflict.booking

        if action == ConflictAction.RETRY:
            try:
                self.ledger.reserve_stay(
                    booking.channel_id, booking.room_type, booking.check_in_date, booking.check_out_date,
                    rooms=booking.rooms, booking=booking
                )
            except OversellRejected as e:
                conflict.details = {**(conflict.details or {}), "last_retry": str(e)}
                self.db.commit()
                raise
            booking.status = ChannelBookingStatus.CONFIRMED.value
            booking.reconciliation_state = ReconciliationState.RECONCILED.value
            conflict.status = ConflictStatus.RESOLVED.value
            conflict.resolution_note = note or "Reserved on retry"

        elif action == ConflictAction.CANCEL:
            self.cancel_booking(booking, note=note or "Cancelled from conflict queue")
            self.db.refresh(conflict)
            conflict.status = ConflictStatus.RESOLVED.value
            conflict.resolution_note = note or "Booking cancelled"

        else:
            conflict.status = ConflictStatus.DISMISSED.value
            conflict.resolution_note = note

        conflict.resolved_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"Conflict {conflict.id} {action.value}: booking {booking.external_booking_id}")
        return conflict


def get_booking_reconciler(db: Session) -> BookingReconciler:
    """Factory function to get a booking reconciler instance"""
    return BookingReconciler(db)
