"""
Channel Registry

Per-hotel channel connection records:
- Register: validate (hotel, channel) uniqueness, store credentials, status testing
- Verify: connector handshake, testing -> active, first full sync
- Deactivate: stop scheduling, inactive + soft delete (logs and bookings kept)
- Settings / credentials updates and reconnect
- The hotel's direct channel
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ChannelNotFound, ChannelStateError, DuplicateChannel, RecordNotFound, ValidationError
from ..models.channel import Channel, ChannelStatus, DIRECT_CHANNEL_NAME
from ..models.rate_plan import RatePlan
from ..schemas.channel import ChannelCreate, ChannelSettingsUpdate, RatePlanCreate, RatePlanUpdate
from .connectors import BaseConnector, SUPPORTED_CHANNELS, get_connector, supported_channel_list
from .inventory_ledger import InventoryLedger

logger = logging.getLogger(__name__)


@dataclass
class VerifyOutcome:
    """Result of a verification handshake"""
    success: bool
    channel: Channel
    property_name: Optional[str] = None
    error: Optional[str] = None


class ChannelRegistry:
    """
    Service for channel connection records.

    `scheduler` (a SyncScheduler) is optional; without it channels are
    still activated but no job is registered.
    """

    def __init__(
        self,
        db: Session,
        connector_factory: Optional[Callable[[Channel], BaseConnector]] = None,
        scheduler=None,
        ledger: Optional[InventoryLedger] = None
    ):
        self.db = db
        self.connector_factory = connector_factory or get_connector
        self.scheduler = scheduler
        self.ledger = ledger or InventoryLedger(db)

    # ==================
    # Lookup
    # ==================

    def get_channel(self, channel_id: str, hotel_id: Optional[str] = None) -> Channel:
        query = self.db.query(Channel).filter(Channel.id == channel_id)
        if hotel_id:
            query = query.filter(Channel.hotel_id == hotel_id)
        channel = query.first()
        if not channel:
            raise ChannelNotFound(channel_id)
        return channel

    def list_channels(self, hotel_id: str, include_deleted: bool = False) -> List[Channel]:
        query = self.db.query(Channel).filter(Channel.hotel_id == hotel_id)
        if not include_deleted:
            query = query.filter(Channel.deleted_at.is_(None))
        return query.order_by(Channel.created_at).all()

    def active_channels(self, hotel_id: Optional[str] = None) -> List[Channel]:
        query = self.db.query(Channel).filter(
            and_(
                Channel.status == ChannelStatus.ACTIVE.value,
                Channel.deleted_at.is_(None)
            )
        )
        if hotel_id:
            query = query.filter(Channel.hotel_id == hotel_id)
        return query.all()

    def supported_channels(self) -> List[Dict[str, Any]]:
        return supported_channel_list()

    def _find_live(self, hotel_id: str, channel_name: str) -> Optional[Channel]:
        return self.db.query(Channel).filter(
            and_(
                Channel.hotel_id == hotel_id,
                Channel.channel_name == channel_name,
                Channel.deleted_at.is_(None)
            )
        ).first()

    # ==================
    # Lifecycle
    # ==================

    def register_channel(self, hotel_id: str, config: Union[ChannelCreate, Dict[str, Any]]) -> Channel:
        """
        Register an OTA channel for a hotel.

        Steps:
        1. Validate config
        2. Check (hotel, channel_name) is not already live
        3. Store with status testing; commission defaults from the catalogue
        """
        if isinstance(config, dict):
            try:
                config = ChannelCreate(**config)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid channel config: {e.errors()[0]['msg']}")

        name = config.channel_name
        if name == DIRECT_CHANNEL_NAME:
            raise ValidationError("The direct channel is created with ensure_direct_channel")

        catalogue = SUPPORTED_CHANNELS.get(name)
        if catalogue is None and not config.api_endpoint:
            raise ValidationError(f"Unknown channel {name} needs an api_endpoint")

        if self._find_live(hotel_id, name):
            raise DuplicateChannel(hotel_id, name)

        commission = config.commission_rate
        if commission is None:
            commission = Decimal(str(catalogue["commission_rate"])) if catalogue else Decimal("0")

        channel = Channel(
            hotel_id=hotel_id,
            channel_name=name,
            display_name=config.display_name or (catalogue["name"] if catalogue else name),
            status=ChannelStatus.TESTING.value,
            api_endpoint=config.api_endpoint or (catalogue["api_endpoint"] if catalogue else None),
            credentials=config.credentials or {},
            property_id=config.property_id,
            auto_sync=config.auto_sync,
            rate_parity=config.rate_parity,
            inventory_buffer=config.inventory_buffer,
            min_stay=config.min_stay,
            max_stay=config.max_stay,
            advance_booking_days=config.advance_booking_days,
            cutoff_time=config.cutoff_time,
            commission_rate=commission,
            sync_frequency_minutes=config.sync_frequency_minutes or settings.default_sync_frequency_minutes,
            description=config.description,
        )
        self.db.add(channel)
        self.db.commit()
        self.db.refresh(channel)

        logger.info(f"Registered channel {name} for hotel {hotel_id} (id={channel.id})")
        return channel

    def verify_channel(self, channel_id: str) -> VerifyOutcome:
        """
        Handshake with the channel's connector.

        Success: active, next_sync_at = now, records materialized over the
        horizon, job scheduled and a full inventory push queued.
        Failure: stays testing, the connector's error is returned.
        """
        channel = self.get_channel(channel_id)
        if channel.deleted_at is not None:
            raise ChannelStateError(f"Channel {channel_id} is deactivated")

        connector = self.connector_factory(channel)
        try:
            result = connector.verify()
        finally:
            connector.close()

        if not result.success:
            channel.last_error = result.error
            self.db.commit()
            logger.warning(f"Verification failed for channel {channel.channel_name}: {result.error}")
            return VerifyOutcome(success=False, channel=channel, error=result.error)

        channel.status = ChannelStatus.ACTIVE.value
        channel.next_sync_at = datetime.utcnow()
        channel.consecutive_failures = 0
        channel.last_error = None
        self.db.commit()

        self._activate(channel)
        logger.info(f"Channel {channel.channel_name} verified and active (hotel={channel.hotel_id})")
        return VerifyOutcome(success=True, channel=channel, property_name=result.property_name)

    def _activate(self, channel: Channel) -> None:
        """Materialize records and start scheduling for a newly active channel"""
        self.ledger.materialize_channel(channel)
        # The new channel's buffer now counts against shared stock
        self.ledger.recompute_hotel(channel.hotel_id)

        if self.scheduler is not None and not channel.is_direct:
            self.scheduler.add_channel(channel)
            self.scheduler.trigger_full_sync(channel.id)

    def deactivate_channel(self, channel_id: str) -> Channel:
        """
        Stop scheduling and soft-delete. Sync logs, bookings and records
        are kept. An in-flight sync finishes on its own.
        """
        channel = self.get_channel(channel_id)
        if channel.is_direct:
            raise ChannelStateError("The direct channel cannot be deactivated")

        if self.scheduler is not None:
            self.scheduler.remove_channel(channel.id)

        channel.status = ChannelStatus.INACTIVE.value
        channel.auto_sync = False
        channel.deleted_at = datetime.utcnow()
        channel.next_sync_at = None
        self.db.commit()

        self.ledger.recompute_hotel(channel.hotel_id)
        logger.info(f"Channel {channel.channel_name} deactivated (hotel={channel.hotel_id})")
        return channel

    # ==================
    # Updates
    # ==================

    def update_settings(
        self,
        channel_id: str,
        changes: Union[ChannelSettingsUpdate, Dict[str, Any]]
    ) -> Channel:
        if isinstance(changes, dict):
            try:
                changes = ChannelSettingsUpdate(**changes)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid channel settings: {e.errors()[0]['msg']}")

        channel = self.get_channel(channel_id)
        if channel.deleted_at is not None:
            raise ChannelStateError(f"Channel {channel_id} is deactivated")

        data = changes.model_dump(exclude_unset=True)
        if channel.is_direct and data.get("inventory_buffer"):
            raise ValidationError("The direct channel has no inventory buffer")

        old_buffer = channel.inventory_buffer or 0
        old_frequency = channel.sync_frequency_minutes
        restrictions_changed = any(
            k in data for k in ("min_stay", "max_stay", "advance_booking_days")
        )

        for field, value in data.items():
            setattr(channel, field, value)
        self.db.commit()

        if channel.is_active and (channel.inventory_buffer or 0) != old_buffer:
            self.ledger.recompute_hotel(channel.hotel_id)

        if restrictions_changed:
            plans = self.db.query(RatePlan).filter(RatePlan.channel_id == channel.id).all()
            for plan in plans:
                self.ledger.refresh_rates(plan)

        if self.scheduler is not None and channel.is_active:
            if channel.sync_frequency_minutes != old_frequency or "auto_sync" in data:
                if channel.auto_sync:
                    self.scheduler.add_channel(channel)
                else:
                    self.scheduler.remove_channel(channel.id)

        logger.info(f"Updated settings for channel {channel.channel_name}: {sorted(data)}")
        return channel

    def update_credentials(
        self,
        channel_id: str,
        credentials: Dict[str, Any],
        api_endpoint: Optional[str] = None,
        property_id: Optional[str] = None
    ) -> Channel:
        """
        Replace credentials. A channel in error or inactive goes back to
        testing and needs a fresh verification.
        """
        channel = self.get_channel(channel_id)
        if channel.is_direct:
            raise ChannelStateError("The direct channel has no credentials")

        if channel.deleted_at is not None:
            live = self._find_live(channel.hotel_id, channel.channel_name)
            if live and live.id != channel.id:
                raise DuplicateChannel(channel.hotel_id, channel.channel_name)

        channel.credentials = credentials
        if api_endpoint:
            channel.api_endpoint = api_endpoint
        if property_id:
            channel.property_id = property_id

        if channel.status in (ChannelStatus.ERROR.value, ChannelStatus.INACTIVE.value):
            channel.status = ChannelStatus.TESTING.value
            channel.deleted_at = None
            channel.consecutive_failures = 0
            channel.auto_sync = True

        self.db.commit()
        logger.info(f"Credentials updated for channel {channel.channel_name} (status={channel.status})")
        return channel

    def reconnect(
        self,
        channel_id: str,
        credentials: Dict[str, Any],
        api_endpoint: Optional[str] = None,
        property_id: Optional[str] = None
    ) -> VerifyOutcome:
        """update_credentials followed by verify_channel"""
        self.update_credentials(channel_id, credentials, api_endpoint, property_id)
        return self.verify_channel(channel_id)

    # ==================
    # Rate Plans
    # ==================

    def add_rate_plan(self, channel_id: str, plan: Union[RatePlanCreate, Dict[str, Any]]) -> RatePlan:
        """Attach a rate plan; an active channel gets records over the horizon"""
        if isinstance(plan, dict):
            try:
                plan = RatePlanCreate(**plan)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid rate plan: {e.errors()[0]['msg']}")

        channel = self.get_channel(channel_id)
        if self.ledger.front_desk.get_room_type(channel.hotel_id, plan.room_type) is None:
            raise ValidationError(f"Unknown room type {plan.room_type}")

        rate_plan = RatePlan(
            channel_id=channel.id,
            room_type=plan.room_type,
            name=plan.name,
            base_rate=plan.base_rate,
            weekend_surcharge=plan.weekend_surcharge,
            discount_percentage=plan.discount_percentage,
            seasonal_rates=[s.model_dump(mode="json") for s in plan.seasonal_rates],
            min_stay=plan.min_stay,
            max_stay=plan.max_stay,
            advance_booking_days=plan.advance_booking_days,
        )
        self.db.add(rate_plan)
        self.db.commit()
        self.db.refresh(rate_plan)

        if channel.is_active:
            self.ledger.materialize_channel(channel)
            # A buffered channel now sells this room type
            if channel.inventory_buffer:
                self.ledger.recompute_room_type(channel.hotel_id, plan.room_type)

        logger.info(f"Rate plan {rate_plan.name} added to {channel.channel_name}/{plan.room_type}")
        return rate_plan

    def update_rate_plan(self, rate_plan_id: str, changes: Union[RatePlanUpdate, Dict[str, Any]]) -> RatePlan:
        """Edit a rate plan; records from today on are re-priced"""
        if isinstance(changes, dict):
            try:
                changes = RatePlanUpdate(**changes)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid rate plan: {e.errors()[0]['msg']}")

        rate_plan = self.db.query(RatePlan).filter(RatePlan.id == rate_plan_id).first()
        if not rate_plan:
            raise RecordNotFound(f"Rate plan {rate_plan_id} not found")

        data = changes.model_dump(exclude_unset=True, mode="json")
        for field, value in data.items():
            if field in ("base_rate", "weekend_surcharge", "discount_percentage") and value is not None:
                value = Decimal(str(value))
            setattr(rate_plan, field, value)
        self.db.commit()

        changed = self.ledger.refresh_rates(rate_plan)
        if "is_active" in data:
            channel = self.get_channel(rate_plan.channel_id)
            self.ledger.recompute_room_type(channel.hotel_id, rate_plan.room_type)

        logger.info(f"Rate plan {rate_plan.id} updated: {sorted(data)}, {changed} record(s) re-priced")
        return rate_plan

    def ensure_direct_channel(self, hotel_id: str) -> Channel:
        """The hotel's own front desk as a channel: active, no buffer, no commission"""
        channel = self._find_live(hotel_id, DIRECT_CHANNEL_NAME)
        if channel:
            return channel

        channel = Channel(
            hotel_id=hotel_id,
            channel_name=DIRECT_CHANNEL_NAME,
            display_name="Direct",
            status=ChannelStatus.ACTIVE.value,
            auto_sync=False,
            rate_parity=False,
            inventory_buffer=0,
            commission_rate=Decimal("0"),
            sync_frequency_minutes=settings.default_sync_frequency_minutes,
        )
        self.db.add(channel)
        self.db.commit()
        self.db.refresh(channel)
        logger.info(f"Created direct channel for hotel {hotel_id}")
        return channel


def get_channel_registry(db: Session, scheduler=None) -> ChannelRegistry:
    """Factory function to get a channel registry instance"""
    return ChannelRegistry(db, scheduler=scheduler)
