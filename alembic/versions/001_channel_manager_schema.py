"""Channel Manager Schema

Revision ID: 001_channel_manager_schema
Revises:
Create Date: 2026-10-17

Tables:
- Channels: channels, room_types, channel_rate_plans, channel_room_mappings
- Ledger: channel_inventory, inventory_allocations
- Bookings: channel_bookings, booking_conflicts
- Audit: channel_sync_logs
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_channel_manager_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all channel manager tables."""

    # ===========================================
    # 1. CHANNELS
    # ===========================================
    op.create_table(
        'channels',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('hotel_id', sa.String(36), nullable=False),
        sa.Column('channel_name', sa.String(50), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='testing'),
        # Connection
        sa.Column('api_endpoint', sa.String(500), nullable=True),
        sa.Column('credentials', sa.JSON, nullable=True),
        sa.Column('property_id', sa.String(100), nullable=True),
        # Settings
        sa.Column('auto_sync', sa.Boolean, default=True),
        sa.Column('rate_parity', sa.Boolean, default=False),
        sa.Column('inventory_buffer', sa.Integer, default=0),
        sa.Column('min_stay', sa.Integer, nullable=True),
        sa.Column('max_stay', sa.Integer, nullable=True),
        sa.Column('advance_booking_days', sa.Integer, nullable=True),
        sa.Column('cutoff_time', sa.String(5), nullable=True),
        sa.Column('commission_rate', sa.Numeric(5, 2), default=0),
        # Scheduling
        sa.Column('sync_frequency_minutes', sa.Integer, default=15),
        sa.Column('last_sync_at', sa.DateTime, nullable=True),
        sa.Column('next_sync_at', sa.DateTime, nullable=True),
        sa.Column('consecutive_failures', sa.Integer, default=0),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        # Timestamps
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_channel_hotel', 'channels', ['hotel_id'])
    op.create_index('ix_channel_status', 'channels', ['status'])

    # ===========================================
    # 2. ROOM TYPES (front-desk physical stock)
    # ===========================================
    op.create_table(
        'room_types',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('hotel_id', sa.String(36), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(100), nullable=True),
        sa.Column('physical_rooms', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('hotel_id', 'code', name='uq_room_type_hotel_code'),
    )

    # ===========================================
    # 3. RATE PLANS
    # ===========================================
    op.create_table(
        'channel_rate_plans',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('channel_id', sa.String(36), sa.ForeignKey('channels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('room_type', sa.String(50), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('base_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('weekend_surcharge', sa.Numeric(10, 2), default=0),
        sa.Column('discount_percentage', sa.Numeric(5, 2), default=0),
        sa.Column('seasonal_rates', sa.JSON, nullable=True),
        sa.Column('min_stay', sa.Integer, nullable=True),
        sa.Column('max_stay', sa.Integer, nullable=True),
        sa.Column('advance_booking_days', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_rate_plan_channel_room', 'channel_rate_plans', ['channel_id', 'room_type'])

    # ===========================================
    # 4. ROOM-TYPE MAPPINGS
    # ===========================================
    op.create_table(
        'channel_room_mappings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('channel_id', sa.String(36), sa.ForeignKey('channels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('room_type', sa.String(50), nullable=False),
        sa.Column('external_room_type_id', sa.String(100), nullable=False),
        sa.Column('external_room_type_name', sa.String(200), nullable=True),
        sa.Column('external_rate_plan_id', sa.String(100), nullable=True),
        sa.Column('max_occupancy', sa.Integer, nullable=True),
        sa.Column('bed_type', sa.String(50), nullable=True),
        sa.Column('amenities', sa.JSON, nullable=True),
        sa.Column('size_sqm', sa.Numeric(7, 2), nullable=True),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('channel_id', 'room_type', name='uq_room_mapping_channel_room'),
    )
    op.create_index('ix_room_mapping_external', 'channel_room_mappings', ['channel_id', 'external_room_type_id'])

    # ===========================================
    # 5. INVENTORY LEDGER
    # ===========================================
    op.create_table(
        'channel_inventory',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('hotel_id', sa.String(36), nullable=False),
        sa.Column('channel_id', sa.String(36), sa.ForeignKey('channels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rate_plan_id', sa.String(36), sa.ForeignKey('channel_rate_plans.id', ondelete='CASCADE'), nullable=False),
        sa.Column('room_type', sa.String(50), nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('total_rooms', sa.Integer, nullable=False, server_default='0'),
        sa.Column('available_rooms', sa.Integer, nullable=False, server_default='0'),
        sa.Column('sold_rooms', sa.Integer, nullable=False, server_default='0'),
        sa.Column('sell_rate', sa.Numeric(10, 2), nullable=True),
        sa.Column('stop_sell', sa.Boolean, default=False),
        sa.Column('closed_to_arrival', sa.Boolean, default=False),
        sa.Column('closed_to_departure', sa.Boolean, default=False),
        sa.Column('min_stay', sa.Integer, nullable=True),
        sa.Column('max_stay', sa.Integer, nullable=True),
        sa.Column('sync_status', sa.String(20), server_default='pending'),
        sa.Column('last_synced_at', sa.DateTime, nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('channel_id', 'rate_plan_id', 'room_type', 'date', name='uq_inventory_channel_plan_room_date'),
        sa.CheckConstraint('available_rooms >= 0', name='ck_inventory_available_non_negative'),
    )
    op.create_index('ix_inventory_stock_key', 'channel_inventory', ['hotel_id', 'room_type', 'date'])
    op.create_index('ix_inventory_channel_sync', 'channel_inventory', ['channel_id', 'sync_status'])

    # ===========================================
    # 6. CHANNEL BOOKINGS
    # ===========================================
    op.create_table(
        'channel_bookings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('hotel_id', sa.String(36), nullable=False),
        sa.Column('channel_id', sa.String(36), sa.ForeignKey('channels.id', ondelete='SET NULL'), nullable=True),
        sa.Column('rate_plan_id', sa.String(36), sa.ForeignKey('channel_rate_plans.id', ondelete='SET NULL'), nullable=True),
        sa.Column('external_booking_id', sa.String(255), nullable=False),
        # Guest
        sa.Column('guest_name', sa.String(200), nullable=False),
        sa.Column('guest_email', sa.String(255), nullable=True),
        sa.Column('guest_phone', sa.String(30), nullable=True),
        # Stay
        sa.Column('room_type', sa.String(50), nullable=False),
        sa.Column('rooms', sa.Integer, nullable=False, server_default='1'),
        sa.Column('adults', sa.Integer, default=1),
        sa.Column('children', sa.Integer, default=0),
        sa.Column('check_in_date', sa.Date, nullable=False),
        sa.Column('check_out_date', sa.Date, nullable=False),
        # Money
        sa.Column('room_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='INR'),
        sa.Column('channel_commission', sa.Numeric(5, 2), default=0),
        sa.Column('net_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='confirmed'),
        sa.Column('reconciliation_state', sa.String(20), nullable=False, server_default='reconciled'),
        sa.Column('is_modified', sa.Boolean, default=False),
        sa.Column('modification_notes', sa.Text, nullable=True),
        sa.Column('raw_payload', sa.JSON, nullable=True),
        sa.Column('last_synced_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('channel_id', 'external_booking_id', name='uq_channel_booking_external'),
    )
    op.create_index('ix_channel_booking_hotel', 'channel_bookings', ['hotel_id', 'status'])
    op.create_index('ix_channel_booking_stay', 'channel_bookings', ['hotel_id', 'room_type', 'check_in_date'])

    # ===========================================
    # 7. INVENTORY ALLOCATIONS
    # ===========================================
    op.create_table(
        'inventory_allocations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('record_id', sa.String(36), sa.ForeignKey('channel_inventory.id', ondelete='CASCADE'), nullable=False),
        sa.Column('booking_id', sa.String(36), sa.ForeignKey('channel_bookings.id', ondelete='SET NULL'), nullable=True),
        sa.Column('channel_id', sa.String(36), nullable=False),
        sa.Column('room_type', sa.String(50), nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('rooms', sa.Integer, nullable=False),
        sa.Column('released_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_allocation_booking', 'inventory_allocations', ['booking_id'])

    # ===========================================
    # 8. BOOKING CONFLICTS
    # ===========================================
    op.create_table(
        'booking_conflicts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('hotel_id', sa.String(36), nullable=False),
        sa.Column('channel_id', sa.String(36), sa.ForeignKey('channels.id', ondelete='SET NULL'), nullable=True),
        sa.Column('booking_id', sa.String(36), sa.ForeignKey('channel_bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('reason', sa.String(50), nullable=False, server_default='oversell'),
        sa.Column('details', sa.JSON, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('resolution_note', sa.Text, nullable=True),
        sa.Column('resolved_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_conflict_hotel_status', 'booking_conflicts', ['hotel_id', 'status'])

    # ===========================================
    # 9. SYNC LOGS (append-only)
    # ===========================================
    op.create_table(
        'channel_sync_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('hotel_id', sa.String(36), nullable=False),
        sa.Column('channel_id', sa.String(36), sa.ForeignKey('channels.id', ondelete='SET NULL'), nullable=True),
        sa.Column('sync_type', sa.String(20), nullable=False),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('request_payload', sa.JSON, nullable=True),
        sa.Column('response_data', sa.JSON, nullable=True),
        sa.Column('records_processed', sa.Integer, default=0),
        sa.Column('records_successful', sa.Integer, default=0),
        sa.Column('records_failed', sa.Integer, default=0),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('attempts', sa.Integer, default=1),
        sa.Column('started_at', sa.DateTime, nullable=False),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('duration_ms', sa.Integer, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_sync_log_channel', 'channel_sync_logs', ['channel_id', 'started_at'])
    op.create_index('ix_sync_log_hotel', 'channel_sync_logs', ['hotel_id', 'started_at'])
    op.create_index('ix_sync_log_status', 'channel_sync_logs', ['status'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    tables = [
        'channel_sync_logs',
        'booking_conflicts',
        'inventory_allocations',
        'channel_bookings',
        'channel_inventory',
        'channel_room_mappings',
        'channel_rate_plans',
        'room_types',
        'channels',
    ]
    for table in tables:
        op.drop_table(table)
