# Services package
from .rate_plan_engine import RatePlanEngine, DailyRate, compute_net_rate, get_rate_plan_engine
from .front_desk import FrontDeskGateway
from .inventory_ledger import InventoryLedger, stock_key, get_inventory_ledger
from .room_type_mapper import RoomTypeMapper
from .sync_log_service import SyncLogService, outcome_status
from .channel_registry import ChannelRegistry, VerifyOutcome, get_channel_registry
from .booking_reconciler import BookingReconciler, IngestAction, get_booking_reconciler
from .sync_orchestrator import (
    SyncOrchestrator,
    RunOutcome,
    BatchOutcome,
    run_guard,
    get_sync_orchestrator
)
from .sync_scheduler import SyncScheduler, get_sync_scheduler, start_sync_scheduler, stop_sync_scheduler

__all__ = [
    "RatePlanEngine", "DailyRate", "compute_net_rate", "get_rate_plan_engine",
    "FrontDeskGateway",
    "InventoryLedger", "stock_key", "get_inventory_ledger",
    "RoomTypeMapper",
    "SyncLogService", "outcome_status",
    "ChannelRegistry", "VerifyOutcome", "get_channel_registry",
    "BookingReconciler", "IngestAction", "get_booking_reconciler",
    "SyncOrchestrator", "RunOutcome", "BatchOutcome", "run_guard", "get_sync_orchestrator",
    "SyncScheduler", "get_sync_scheduler", "start_sync_scheduler", "stop_sync_scheduler",
]
