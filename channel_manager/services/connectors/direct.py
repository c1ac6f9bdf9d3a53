"""
Direct Channel Connector

The hotel's own front desk. Its inventory records live in the same
ledger as every OTA, but nothing is sent anywhere: pushes acknowledge
every record and there are no external bookings to pull.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from .base import BaseConnector, PushRecord, SyncResult, VerifyResult


class DirectConnector(BaseConnector):
    name = "direct"

    def verify(self) -> VerifyResult:
        return VerifyResult(success=True, property_name="Direct")

    def push_rates(self, property_id: str, records: List[PushRecord]) -> SyncResult:
        return SyncResult.all_ok(records)

    def push_availability(self, property_id: str, records: List[PushRecord]) -> SyncResult:
        return SyncResult.all_ok(records)

    def pull_bookings(self, property_id: str, since: Optional[datetime]) -> List[Dict[str, Any]]:
        return []
