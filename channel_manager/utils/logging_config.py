"""
Structured Logging Configuration

JSON log lines for the API and the sync worker. Every line carries the
request id (API calls) or the channel id (sync runs) from context vars,
plus whatever structured fields the StructuredLogger helpers attach.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar('request_id', default='')
channel_id_var: ContextVar[str] = ContextVar('channel_id', default='')

# LogRecord attributes copied into the JSON line when present
STRUCTURED_FIELDS = ("entity_type", "entity_id", "duration_ms")

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "apscheduler")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        for key, var in (("request_id", request_id_var), ("channel_id", channel_id_var)):
            value = var.get()
            if value:
                entry[key] = value

        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        data = getattr(record, "extra_data", None)
        if data:
            entry["data"] = data

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter with helpers for the channel manager's recurring events.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        **extra_data
    ):
        extra: Dict[str, Any] = {'extra_data': extra_data}
        if entity_type:
            extra['entity_type'] = entity_type
        if entity_id:
            extra['entity_id'] = entity_id
        if duration_ms is not None:
            extra['duration_ms'] = round(duration_ms, 1)

        self.log(level, msg, extra=extra)

    def sync_completed(
        self,
        channel_id: str,
        sync_type: str,
        status: str,
        processed: int,
        successful: int,
        failed: int,
        duration_ms: Optional[float] = None
    ):
        """Log the outcome of one sync batch."""
        level = logging.INFO if status == "success" else logging.WARNING
        self.log_with_context(
            level,
            f"Sync {sync_type} {status}: {successful}/{processed} ok",
            entity_type="channel",
            entity_id=channel_id,
            duration_ms=duration_ms,
            sync_type=sync_type,
            status=status,
            records_processed=processed,
            records_successful=successful,
            records_failed=failed
        )

    def booking_ingested(self, booking_id: str, external_id: str, action: str):
        """Log a pulled booking and what the reconciler did with it."""
        self.log_with_context(
            logging.INFO,
            f"Booking {external_id} {action}",
            entity_type="channel_booking",
            entity_id=booking_id,
            external_booking_id=external_id,
            action=action
        )

    def oversell_rejected(self, channel_id: str, room_type: str, stay_date: str, requested: int, ceiling: int):
        """Log a reservation the ledger refused."""
        self.log_with_context(
            logging.WARNING,
            f"Oversell rejected: {room_type} {stay_date} requested={requested} ceiling={ceiling}",
            entity_type="channel",
            entity_id=channel_id,
            room_type=room_type,
            date=stay_date,
            requested=requested,
            ceiling=ceiling
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Install a single stdout handler on the root logger.

    include_uvicorn routes uvicorn's own loggers through the same handler;
    the standalone worker passes False.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        JSONFormatter() if json_format
        else logging.Formatter('%(asctime)s %(levelname)-7s [%(name)s] %(message)s')
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    if include_uvicorn:
        for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
            logging.getLogger(name).handlers = [handler]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str):
    request_id_var.set(request_id)


def set_channel_context(channel_id: str):
    channel_id_var.set(channel_id)


def clear_context():
    request_id_var.set('')
    channel_id_var.set('')
