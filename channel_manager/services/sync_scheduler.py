"""
Sync Scheduler

One APScheduler interval job per active channel, driven by the channel's
sync_frequency_minutes:
- job id "channel-sync:<channel_id>"
- max_instances=1 and coalesce=True: a late tick never stacks up
- thread-pool executor: channels run concurrently, each serialized by
  the orchestrator's run guard

Jobs open their own database session; an unexpected error is logged with
traceback and stored on the channel's last_error, never re-raised.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..models.channel import Channel, ChannelStatus, DIRECT_CHANNEL_NAME
from ..models.sync_log import SyncType
from ..utils.logging_config import clear_context
from .sync_orchestrator import SyncOrchestrator, SCHEDULED_TICK

logger = logging.getLogger(__name__)

JOB_PREFIX = "channel-sync:"
FULL_SYNC_PREFIX = "channel-full-sync:"


def job_id(channel_id: str) -> str:
    return f"{JOB_PREFIX}{channel_id}"


class SyncScheduler:
    """
    Owns the APScheduler instance and the per-channel jobs.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        connector_factory=None,
        max_workers: int = 10
    ):
        self.session_factory = session_factory
        self.connector_factory = connector_factory
        self._scheduler = BackgroundScheduler(
            timezone="UTC",
            executors={"default": ThreadPoolExecutor(max_workers)},
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self._last_runs: Dict[str, Dict] = {}

    @property
    def running(self) -> bool:
        return self._scheduler.running

    # ==================
    # Lifecycle
    # ==================

    def start(self, load_active: bool = True) -> int:
        """Start the scheduler; returns number of channel jobs registered"""
        count = 0
        if load_active:
            count = self.refresh_channels()["added"]

        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"Sync scheduler started with {count} channel job(s)")
        return count

    def refresh_channels(self) -> Dict[str, int]:
        """
        Align jobs with the channels table: channels activated or
        deactivated by another process are picked up here.
        """
        db = self.session_factory()
        try:
            channels = db.query(Channel).filter(
                and_(
                    Channel.status == ChannelStatus.ACTIVE.value,
                    Channel.deleted_at.is_(None),
                    Channel.auto_sync == True,
                    Channel.channel_name != DIRECT_CHANNEL_NAME
                )
            ).all()
            wanted = {job_id(c.id): c for c in channels}
            current = {jid for jid in self.job_ids() if jid.startswith(JOB_PREFIX)}

            added = 0
            for jid, channel in wanted.items():
                if jid not in current:
                    self.add_channel(channel)
                    added += 1

            removed = 0
            for jid in current - set(wanted):
                self.remove_channel(jid[len(JOB_PREFIX):])
                removed += 1
        finally:
            db.close()

        if added or removed:
            logger.info(f"Channel jobs refreshed: +{added} / -{removed}")
        return {"added": added, "removed": removed}

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Sync scheduler stopped")

    # ==================
    # Jobs
    # ==================

    def add_channel(self, channel: Channel) -> None:
        """Register (or reschedule) the interval job for a channel"""
        if channel.is_direct:
            return
        if not channel.auto_sync:
            self.remove_channel(channel.id)
            return
        minutes = channel.sync_frequency_minutes or settings.default_sync_frequency_minutes
        now = datetime.utcnow()
        first_run = channel.next_sync_at or now + timedelta(minutes=minutes)
        # A slot missed while the process was down runs straight away
        first_run = max(first_run, now)
        self._scheduler.add_job(
            self.run_channel_job,
            IntervalTrigger(minutes=minutes, timezone="UTC"),
            id=job_id(channel.id),
            name=f"Sync {channel.channel_name} ({channel.hotel_id})",
            args=[channel.id],
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            next_run_time=first_run,
        )
        logger.info(f"Scheduled channel {channel.channel_name} every {minutes} min")

    def remove_channel(self, channel_id: str) -> bool:
        removed = False
        for jid in (job_id(channel_id), f"{FULL_SYNC_PREFIX}{channel_id}"):
            try:
                self._scheduler.remove_job(jid)
                removed = True
            except JobLookupError:
                pass
        if removed:
            logger.info(f"Unscheduled channel {channel_id}")
        return removed

    def trigger_full_sync(self, channel_id: str) -> None:
        """Queue a one-off full inventory push plus booking import"""
        self._scheduler.add_job(
            self.run_channel_job,
            id=f"{FULL_SYNC_PREFIX}{channel_id}",
            args=[channel_id, [SyncType.INVENTORY, SyncType.BOOKING_IMPORT]],
            replace_existing=True,
            next_run_time=datetime.utcnow(),
        )

    def run_channel_job(self, channel_id: str, sync_types: Optional[Iterable[SyncType]] = None) -> None:
        """
        Job body: one orchestrator run in a fresh session.
        """
        db = self.session_factory()
        try:
            channel = db.query(Channel).filter(Channel.id == channel_id).first()
            if channel is None or not channel.is_active:
                logger.info(f"Channel {channel_id} is not active, removing its job")
                self.remove_channel(channel_id)
                return

            orchestrator = SyncOrchestrator(db, connector_factory=self.connector_factory)
            outcome = orchestrator.trigger(channel_id, sync_types or SCHEDULED_TICK)
            if outcome is not None:
                self._last_runs[channel_id] = {
                    "at": datetime.utcnow().isoformat(),
                    "failed": outcome.failed,
                    "batches": {b.sync_type.value: b.status.value for b in outcome.batches},
                }

            db.refresh(channel)
            if channel.status == ChannelStatus.ERROR.value:
                # Needs a reconnect before it runs again
                self.remove_channel(channel_id)
        except Exception as e:
            logger.exception(f"Scheduled sync for channel {channel_id} crashed: {e}")
            db.rollback()
            channel = db.query(Channel).filter(Channel.id == channel_id).first()
            if channel is not None:
                channel.last_error = f"Unexpected error: {e}"[:2000]
                db.commit()
        finally:
            clear_context()
            db.close()

    def status(self) -> Dict:
        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            })
        return {
            "running": self._scheduler.running,
            "jobs": jobs,
            "last_runs": dict(self._last_runs),
        }

    def job_ids(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs()]


# Global scheduler instance
_scheduler: Optional[SyncScheduler] = None


def get_sync_scheduler() -> SyncScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler()
    return _scheduler


def current_scheduler() -> Optional[SyncScheduler]:
    """The running global scheduler, if any"""
    if _scheduler is not None and _scheduler.running:
        return _scheduler
    return None


def start_sync_scheduler() -> bool:
    """
    Start the global scheduler with a job per active channel.

    Returns:
        True if scheduler started successfully, False otherwise
    """
    if not settings.channel_sync_enabled:
        logger.warning("Channel sync disabled, scheduler not started")
        return False
    try:
        get_sync_scheduler().start()
        return True
    except Exception as e:
        logger.error(f"Failed to start sync scheduler: {e}")
        return False


def stop_sync_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
