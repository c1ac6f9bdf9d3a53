#!/usr/bin/env python
"""
Channel Sync Worker

Standalone process that runs the channel sync scheduler, for deployments
where the API runs with CHANNEL_SYNC_ENABLED=false:
1. One interval job per active channel (push rates/availability, pull bookings)
2. Periodic refresh of the job list from the channels table

Run with:
    python worker.py

Or with environment:
    WORKER_INTERVAL=30 python worker.py
"""

import os
import sys
import time
import logging
import signal

from channel_manager.config import settings
from channel_manager.database import create_tables
from channel_manager.services.sync_scheduler import SyncScheduler
from channel_manager.utils.logging_config import setup_logging

logger = logging.getLogger("worker")

# Seconds between job-list refreshes
POLL_INTERVAL = int(os.getenv("WORKER_INTERVAL", "30"))
MAX_WORKERS = int(os.getenv("WORKER_MAX_THREADS", "10"))
RUNNING = True


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    global RUNNING
    logger.info("Received shutdown signal, letting running syncs finish...")
    RUNNING = False


def run_worker():
    """Main worker loop"""
    logger.info("=" * 50)
    logger.info("Starting Channel Sync Worker")
    logger.info(f"Refresh interval: {POLL_INTERVAL}s")
    logger.info(f"Sync threads: {MAX_WORKERS}")
    logger.info("=" * 50)

    create_tables()
    scheduler = SyncScheduler(max_workers=MAX_WORKERS)
    count = scheduler.start()
    logger.info(f"Scheduled {count} channel(s)")

    cycle = 0
    try:
        while RUNNING:
            time.sleep(POLL_INTERVAL)
            if not RUNNING:
                break
            cycle += 1
            try:
                scheduler.refresh_channels()
            except Exception as e:
                logger.error(f"Error refreshing channel jobs in cycle {cycle}: {e}")
    finally:
        scheduler.shutdown(wait=True)

    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    setup_logging(level=settings.log_level, json_format=settings.log_json, include_uvicorn=False)

    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        run_worker()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        sys.exit(1)
