"""
Health Check Endpoints

- /health/live - Liveness check (is process running)
- /health/ready - Readiness check (database reachable)
- /health/detailed - Database, scheduler and channel states
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..models.channel import Channel
from ..services.sync_scheduler import current_scheduler

router = APIRouter(prefix="/health", tags=["Health"])


def get_db_health(db: Session) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": "postgresql" if "postgresql" in str(db.bind.url) else "sqlite"
        }
    except Exception as e:
        return {
            "status": "down",
            "error": str(e)[:100]
        }


def get_scheduler_health() -> dict:
    if not settings.channel_sync_enabled:
        return {"status": "disabled"}
    scheduler = current_scheduler()
    if scheduler is None:
        return {"status": "stopped"}
    info = scheduler.status()
    return {"status": "up", "jobs": len(info["jobs"])}


@router.get("/live")
async def liveness():
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/ready")
async def readiness(db: Session = Depends(get_db)):
    database = get_db_health(db)
    if database["status"] != "up":
        return JSONResponse(status_code=503, content={"status": "not_ready", "database": database})
    return {"status": "ready", "database": database}


@router.get("/detailed")
async def detailed_health(db: Session = Depends(get_db)):
    database = get_db_health(db)
    channels = {}
    if database["status"] == "up":
        channels = {
            status: count
            for status, count in db.query(Channel.status, func.count(Channel.id)).filter(
                Channel.deleted_at.is_(None)
            ).group_by(Channel.status).all()
        }

    overall = "healthy" if database["status"] == "up" else "unhealthy"
    if overall == "healthy" and channels.get("error"):
        overall = "degraded"

    return {
        "status": overall,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "components": {
            "database": database,
            "scheduler": get_scheduler_health(),
        },
        "channels": channels,
    }
