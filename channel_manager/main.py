from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import logging
import uuid

from .config import settings
from .database import create_tables
from .errors import (
    ChannelManagerError,
    ChannelStateError,
    ConnectorError,
    DuplicateChannel,
    OversellRejected,
    ParityViolation,
    RecordNotFound,
    ValidationError
)
from .services.sync_scheduler import start_sync_scheduler, stop_sync_scheduler
from .utils.logging_config import setup_logging, set_request_context
from .utils.rate_limiter import limiter

# Import all routers
from .routers import channels, inventory, bookings, sync_logs, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json)

    print("🚀 Starting channel-manager...")
    print(f"📍 Environment: {settings.environment}")
    print(f"🔐 CORS Origins: {settings.cors_origins}")

    create_tables()
    print("✅ Database ready")

    # ==========================================
    # START CHANNEL SYNC SCHEDULER
    # ==========================================
    if start_sync_scheduler():
        print("🔄 Channel sync scheduler started")
    else:
        print("⚠️  Channel sync disabled, scheduler not started")

    yield

    # Shutdown
    print("👋 Shutting down channel-manager...")
    stop_sync_scheduler()


# Create FastAPI app
app = FastAPI(
    title="Channel Manager API",
    description="Hotel inventory, rate and booking distribution across OTA channels",
    version="1.0.0",
    lifespan=lifespan
)

# Rate limiter state
app.state.limiter = limiter


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


app.add_middleware(RequestIdMiddleware)


# ================================
# ERROR HANDLERS
# ================================

ERROR_STATUS = [
    (RecordNotFound, 404),
    (DuplicateChannel, 409),
    (OversellRejected, 409),
    (ParityViolation, 409),
    (ChannelStateError, 409),
    (ValidationError, 400),
    (ConnectorError, 502),
]


@app.exception_handler(ChannelManagerError)
async def channel_manager_error_handler(request: Request, exc: ChannelManagerError):
    status_code = 500
    for error_class, code in ERROR_STATUS:
        if isinstance(exc, error_class):
            status_code = code
            break
    if status_code == 500:
        logger.error(f"Unhandled channel manager error: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__}
    )


# Rate limit handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests, try again later"}
    )


# Include routers
app.include_router(channels.router)
app.include_router(inventory.router)
app.include_router(bookings.router)
app.include_router(sync_logs.router)
app.include_router(health.router)


@app.get("")
@app.get("/")
async def root():
    return {
        "message": "Channel Manager API",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "running"
    }


@app.get("/health")
@app.get("/health/")
async def health_check():
    return {"status": "healthy"}
