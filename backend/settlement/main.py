"""
Market Settlement — FastAPI Application Entry Point

Aggregates the payment and admin routers, configures middleware,
and initializes logging and the database on startup.
"""
import time
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from settlement.config import get_settings
from settlement.database import SessionLocal, init_db
from settlement.logging_config import setup_logging
from settlement.routes import admin_router, payment_router

settings = get_settings()
logger = structlog.get_logger(__name__)

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Payment settlement and reconciliation for the grocery marketplace. "
        "Settles orders and wallet fundings from gateway webhooks and "
        "client-initiated verification, exactly once."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
def on_startup():
    """Configure logging, create tables and report the boot configuration."""
    setup_logging()
    init_db()

    if not settings.PAYSTACK_SECRET_KEY:
        logger.critical("gateway_secret_missing", detail="webhooks will be refused")

    logger.info(
        "service_started",
        database=settings.DATABASE_URL,
        debug=settings.DEBUG,
        currency=settings.SETTLEMENT_CURRENCY,
    )


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Bind a request id and log every API request with timing."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)

    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration,
        )

    response.headers["X-Request-ID"] = request_id
    return response


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(payment_router)
app.include_router(admin_router)


@app.get("/health", tags=["Health"])
def deep_health():
    """Detailed health check including dependency statuses."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        logger.error("health_database_unreachable", exc_info=True)
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "webhook_secret": "configured" if settings.PAYSTACK_SECRET_KEY else "missing",
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
