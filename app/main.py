# app/main.py
import uvicorn
import os
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.utils import get_openapi
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import VaultConfig, settings
from app.core.database import AsyncSessionLocal, engine, Base
from app.core.errors import LedgerError
from app.core.locks import KeyedLock
from app.api.v1.api import api_router
from app.utils.event_source import VaultEventSource, Web3VaultEventSource
from app.utils.group_ledger import GroupLedgerEngine
from app.utils.ledger import LedgerEngine
from app.utils.oracle import StaticPriceOracle
from app.utils.reconciler import Reconciler
from app.utils.vault_monitor import VaultMonitor

# Import models so Base.metadata knows every table
from app.models import goal, group_goal, savings_transaction, vault_event, scan_checkpoint  # noqa: F401

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Create all tables on startup (for local dev; deployments run Alembic)
async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def init_services(
    app: FastAPI,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    vaults: Optional[Iterable[VaultConfig]] = None,
    source_factory: Callable[[VaultConfig], VaultEventSource] = Web3VaultEventSource,
) -> None:
    """Build the engines once and hang them on app.state for the request handlers."""
    locks = KeyedLock()
    ledger = LedgerEngine(locks, oracle=StaticPriceOracle(settings.ORACLE_USD_RATES))
    group_ledger = GroupLedgerEngine(locks)
    reconciler = Reconciler(ledger, group_ledger, locks)
    app.state.locks = locks
    app.state.ledger = ledger
    app.state.group_ledger = group_ledger
    app.state.reconciler = reconciler
    app.state.vault_monitor = VaultMonitor(
        settings.VAULTS if vaults is None else vaults,
        reconciler,
        session_factory,
        source_factory=source_factory,
    )


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    openapi_tags=[
        {"name": "goals", "description": "Personal savings goals"},
        {"name": "group-goals", "description": "Shared savings goals and their members"},
        {"name": "transactions", "description": "Ledger transactions and their chain references"},
        {"name": "vaults", "description": "Vault event scanning and reconciliation"},
    ],
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

# CORS Configuration
origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",  # Local development
    "http://localhost:3001",  # Backup local port
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request, exc: LedgerError):
    """Map ledger failures to their HTTP status, keeping the reason code"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code}
    )


@app.exception_handler(StaleDataError)
async def stale_data_handler(request, exc: StaleDataError):
    logger.warning(f"Concurrent update rejected on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=409,
        content={"detail": "The record was modified concurrently; retry the request", "error": "conflict"}
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for better error responses"""
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail}
        )

    logger.exception(f"Unhandled exception on {request.url.path}: {exc}")

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

# ------------------------------------------------------------
# ROOT ENDPOINT
# ------------------------------------------------------------
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": f"{settings.APP_NAME} is running!",
        "version": settings.VERSION
    }

# ------------------------------------------------------------
# HEALTH CHECK ENDPOINT
# ------------------------------------------------------------
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail=f"Service unhealthy: {str(e)}")
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT
    }

# ------------------------------------------------------------
# BUSINESS LOGIC ROUTES
# ------------------------------------------------------------
app.include_router(api_router, prefix="/api/v1")

# ------------------------------------------------------------
# STARTUP / SHUTDOWN EVENTS
# ------------------------------------------------------------
@app.on_event("startup")
async def on_startup():
    """Create tables, build the engines and start vault scanning"""
    await create_db_and_tables()
    logger.info("✅ Database tables created successfully")
    init_services(app)
    logger.info(f"✅ {len(settings.VAULTS)} vault(s) configured")
    if settings.ENABLE_VAULT_MONITOR:
        app.state.vault_monitor.start()
    else:
        logger.info("⚠️ Vault monitor disabled - use the sync endpoint to scan manually")


@app.on_event("shutdown")
async def on_shutdown():
    monitor = getattr(app.state, "vault_monitor", None)
    if monitor is not None:
        monitor.shutdown()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app.main:app", host="0.0.0.0", port=port, reload=False)
