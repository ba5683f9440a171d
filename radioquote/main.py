"""
FastAPI application entry point for the Radio Quote Engine API.

This module is the composition root: the lifespan creates the connection pool,
applies the schema and builds every service once, storing them on
``app.state`` where the dependencies in radioquote.core.dependencies find them.
No service is a module-level singleton.

Startup order:
    pool -> schema -> audit log -> alerts -> validator -> monitor (started)
    -> store -> totals -> assembler -> learning engine -> outcome recorder

Shutdown stops the monitor task, drains queued alerts and closes the pool.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from asyncpg import Pool
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from radioquote import __version__
from radioquote.api.clients import router as clients_router
from radioquote.api.learning import router as learning_router
from radioquote.api.monitoring import router as monitoring_router
from radioquote.api.parts import router as parts_router
from radioquote.api.quotes import router as quotes_router
from radioquote.core.audit import AuditLog
from radioquote.core.config import Settings, get_settings
from radioquote.core.database import apply_schema, close_db, init_db
from radioquote.services.alerts import AlertDispatcher
from radioquote.services.learning_engine import LearningEngine
from radioquote.services.outcomes import OutcomeRecorder
from radioquote.services.production_monitor import ProductionMonitor
from radioquote.services.quote_assembler import QuoteAssembler
from radioquote.services.safety_validator import SafetyValidator
from radioquote.services.store import QuoteStore
from radioquote.services.totals import TotalsCalculator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_services(app: FastAPI, pool: Pool, settings: Settings) -> None:
    """Construct the service graph over a pool and attach it to app.state."""
    audit = AuditLog(settings.audit_dir)
    alerts = AlertDispatcher(
        audit,
        slack_webhook_url=settings.slack_webhook_url,
        manager_webhook_url=settings.manager_webhook_url,
    )
    validator = SafetyValidator(audit=audit, alerts=alerts)
    monitor = ProductionMonitor(
        audit=audit,
        alerts=alerts,
        report_interval_seconds=settings.health_report_interval_seconds,
    )

    store = QuoteStore(pool, timeout=settings.store_timeout_seconds)
    totals = TotalsCalculator(store, labor_rate=settings.labor_rate, tax_rate=settings.tax_rate)

    app.state.audit = audit
    app.state.alerts = alerts
    app.state.validator = validator
    app.state.monitor = monitor
    app.state.store = store
    app.state.totals = totals
    app.state.assembler = QuoteAssembler(
        store,
        totals,
        labor_rate=settings.labor_rate,
        validator=validator,
        monitor=monitor,
    )
    app.state.learning = LearningEngine(
        store,
        confidence_threshold=settings.learning_confidence_threshold,
        minimum_sample_size=settings.learning_minimum_sample_size,
    )
    app.state.outcomes = OutcomeRecorder(store)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Initialize database connection pool and apply the schema
        - Build services and start the periodic health report

    On shutdown:
        - Stop the health report task and drain pending alerts
        - Close database connection pool
    """
    settings = get_settings()

    # Startup
    logger.info("Radio Quote Engine API starting")
    try:
        pool = await init_db()
        await apply_schema(pool)
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    build_services(app, pool, settings)
    app.state.monitor.start()

    yield

    # Shutdown
    logger.info("Radio Quote Engine API shutting down")
    await app.state.monitor.stop()
    app.state.alerts.close()
    app.state.audit.close()
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


# Create FastAPI application
app = FastAPI(
    title="Radio Quote Engine API",
    version=__version__,
    description=(
        "Quote engine for two-way radio systems. Assembles priced quotes from "
        "recommendations, gates them with safety rules, learns from won/lost "
        "outcomes and reports production health."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers
app.include_router(parts_router, prefix="/parts", tags=["parts"])
app.include_router(clients_router, prefix="/clients", tags=["clients"])
app.include_router(quotes_router, prefix="/quotes", tags=["quotes"])
app.include_router(learning_router, prefix="/learning", tags=["learning"])
app.include_router(monitoring_router, prefix="/monitoring", tags=["monitoring"])


@app.get("/health")
async def health_check():
    """
    Health check endpoint for load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    """
    Root endpoint providing API information.

    Returns:
        Dict with API name and version
    """
    return {
        "name": "Radio Quote Engine API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "radioquote.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
