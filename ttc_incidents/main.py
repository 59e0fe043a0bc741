"""FastAPI application for the TTC incident engine."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from alembic import script
from alembic.config import Config
from alembic.runtime import migration
from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ttc_incidents import __version__
from ttc_incidents.api import admin, incidents
from ttc_incidents.core.config import settings
from ttc_incidents.core.database import get_db, get_engine
from ttc_incidents.core.logging import configure_logging
from ttc_incidents.core.telemetry import get_tracer_provider, shutdown_tracer_provider
from ttc_incidents.middleware import AccessLoggingMiddleware

# Configured at import so uvicorn's startup logs already go through structlog
configure_logging(log_level=settings.LOG_LEVEL)

logger = structlog.get_logger(__name__)


def _check_alembic_migrations(sync_conn: Connection) -> str | None:
    """
    Check the database is at the Alembic head revision.

    Returns:
        Current revision, or None when alembic.ini is not available

    Raises:
        RuntimeError: If the database is uninitialised or behind head
    """
    current_rev = migration.MigrationContext.configure(sync_conn).get_current_revision()

    alembic_ini_path = Path(settings.ALEMBIC_INI_PATH)
    if not alembic_ini_path.exists():
        logger.warning("alembic_ini_not_found", path=settings.ALEMBIC_INI_PATH, action="skipping migration validation")
        return current_rev

    head_rev = script.ScriptDirectory.from_config(Config(str(alembic_ini_path))).get_current_head()
    if current_rev is None:
        msg = "Database has not been initialized! Please run: alembic upgrade head"
        raise RuntimeError(msg)
    if current_rev != head_rev:
        msg = f"Database migration required (current {current_rev}, head {head_rev}). Please run: alembic upgrade head"
        raise RuntimeError(msg)
    return current_rev


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Set the tracer provider after fork and validate the database outside DEBUG."""
    if settings.OTEL_ENABLED and (provider := get_tracer_provider()):
        trace.set_tracer_provider(provider)
        logger.info("otel_tracer_provider_initialized")

    if settings.DEBUG:
        logger.info("debug_mode_startup", message="skipping database validation")
    else:
        try:
            async with get_engine().begin() as conn:
                await conn.execute(text("SELECT 1"))
                current_rev = await conn.run_sync(_check_alembic_migrations)
                logger.info("database_migration_valid", revision=current_rev)
        except (RuntimeError, OSError, SQLAlchemyError) as e:
            logger.error("startup_failed", error=str(e))
            raise
        logger.info("startup_complete")

    yield

    logger.info("shutdown_starting")
    if settings.OTEL_ENABLED:
        shutdown_tracer_provider()
    if not settings.DEBUG:
        await get_engine().dispose()
    logger.info("shutdown_complete")


app = FastAPI(
    title="TTC Incidents API",
    description="Threaded TTC service disruptions",
    version=__version__,
    lifespan=lifespan,
)

if settings.OTEL_ENABLED:
    FastAPIInstrumentor().instrument_app(app, excluded_urls=",".join(settings.OTEL_EXCLUDED_URLS))
    logger.info("otel_fastapi_instrumented", excluded_urls=settings.OTEL_EXCLUDED_URLS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(AccessLoggingMiddleware)

app.include_router(incidents.router, prefix=settings.API_V1_PREFIX)
app.include_router(admin.router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": settings.PROJECT_NAME, "version": __version__}


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Liveness check."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)) -> dict[str, str]:
    """
    Readiness check: the database answers a trivial query.

    Raises:
        HTTPException: 503 if the database is unreachable
    """
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("readiness_check_failed", error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database unavailable") from e
    return {"status": "ready"}
