"""Admin API: trigger passes and read monitoring results."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ttc_incidents.core.config import settings
from ttc_incidents.core.database import get_db
from ttc_incidents.core.redis import get_redis_client
from ttc_incidents.schemas.admin import (
    AccuracyCheckResult,
    AccuracyReportResponse,
    CleanupResult,
    MaintenanceSyncResult,
    TriggerResponse,
    VerificationReport,
    VerificationTarget,
)
from ttc_incidents.services.accuracy_service import AccuracyMonitor, recent_accuracy_reports
from ttc_incidents.services.change_feed import ChangeFeed
from ttc_incidents.services.cleanup_service import CleanupService
from ttc_incidents.services.ingestion_service import IngestionService
from ttc_incidents.services.maintenance_service import MaintenanceService
from ttc_incidents.services.reconciliation_service import ReconciliationVerifier
from ttc_incidents.services.ttc_client import TtcClient, UpstreamError

router = APIRouter(prefix="/admin", tags=["admin"])
logger = structlog.get_logger(__name__)


# ==================== Dependencies ====================


async def get_ttc_client() -> AsyncGenerator[TtcClient]:
    """Upstream client for one request."""
    async with TtcClient() as client:
        yield client


async def get_change_feed() -> AsyncGenerator[ChangeFeed | None]:
    """Change feed publisher, or None when the live-update channel is disabled."""
    if not settings.CHANGE_FEED_ENABLED:
        yield None
        return
    redis_client = get_redis_client()
    try:
        yield ChangeFeed(redis_client)
    finally:
        await redis_client.aclose()


# ==================== API Endpoints ====================


@router.post("/verify/{target}", response_model=VerificationReport)
async def verify(
    target: VerificationTarget,
    db: AsyncSession = Depends(get_db),
    client: TtcClient = Depends(get_ttc_client),
    change_feed: ChangeFeed | None = Depends(get_change_feed),
) -> VerificationReport | JSONResponse:
    """
    Run one reconciliation verifier and return its diff report.

    HTTP 200 whenever the run completes; ``success`` says whether the
    corrected visible count matches upstream. A failed upstream fetch or a
    fatal compare error returns HTTP 500 with ``success=false``.
    """
    try:
        return await ReconciliationVerifier(db, client, target, change_feed=change_feed).run()
    except (UpstreamError, ValueError, SQLAlchemyError) as exc:
        await db.rollback()
        logger.error("reconciliation_failed", target=target.value, error=str(exc))
        report = VerificationReport(
            target=target,
            success=False,
            checked_at=datetime.now(UTC),
            summary=f"{target.value}: verification failed",
            error=str(exc),
        )
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=report.model_dump(mode="json"))


@router.post("/poll", response_model=TriggerResponse)
async def trigger_poll(
    db: AsyncSession = Depends(get_db),
    client: TtcClient = Depends(get_ttc_client),
    change_feed: ChangeFeed | None = Depends(get_change_feed),
) -> TriggerResponse:
    """
    Run one ingestion pass now.

    Raises:
        HTTPException: 500 if configuration is missing
    """
    try:
        result = await IngestionService(db, client, change_feed=change_feed).run_pass()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return TriggerResponse(
        success=result.failure_count == 0,
        message=f"Ingestion pass processed {sum(s.received for s in result.sources)} alerts",
        details=result.model_dump(mode="json"),
    )


@router.post("/accuracy", response_model=AccuracyCheckResult)
async def trigger_accuracy_check(
    db: AsyncSession = Depends(get_db),
    client: TtcClient = Depends(get_ttc_client),
) -> AccuracyCheckResult:
    """
    Run one accuracy check now.

    Raises:
        HTTPException: 503 if the live feed is unavailable
    """
    try:
        return await AccuracyMonitor(db, client).run_check()
    except UpstreamError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/accuracy/reports", response_model=list[AccuracyReportResponse])
async def list_accuracy_reports(
    limit: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
) -> list[AccuracyReportResponse]:
    """Daily accuracy aggregates, newest first."""
    return [AccuracyReportResponse.model_validate(report) for report in await recent_accuracy_reports(db, limit)]


@router.post("/cleanup", response_model=CleanupResult)
async def trigger_cleanup(db: AsyncSession = Depends(get_db)) -> CleanupResult:
    """Apply the retention rules now."""
    return await CleanupService(db).run()


@router.post("/maintenance/sync", response_model=MaintenanceSyncResult)
async def trigger_maintenance_sync(
    db: AsyncSession = Depends(get_db),
    client: TtcClient = Depends(get_ttc_client),
) -> MaintenanceSyncResult:
    """
    Scrape scheduled closures now.

    Raises:
        HTTPException: 503 if the search is unavailable
    """
    try:
        return await MaintenanceService(db, client).sync()
    except UpstreamError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
