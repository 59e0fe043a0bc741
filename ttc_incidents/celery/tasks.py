"""Celery tasks wrapping each periodic pass.

Every task runs its async pass on the worker's persistent event loop with a
fresh session, and retries transient failures up to three times.
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypedDict

import structlog

from ttc_incidents.celery.app import celery_app
from ttc_incidents.celery.database import get_worker_loop, get_worker_redis_client, get_worker_session
from ttc_incidents.core.config import settings
from ttc_incidents.schemas.admin import VerificationTarget
from ttc_incidents.services.accuracy_service import AccuracyMonitor
from ttc_incidents.services.change_feed import ChangeFeed
from ttc_incidents.services.cleanup_service import CleanupService
from ttc_incidents.services.ingestion_service import IngestionService
from ttc_incidents.services.maintenance_service import MaintenanceService
from ttc_incidents.services.reconciliation_service import ReconciliationVerifier
from ttc_incidents.services.ttc_client import TtcClient

logger = structlog.get_logger(__name__)

RETRY_COUNTDOWN_SECONDS = 60


def run_in_worker_loop[T](
    coro_func: Callable[..., Awaitable[T]],
    *args: Any,  # noqa: ANN401 - Pass-through args to async function
    **kwargs: Any,  # noqa: ANN401 - Pass-through kwargs to async function
) -> T:
    """
    Run an async function to completion on the worker's persistent loop.

    Raises:
        RuntimeError: If the worker loop is not initialised or closed
    """
    loop = get_worker_loop()
    return loop.run_until_complete(coro_func(*args, **kwargs))


class TaskRequest(Protocol):
    """Celery task request object."""

    @property
    def retries(self) -> int:
        """Number of times the task has been retried."""
        ...


class BoundTask(Protocol):
    """Celery bound task ``self``."""

    @property
    def request(self) -> TaskRequest:
        """Task request object."""
        ...

    def retry(self, exc: Exception | None = None, countdown: int | None = None) -> Exception:
        """Signal a retry by raising."""
        ...


# ==================== Task Results ====================


class PollResult(TypedDict):
    """Result from poll_upstream."""

    status: str
    received: int
    created_threads: int
    created_alerts: int
    hidden_threads: int
    failures: int
    skipped_records: int


class VerifyResult(TypedDict):
    """Result from verify_threads."""

    status: str
    target: str
    success: bool
    upstream_count: int
    final_count: int
    created: int
    unhidden: int
    hidden: int


class AccuracyResult(TypedDict):
    """Result from check_alert_accuracy."""

    status: str
    completeness: float
    precision: float
    accuracy_status: str


class MaintenanceResult(TypedDict):
    """Result from sync_maintenance."""

    status: str
    upserted: int
    deactivated: int
    skipped: int


class CleanupTaskResult(TypedDict):
    """Result from run_retention_cleanup."""

    status: str
    deleted_alerts: int
    deleted_threads: int
    unlinked_alerts: int
    deactivated_maintenance: int


def _change_feed() -> ChangeFeed | None:
    if not settings.CHANGE_FEED_ENABLED:
        return None
    return ChangeFeed(get_worker_redis_client())


def _run_task[T](self: BoundTask, name: str, coro_func: Callable[..., Awaitable[T]], *args: Any) -> T:  # noqa: ANN401
    try:
        result = run_in_worker_loop(coro_func, *args)
    except Exception as exc:
        logger.error(
            f"{name}_task_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            retry_count=self.request.retries,
        )
        raise self.retry(exc=exc, countdown=RETRY_COUNTDOWN_SECONDS) from exc
    logger.info(f"{name}_task_completed", result=result)
    return result


# ==================== Tasks ====================


@celery_app.task(  # type: ignore[arg-type]
    bind=True,
    max_retries=3,
    name="ttc_incidents.celery.tasks.poll_upstream",
)
def poll_upstream(self: BoundTask) -> PollResult:
    """Run one ingestion pass over all upstream sources."""
    return _run_task(self, "poll_upstream", _poll_upstream_async)


async def _poll_upstream_async() -> PollResult:
    session = get_worker_session()
    try:
        async with TtcClient() as client:
            result = await IngestionService(session, client, change_feed=_change_feed()).run_pass()
    finally:
        await session.close()
    return PollResult(
        status="success",
        received=sum(source.received for source in result.sources),
        created_threads=sum(source.created_threads for source in result.sources),
        created_alerts=sum(source.created_alerts for source in result.sources),
        hidden_threads=sum(source.hidden_threads for source in result.sources),
        failures=result.failure_count,
        skipped_records=result.skipped_records,
    )


@celery_app.task(  # type: ignore[arg-type]
    bind=True,
    max_retries=3,
    name="ttc_incidents.celery.tasks.verify_threads",
)
def verify_threads(self: BoundTask, target: str) -> VerifyResult:
    """
    Run the reconciliation verifier for one target.

    Args:
        target: "disruptions", "accessibility" or "rsz"
    """
    return _run_task(self, "verify_threads", _verify_threads_async, VerificationTarget(target))


async def _verify_threads_async(target: VerificationTarget) -> VerifyResult:
    session = get_worker_session()
    try:
        async with TtcClient() as client:
            report = await ReconciliationVerifier(session, client, target, change_feed=_change_feed()).run()
    finally:
        await session.close()
    return VerifyResult(
        status="success",
        target=target.value,
        success=report.success,
        upstream_count=report.upstream_count,
        final_count=report.final_count,
        created=len(report.created),
        unhidden=len(report.unhidden),
        hidden=len(report.hidden),
    )


@celery_app.task(  # type: ignore[arg-type]
    bind=True,
    max_retries=3,
    name="ttc_incidents.celery.tasks.check_alert_accuracy",
)
def check_alert_accuracy(self: BoundTask) -> AccuracyResult:
    """Run one accuracy check."""
    return _run_task(self, "check_alert_accuracy", _check_alert_accuracy_async)


async def _check_alert_accuracy_async() -> AccuracyResult:
    session = get_worker_session()
    try:
        async with TtcClient() as client:
            result = await AccuracyMonitor(session, client).run_check()
    finally:
        await session.close()
    return AccuracyResult(
        status="success",
        completeness=result.completeness,
        precision=result.precision,
        accuracy_status=result.status.value,
    )


@celery_app.task(  # type: ignore[arg-type]
    bind=True,
    max_retries=3,
    name="ttc_incidents.celery.tasks.sync_maintenance",
)
def sync_maintenance(self: BoundTask) -> MaintenanceResult:
    """Scrape scheduled closures."""
    return _run_task(self, "sync_maintenance", _sync_maintenance_async)


async def _sync_maintenance_async() -> MaintenanceResult:
    session = get_worker_session()
    try:
        async with TtcClient() as client:
            result = await MaintenanceService(session, client).sync()
    finally:
        await session.close()
    return MaintenanceResult(
        status="success",
        upserted=result.upserted,
        deactivated=result.deactivated,
        skipped=result.skipped,
    )


@celery_app.task(  # type: ignore[arg-type]
    bind=True,
    max_retries=3,
    name="ttc_incidents.celery.tasks.run_retention_cleanup",
)
def run_retention_cleanup(self: BoundTask) -> CleanupTaskResult:
    """Apply the retention rules."""
    return _run_task(self, "run_retention_cleanup", _run_retention_cleanup_async)


async def _run_retention_cleanup_async() -> CleanupTaskResult:
    session = get_worker_session()
    try:
        result = await CleanupService(session).run()
    finally:
        await session.close()
    return CleanupTaskResult(
        status="success",
        deleted_alerts=result.deleted_alerts,
        deleted_threads=result.deleted_threads,
        unlinked_alerts=result.unlinked_alerts,
        deactivated_maintenance=result.deactivated_maintenance,
    )
