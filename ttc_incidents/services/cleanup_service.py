"""Retention cleanup for alerts, threads and scheduled closures."""

from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ttc_incidents.core.config import settings
from ttc_incidents.core.telemetry import service_span
from ttc_incidents.models.incident import Alert, IncidentThread
from ttc_incidents.models.maintenance import PlannedMaintenance
from ttc_incidents.schemas.admin import CleanupResult

logger = structlog.get_logger(__name__)


class CleanupService:
    """Deletes data past its retention window."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def run(self, now: datetime | None = None) -> CleanupResult:
        """
        Apply the retention rules in one transaction.

        1. Threads that are resolved or hidden and untouched for
           ``THREAD_RETENTION_HOURS`` are deleted; their alerts are unlinked
           first, never cascade-deleted. Open threads are never deleted by age.
        2. Alerts older than ``ALERT_RETENTION_HOURS`` are deleted unless they
           are the latest alert of a thread.
        3. Scheduled closures whose end has passed are deactivated.
        """
        now = now or datetime.now(UTC)
        thread_cutoff = now - timedelta(hours=settings.THREAD_RETENTION_HOURS)
        alert_cutoff = now - timedelta(hours=settings.ALERT_RETENTION_HOURS)
        result = CleanupResult()

        with service_span("cleanup.run", "cleanup-service") as span:
            expired_threads = (
                select(IncidentThread.thread_id)
                .where(
                    or_(IncidentThread.is_resolved.is_(True), IncidentThread.is_hidden.is_(True)),
                    IncidentThread.updated_at < thread_cutoff,
                )
                .scalar_subquery()
            )
            unlink = (
                update(Alert)
                .where(Alert.thread_id.in_(expired_threads))
                .values(thread_id=None, is_latest=False)
                .execution_options(synchronize_session=False)
            )
            result.unlinked_alerts = (await self.db.execute(unlink)).rowcount

            delete_threads = (
                delete(IncidentThread)
                .where(
                    or_(IncidentThread.is_resolved.is_(True), IncidentThread.is_hidden.is_(True)),
                    IncidentThread.updated_at < thread_cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            result.deleted_threads = (await self.db.execute(delete_threads)).rowcount

            delete_alerts = (
                delete(Alert)
                .where(
                    Alert.created_at < alert_cutoff,
                    or_(Alert.thread_id.is_(None), Alert.is_latest.is_(False)),
                )
                .execution_options(synchronize_session=False)
            )
            result.deleted_alerts = (await self.db.execute(delete_alerts)).rowcount

            deactivate = (
                update(PlannedMaintenance)
                .where(
                    PlannedMaintenance.is_active.is_(True),
                    and_(PlannedMaintenance.ends_at.is_not(None), PlannedMaintenance.ends_at < now),
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            result.deactivated_maintenance = (await self.db.execute(deactivate)).rowcount

            await self.db.commit()
            span.set_attribute("cleanup.deleted_alerts", result.deleted_alerts)
            span.set_attribute("cleanup.deleted_threads", result.deleted_threads)

        logger.info(
            "retention_cleanup_completed",
            deleted_alerts=result.deleted_alerts,
            unlinked_alerts=result.unlinked_alerts,
            deleted_threads=result.deleted_threads,
            deactivated_maintenance=result.deactivated_maintenance,
        )
        return result
