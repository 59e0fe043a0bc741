"""Scheduled-closure scrape and listing."""

from datetime import UTC, datetime

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ttc_incidents.core.config import require_config, settings
from ttc_incidents.core.database import dialect_insert
from ttc_incidents.core.telemetry import service_span
from ttc_incidents.helpers.maintenance_parser import parse_search_result
from ttc_incidents.models.maintenance import PlannedMaintenance
from ttc_incidents.schemas.admin import MaintenanceSyncResult
from ttc_incidents.schemas.ttc import MaintenanceItem
from ttc_incidents.services.ttc_client import TtcClient

logger = structlog.get_logger(__name__)


class MaintenanceService:
    """Keeps planned_maintenance in step with the service-changes search."""

    def __init__(self, db: AsyncSession, client: TtcClient | None = None) -> None:
        self.db = db
        self.client = client

    async def sync(self, now: datetime | None = None) -> MaintenanceSyncResult:
        """
        Scrape the search results and upsert them by content hash.

        Records whose end has passed, or which were missing from this
        (successful) scrape, are marked inactive.

        Raises:
            ValueError: If required configuration is missing
            UpstreamError: If the search cannot be fetched; nothing is
                deactivated in that case
        """
        require_config("DATABASE_URL", "TTC_MAINTENANCE_URL")
        if self.client is None:
            msg = "MaintenanceService.sync requires a TtcClient"
            raise ValueError(msg)
        now = now or datetime.now(UTC)
        result = MaintenanceSyncResult()

        with service_span("maintenance.sync", "maintenance-service") as span:
            raw_results = await self.client.fetch_maintenance_results(settings.MAINTENANCE_MAX_PAGES)
            result.scraped = len(raw_results)

            items: dict[str, MaintenanceItem] = {}
            for raw in raw_results:
                item = parse_search_result(raw)
                if item is None:
                    result.skipped += 1
                    continue
                items.setdefault(item.maintenance_key, item)

            for item in items.values():
                await self._upsert(item, now)
            result.upserted = len(items)

            ended = and_(PlannedMaintenance.ends_at.is_not(None), PlannedMaintenance.ends_at < now)
            # An empty scrape is more likely a markup change than no closures at all
            stale = or_(PlannedMaintenance.maintenance_key.not_in(list(items)), ended) if items else ended
            deactivate = (
                update(PlannedMaintenance)
                .where(PlannedMaintenance.is_active.is_(True), stale)
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            result.deactivated = (await self.db.execute(deactivate)).rowcount
            await self.db.commit()

            span.set_attribute("maintenance.upserted", result.upserted)
            span.set_attribute("maintenance.deactivated", result.deactivated)

        logger.info(
            "maintenance_sync_completed",
            scraped=result.scraped,
            upserted=result.upserted,
            deactivated=result.deactivated,
            skipped=result.skipped,
        )
        return result

    async def _upsert(self, item: MaintenanceItem, now: datetime) -> None:
        values = item.model_dump()
        values["starts_at"] = item.starts_at.astimezone(UTC)
        values["ends_at"] = item.ends_at.astimezone(UTC) if item.ends_at else None
        stmt = dialect_insert(self.db, PlannedMaintenance.__table__).values(
            **values, is_active=True, last_seen_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["maintenance_key"],
            set_={
                "upstream_id": stmt.excluded.upstream_id,
                "routes": stmt.excluded.routes,
                "route_name": stmt.excluded.route_name,
                "url": stmt.excluded.url,
                "end_date_text": stmt.excluded.end_date_text,
                "ends_at": stmt.excluded.ends_at,
                "is_active": True,
                "last_seen_at": now,
                "updated_at": now,
            },
        )
        await self.db.execute(stmt)

    async def list_active(self, now: datetime | None = None) -> list[PlannedMaintenance]:
        """Active closures that have not ended, soonest first."""
        now = now or datetime.now(UTC)
        stmt = (
            select(PlannedMaintenance)
            .where(
                PlannedMaintenance.is_active.is_(True),
                or_(PlannedMaintenance.ends_at.is_(None), PlannedMaintenance.ends_at >= now),
            )
            .order_by(PlannedMaintenance.starts_at)
        )
        return list((await self.db.execute(stmt)).scalars().all())
