"""Ingestion pass: fetch every source, normalize, thread."""

import asyncio
from collections.abc import Awaitable
from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ttc_incidents.core.config import PASS_REQUIRED_CONFIG, require_config, settings
from ttc_incidents.core.telemetry import service_span
from ttc_incidents.helpers.rsz_parser import parse_rsz_page
from ttc_incidents.models.incident import AlertSource
from ttc_incidents.schemas.incidents import IngestionResult, PassResult
from ttc_incidents.schemas.ttc import LiveAlertsPayload
from ttc_incidents.services.change_feed import ChangeFeed
from ttc_incidents.services.normalizer import (
    is_live_rsz,
    normalize_elevator_alerts,
    normalize_live_alerts,
    normalize_rsz_zones,
)
from ttc_incidents.services.threading_service import IncidentThreadingEngine
from ttc_incidents.services.ttc_client import TtcClient, UpstreamError

logger = structlog.get_logger(__name__)


def source_timeout() -> float:
    """Wall-clock budget for one source, covering its retries."""
    return settings.UPSTREAM_TIMEOUT_SECONDS * (settings.UPSTREAM_RETRY_ATTEMPTS + 1)


async def fetch_soft[T](source: str, fetch: Awaitable[T]) -> T | None:
    """
    Await an upstream fetch under its own timeout, returning None on failure.

    A failed source is logged as ``upstream_fetch_failed`` and treated as
    "no alerts this pass"; it never aborts the pass.
    """
    try:
        return await asyncio.wait_for(fetch, timeout=source_timeout())
    except TimeoutError:
        logger.warning("upstream_fetch_failed", source=source, error="timeout", timeout=source_timeout())
    except UpstreamError as exc:
        logger.warning("upstream_fetch_failed", source=source, error=str(exc), status_code=exc.status_code)
    return None


class IngestionService:
    """Runs one poll of all upstream sources through the threading engine."""

    def __init__(self, db: AsyncSession, client: TtcClient, change_feed: ChangeFeed | None = None) -> None:
        self.db = db
        self.client = client
        self.engine = IncidentThreadingEngine(db, change_feed=change_feed)

    async def run_pass(self) -> PassResult:
        """
        Run one ingestion pass.

        Sources are fetched concurrently; batches are then applied one source
        at a time on this service's session.

        Returns:
            PassResult with one IngestionResult per source

        Raises:
            ValueError: If required configuration is missing (nothing fetched
                or written)
        """
        require_config(*PASS_REQUIRED_CONFIG)
        started_at = datetime.now(UTC)

        with service_span("ingestion.run_pass", "ingestion-service") as span:
            live_payload, rsz_html = await asyncio.gather(
                fetch_soft("live", self.client.fetch_live_alerts()),
                fetch_soft("rsz", self.client.fetch_rsz_page()),
            )
            live_ok = live_payload is not None
            payload = live_payload or LiveAlertsPayload()

            live_alerts, live_skipped = normalize_live_alerts(payload.routes, started_at)
            live_alerts = [alert for alert in live_alerts if not is_live_rsz(alert)]
            elevator_alerts, elevator_skipped = normalize_elevator_alerts(payload.accessibility)
            rsz_alerts = normalize_rsz_zones(parse_rsz_page(rsz_html)) if rsz_html is not None else []

            results: list[IngestionResult] = [
                await self.engine.process_batch(live_alerts, AlertSource.LIVE, complete=live_ok),
                await self.engine.process_batch(elevator_alerts, AlertSource.ELEVATOR, complete=live_ok),
                await self.engine.process_batch(rsz_alerts, AlertSource.RSZ, complete=rsz_html is not None),
            ]

            result = PassResult(
                started_at=started_at,
                finished_at=datetime.now(UTC),
                sources=results,
                skipped_records=live_skipped + elevator_skipped,
            )
            span.set_attribute("ingestion.live_fetched", live_ok)
            span.set_attribute("ingestion.rsz_fetched", rsz_html is not None)
            span.set_attribute("ingestion.failures", result.failure_count)
            span.set_attribute("ingestion.skipped_records", result.skipped_records)

        logger.info(
            "ingestion_pass_completed",
            duration_seconds=(result.finished_at - started_at).total_seconds(),
            sources={r.source.value: r.received for r in results},
            failures=result.failure_count,
            skipped_records=result.skipped_records,
        )
        return result
