"""Reconciliation verifiers.

Each verifier treats one upstream snapshot as ground truth for its target
category and corrects the stored visible thread set to match it:

- keys active upstream with no visible thread are created, or un-hidden and
  un-resolved when the thread already exists
- visible threads whose key is absent upstream are hidden

Expected keys come from the same normalizer (and so the same
``helpers.thread_keys`` derivation) as ingestion, and corrections go
through the threading engine's upsert primitives.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ttc_incidents.core.config import PASS_REQUIRED_CONFIG, require_config
from ttc_incidents.core.telemetry import service_span
from ttc_incidents.helpers.categorization import AlertCategory
from ttc_incidents.helpers.rsz_parser import parse_rsz_page
from ttc_incidents.models.incident import AlertSource, IncidentThread
from ttc_incidents.schemas.admin import VerificationReport, VerificationTarget
from ttc_incidents.schemas.incidents import NormalizedAlert
from ttc_incidents.services.change_feed import ChangeFeed
from ttc_incidents.services.normalizer import (
    is_live_rsz,
    normalize_elevator_alerts,
    normalize_live_alerts,
    normalize_rsz_zones,
)
from ttc_incidents.services.threading_service import IncidentThreadingEngine, routes_cover
from ttc_incidents.services.ttc_client import TtcClient

logger = structlog.get_logger(__name__)

TARGET_SOURCES: dict[VerificationTarget, AlertSource] = {
    VerificationTarget.DISRUPTIONS: AlertSource.LIVE,
    VerificationTarget.ACCESSIBILITY: AlertSource.ELEVATOR,
    VerificationTarget.RSZ: AlertSource.RSZ,
}

# Live threads carrying any of these belong to another view or verifier
EXCLUDED_DISRUPTION_CATEGORIES = frozenset(
    {
        AlertCategory.RSZ.value,
        AlertCategory.ACCESSIBILITY.value,
        AlertCategory.PLANNED_SERVICE_DISRUPTION.value,
    }
)


# ==================== Pure Helper Functions ====================


def expected_disruptions(alerts: Sequence[NormalizedAlert]) -> list[NormalizedAlert]:
    """
    Live alerts that should each have a visible disruption thread.

    Excludes RSZ and accessibility items, resumed alerts, alerts outside
    their scheduled windows, and alerts whose routes are all covered by a
    "service resumed" alert in the same snapshot.
    """
    resumed = [alert for alert in alerts if alert.is_resumed]
    expected = []
    for alert in alerts:
        if alert.is_resumed or is_live_rsz(alert):
            continue
        if EXCLUDED_DISRUPTION_CATEGORIES.intersection(alert.categories):
            continue
        if any(routes_cover(other.affected_routes, alert.affected_routes) for other in resumed):
            continue
        expected.append(alert)
    return expected


def is_target_thread(thread: IncidentThread, target: VerificationTarget) -> bool:
    """Check whether a visible stored thread is in the verifier's scope."""
    if thread.source != TARGET_SOURCES[target]:
        return False
    if target is VerificationTarget.DISRUPTIONS:
        return not EXCLUDED_DISRUPTION_CATEGORIES.intersection(thread.categories)
    return True


def build_summary(report: VerificationReport) -> str:
    """
    Human summary line for a verification report.

    Example:
        >>> from datetime import datetime, UTC
        >>> report = VerificationReport(
        ...     target=VerificationTarget.RSZ, success=True, checked_at=datetime.now(UTC),
        ...     upstream_count=3, database_count=2, final_count=3, created=["thread-rsz-a"],
        ... )
        >>> build_summary(report)
        'rsz: upstream=3 stored=2 final=3; created 1, unhidden 0, hidden 0 (in sync)'
    """
    state = "in sync" if report.success else "MISMATCH"
    return (
        f"{report.target.value}: upstream={report.upstream_count} stored={report.database_count} "
        f"final={report.final_count}; created {len(report.created)}, unhidden {len(report.unhidden)}, "
        f"hidden {len(report.hidden)} ({state})"
    )


# ==================== Verifier ====================


class ReconciliationVerifier:
    """Diffs one target's upstream snapshot against stored visible threads."""

    def __init__(
        self,
        db: AsyncSession,
        client: TtcClient,
        target: VerificationTarget,
        change_feed: ChangeFeed | None = None,
    ) -> None:
        self.db = db
        self.client = client
        self.target = target
        self.source = TARGET_SOURCES[target]
        self.engine = IncidentThreadingEngine(db, change_feed=change_feed)

    async def fetch_expected(self, now: datetime) -> dict[str, NormalizedAlert]:
        """
        Fetch the upstream snapshot and key it by thread id.

        Raises:
            UpstreamError: If the snapshot cannot be fetched; a verification
                run without ground truth is a failure, not an empty snapshot
        """
        if self.target is VerificationTarget.RSZ:
            alerts = normalize_rsz_zones(parse_rsz_page(await self.client.fetch_rsz_page()))
        else:
            payload = await self.client.fetch_live_alerts()
            if self.target is VerificationTarget.DISRUPTIONS:
                alerts = expected_disruptions(normalize_live_alerts(payload.routes, now)[0])
            else:
                alerts = [a for a in normalize_elevator_alerts(payload.accessibility)[0] if not a.is_resumed]

        expected: dict[str, NormalizedAlert] = {}
        for alert in alerts:
            expected.setdefault(alert.thread_id, alert)
        return expected

    async def visible_threads(self) -> dict[str, IncidentThread]:
        """Unhidden threads of the target, resolved or not."""
        stmt = (
            select(IncidentThread)
            .where(IncidentThread.source == self.source, IncidentThread.is_hidden.is_(False))
            .execution_options(populate_existing=True)
        )
        threads = (await self.db.execute(stmt)).scalars().all()
        return {thread.thread_id: thread for thread in threads if is_target_thread(thread, self.target)}

    async def run(self) -> VerificationReport:
        """
        Run one verification and correction.

        Returns:
            VerificationReport; ``success`` is True when the visible count
            after corrections equals the upstream count

        Raises:
            ValueError: If required configuration is missing
            UpstreamError: If the upstream snapshot cannot be fetched
        """
        require_config(*PASS_REQUIRED_CONFIG)
        now = datetime.now(UTC)

        with service_span("reconciliation.run", "reconciliation-verifier", target=self.target.value) as span:
            expected = await self.fetch_expected(now)
            stored = await self.visible_threads()

            report = VerificationReport(
                target=self.target,
                success=False,
                checked_at=now,
                upstream_count=len(expected),
                database_count=len(stored),
            )
            # A resolved thread still shown must be reopened if upstream lists it as active
            report.missing_in_db = sorted(key for key in expected if key not in stored or stored[key].is_resolved)
            report.stale_in_db = sorted(key for key in stored if key not in expected)

            for thread_id in report.missing_in_db:
                alert = expected[thread_id]
                existing = await self.engine.get_thread(thread_id)
                if existing is None:
                    await self._create(alert)
                    report.created.append(thread_id)
                else:
                    report.hidden_but_active.append(thread_id)
                    await self._restore(existing, alert)
                    report.unhidden.append(thread_id)

            for thread_id in report.stale_in_db:
                await self._hide(stored[thread_id], now)
                report.hidden.append(thread_id)

            await self.db.commit()
            await self.engine.flush_events()

            report.final_count = len(await self.visible_threads())
            report.success = report.final_count == report.upstream_count
            report.summary = build_summary(report)

            span.set_attribute("reconciliation.upstream_count", report.upstream_count)
            span.set_attribute("reconciliation.final_count", report.final_count)
            span.set_attribute("reconciliation.success", report.success)

        log = logger.info if report.success else logger.warning
        log(
            "reconciliation_completed",
            target=self.target.value,
            success=report.success,
            upstream_count=report.upstream_count,
            database_count=report.database_count,
            final_count=report.final_count,
            created=len(report.created),
            unhidden=len(report.unhidden),
            hidden=len(report.hidden),
        )
        return report

    async def _create(self, alert: NormalizedAlert) -> None:
        await self.engine.ensure_thread(alert)
        await self.engine.attach_alert(alert)

    async def _restore(self, thread: IncidentThread, alert: NormalizedAlert) -> None:
        changes: dict[str, Any] = {
            "is_hidden": False,
            "is_resolved": False,
            "resolved_at": None,
            "missed_polls": 0,
            "categories": alert.categories,
        }
        if alert.header_text:
            changes["title"] = alert.header_text
        await self.engine.update_thread(thread.thread_id, changes)
        await self.engine.attach_alert(alert)

    async def _hide(self, thread: IncidentThread, now: datetime) -> None:
        changes: dict[str, Any] = {"is_hidden": True}
        # Slow zones are simply gone when absent; they are not "resolved" incidents
        if self.target is not VerificationTarget.RSZ:
            changes["is_resolved"] = True
            changes["resolved_at"] = now
        await self.engine.update_thread(thread.thread_id, changes)
