"""Accuracy monitor: how closely the stored view tracks the live feed.

Observability only; nothing here mutates threads or alerts.
"""

import re
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ttc_incidents.core.config import PASS_REQUIRED_CONFIG, require_config, settings
from ttc_incidents.core.database import dialect_insert
from ttc_incidents.core.telemetry import get_current_trace_id, service_span
from ttc_incidents.helpers.categorization import AlertCategory
from ttc_incidents.helpers.display import is_displayable_thread
from ttc_incidents.helpers.route_extraction import SUBWAY_LINE_PATTERN
from ttc_incidents.models.accuracy import AlertAccuracyLog, AlertAccuracyReport
from ttc_incidents.models.incident import AlertSource, IncidentThread
from ttc_incidents.schemas.admin import AccuracyCheckResult, AccuracyStatus, MatchDetail
from ttc_incidents.services.normalizer import is_live_rsz, normalize_live_alerts
from ttc_incidents.services.ttc_client import TtcClient

logger = structlog.get_logger(__name__)

EXCLUDED_STORED_CATEGORIES = frozenset({AlertCategory.RSZ.value, AlertCategory.ACCESSIBILITY.value})


class ComparableAlert(BaseModel):
    """One side of an accuracy comparison."""

    model_config = ConfigDict(frozen=True)

    route: str
    text: str


# ==================== Pure Helper Functions ====================


def jaccard_similarity(text_a: str, text_b: str) -> float:
    """
    Jaccard similarity of the lowercase whitespace-separated words.

    Example:
        >>> jaccard_similarity("504 King: No service", "504 King: no service west")
        0.8
        >>> jaccard_similarity("", "")
        0.0
    """
    words_a = set(text_a.lower().split())
    words_b = set(text_b.lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def route_from_title(title: str) -> str:
    """
    Route named at the start of an alert title.

    Example:
        >>> route_from_title("Line 2 Bloor-Danforth: Delays")
        'Line 2'
        >>> route_from_title("504 King: Detour")
        '504'
        >>> route_from_title("Union Station: Elevator out of service")
        'Union Station'
    """
    line_match = SUBWAY_LINE_PATTERN.search(title)
    if line_match:
        return f"Line {line_match.group(1)}"
    number_match = re.match(r"^\s*(\d+)", title)
    if number_match:
        return number_match.group(1)
    return title.split(":", 1)[0].strip()


def match_alerts(
    upstream: Sequence[ComparableAlert],
    stored: Sequence[ComparableAlert],
    threshold: float,
) -> tuple[int, list[ComparableAlert], list[ComparableAlert]]:
    """
    Pair upstream and stored alerts one-to-one.

    A pair needs a case-insensitive route match and title similarity of at
    least ``threshold``; the first unmatched stored alert that qualifies wins.

    Returns:
        (matched count, unmatched upstream alerts, unmatched stored alerts)
    """
    used: set[int] = set()
    missing: list[ComparableAlert] = []
    for alert in upstream:
        for index, candidate in enumerate(stored):
            if index in used:
                continue
            if (
                alert.route.lower() == candidate.route.lower()
                and jaccard_similarity(alert.text, candidate.text) >= threshold
            ):
                used.add(index)
                break
        else:
            missing.append(alert)
    stale = [candidate for index, candidate in enumerate(stored) if index not in used]
    return len(used), missing, stale


def compute_metrics(matched: int, upstream_count: int, stored_count: int) -> tuple[float, float]:
    """
    Completeness and precision as percentages rounded to 2 decimals.

    Example:
        >>> compute_metrics(2, 3, 4)
        (66.67, 50.0)
        >>> compute_metrics(0, 0, 0)
        (100.0, 100.0)
    """
    completeness = round(matched / upstream_count * 100, 2) if upstream_count else 100.0
    precision = round(matched / stored_count * 100, 2) if stored_count else 100.0
    return completeness, precision


def classify_status(completeness: float, precision: float) -> AccuracyStatus:
    """
    Alerting status for a check.

    Example:
        >>> classify_status(96.0, 99.0).value
        'healthy'
        >>> classify_status(85.0, 99.0).value
        'warning'
        >>> classify_status(50.0, 100.0).value
        'critical'
    """
    if completeness >= 95 and precision >= 98:
        return AccuracyStatus.HEALTHY
    if completeness >= 80 and precision >= 90:
        return AccuracyStatus.WARNING
    return AccuracyStatus.CRITICAL


def _detail(alert: ComparableAlert) -> MatchDetail:
    return MatchDetail(route=alert.route or None, text=alert.text)


# ==================== Monitor ====================


class AccuracyMonitor:
    """Compares live upstream disruptions with the stored visible threads."""

    def __init__(self, db: AsyncSession, client: TtcClient, threshold: float | None = None) -> None:
        self.db = db
        self.client = client
        self.threshold = threshold if threshold is not None else settings.ACCURACY_SIMILARITY_THRESHOLD

    async def upstream_alerts(self, now: datetime) -> list[ComparableAlert]:
        """Current live disruptions, excluding RSZ, resumed and scheduled-but-inactive items."""
        payload = await self.client.fetch_live_alerts()
        alerts, _ = normalize_live_alerts(payload.routes, now)
        return [
            ComparableAlert(
                route=alert.affected_routes[0] if alert.affected_routes else route_from_title(alert.header_text),
                text=alert.header_text,
            )
            for alert in alerts
            if not (is_live_rsz(alert) or alert.is_resumed)
            and AlertCategory.PLANNED_SERVICE_DISRUPTION.value not in alert.categories
        ]

    async def stored_alerts(self) -> list[ComparableAlert]:
        """Open live threads as the live-disruption view shows them."""
        stmt = (
            select(IncidentThread)
            .where(
                IncidentThread.source == AlertSource.LIVE,
                IncidentThread.is_hidden.is_(False),
                IncidentThread.is_resolved.is_(False),
            )
            .order_by(IncidentThread.updated_at.desc())
        )
        threads = (await self.db.execute(stmt)).scalars().all()
        return [
            ComparableAlert(
                route=thread.affected_routes[0] if thread.affected_routes else route_from_title(thread.title),
                text=thread.title,
            )
            for thread in threads
            if is_displayable_thread(thread) and not EXCLUDED_STORED_CATEGORIES.intersection(thread.categories)
        ]

    async def run_check(self) -> AccuracyCheckResult:
        """
        Run one check, store its raw result and fold it into today's report.

        Raises:
            ValueError: If required configuration is missing
            UpstreamError: If the live feed cannot be fetched
        """
        require_config(*PASS_REQUIRED_CONFIG)
        now = datetime.now(UTC)

        with service_span("accuracy.run_check", "accuracy-monitor") as span:
            upstream = await self.upstream_alerts(now)
            stored = await self.stored_alerts()
            matched, missing, stale = match_alerts(upstream, stored, self.threshold)
            completeness, precision = compute_metrics(matched, len(upstream), len(stored))

            result = AccuracyCheckResult(
                checked_at=now,
                upstream_count=len(upstream),
                stored_count=len(stored),
                matched_count=matched,
                completeness=completeness,
                precision=precision,
                status=classify_status(completeness, precision),
                missing_alerts=[_detail(alert) for alert in missing],
                stale_alerts=[_detail(alert) for alert in stale],
            )
            await self._store(result)

            span.set_attribute("accuracy.completeness", completeness)
            span.set_attribute("accuracy.precision", precision)
            span.set_attribute("accuracy.status", result.status.value)

        logger.info(
            "accuracy_check_completed",
            upstream_count=result.upstream_count,
            stored_count=result.stored_count,
            matched=matched,
            completeness=completeness,
            precision=precision,
            status=result.status.value,
        )
        return result

    async def _store(self, result: AccuracyCheckResult) -> None:
        self.db.add(
            AlertAccuracyLog(
                checked_at=result.checked_at,
                upstream_count=result.upstream_count,
                stored_count=result.stored_count,
                matched_count=result.matched_count,
                completeness=result.completeness,
                precision=result.precision,
                status=result.status.value,
                missing_alerts=[detail.model_dump() for detail in result.missing_alerts],
                stale_alerts=[detail.model_dump() for detail in result.stale_alerts],
                trace_id=get_current_trace_id(),
            )
        )

        report_date = result.checked_at.date()
        await self.db.execute(
            dialect_insert(self.db, AlertAccuracyReport.__table__)
            .values(
                report_date=report_date,
                checks_count=0,
                avg_completeness=0.0,
                avg_precision=0.0,
                total_missing=0,
                total_stale=0,
                last_status=result.status.value,
            )
            .on_conflict_do_nothing(index_elements=["report_date"])
        )
        # Running averages computed in SQL so concurrent checks cannot lose an update
        report = AlertAccuracyReport
        await self.db.execute(
            update(report)
            .where(report.report_date == report_date)
            .values(
                checks_count=report.checks_count + 1,
                avg_completeness=(report.avg_completeness * report.checks_count + result.completeness)
                / (report.checks_count + 1),
                avg_precision=(report.avg_precision * report.checks_count + result.precision)
                / (report.checks_count + 1),
                total_missing=report.total_missing + len(result.missing_alerts),
                total_stale=report.total_stale + len(result.stale_alerts),
                last_status=result.status.value,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()


async def recent_accuracy_reports(db: AsyncSession, limit: int = 30) -> list[AlertAccuracyReport]:
    """Daily reports, newest first."""
    stmt = select(AlertAccuracyReport).order_by(AlertAccuracyReport.report_date.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())
