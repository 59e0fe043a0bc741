"""Tests for the accuracy monitor."""

from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.upstream import FakeUpstream, live_alert
from ttc_incidents.models.accuracy import AlertAccuracyLog, AlertAccuracyReport
from ttc_incidents.schemas.admin import AccuracyStatus
from ttc_incidents.services.accuracy_service import (
    AccuracyMonitor,
    ComparableAlert,
    classify_status,
    compute_metrics,
    jaccard_similarity,
    match_alerts,
    recent_accuracy_reports,
    route_from_title,
)
from ttc_incidents.services.ingestion_service import IngestionService
from ttc_incidents.services.ttc_client import TtcClient, UpstreamError

KING = live_alert("A1", "504 King: No service between Dufferin and Lansdowne", route="504")


# ==================== Pure helpers ====================


class TestJaccardSimilarity:
    """Tests for jaccard_similarity."""

    @pytest.mark.parametrize(
        ("text_a", "text_b", "expected"),
        [
            ("504 King: No service", "504 king: no service", 1.0),
            ("504 King: No service", "504 King: No service west", 0.8),
            ("504 King", "Line 2 delays", 0.0),
            ("", "", 0.0),
        ],
    )
    def test_similarity(self, text_a: str, text_b: str, expected: float) -> None:
        """Test word-set similarity is case-insensitive."""
        assert jaccard_similarity(text_a, text_b) == pytest.approx(expected)


class TestRouteFromTitle:
    """Tests for route_from_title."""

    @pytest.mark.parametrize(
        ("title", "expected"),
        [
            ("Line 2 Bloor-Danforth: Delays", "Line 2"),
            ("504 King: Detour", "504"),
            ("Union Station: Elevator out of service", "Union Station"),
        ],
    )
    def test_route(self, title: str, expected: str) -> None:
        """Test the leading route is recognised."""
        assert route_from_title(title) == expected


class TestComparableAlert:
    """Tests for the ComparableAlert model."""

    def test_is_immutable_and_hashable(self) -> None:
        """Test a comparison side cannot be edited and can be deduplicated in a set."""
        alert = ComparableAlert(route="504", text="Delays")

        with pytest.raises(ValidationError):
            alert.route = "505"
        assert {alert, ComparableAlert(route="504", text="Delays")} == {alert}

    def test_requires_route_and_text(self) -> None:
        """Test both fields are validated on construction."""
        with pytest.raises(ValidationError):
            ComparableAlert(route="504")  # type: ignore[call-arg]


class TestMatchAlerts:
    """Tests for match_alerts."""

    def test_pairs_are_one_to_one(self) -> None:
        """Test one stored alert cannot satisfy two upstream alerts."""
        delays = ComparableAlert(route="504", text="504 King: Delays")
        upstream = [delays, delays]
        stored = [delays]

        matched, missing, stale = match_alerts(upstream, stored, 0.3)

        assert matched == 1
        assert len(missing) == 1
        assert stale == []

    def test_route_must_match(self) -> None:
        """Test identical text on different routes does not match."""
        matched, missing, stale = match_alerts(
            [ComparableAlert(route="504", text="Delays")], [ComparableAlert(route="505", text="Delays")], 0.3
        )

        assert matched == 0
        assert missing == [ComparableAlert(route="504", text="Delays")]
        assert stale == [ComparableAlert(route="505", text="Delays")]

    def test_route_comparison_ignores_case(self) -> None:
        """Test route labels compare case-insensitively."""
        matched, _, _ = match_alerts(
            [ComparableAlert(route="Line 1", text="Delays")], [ComparableAlert(route="LINE 1", text="Delays")], 0.3
        )

        assert matched == 1

    def test_threshold_applies(self) -> None:
        """Test pairs below the similarity threshold stay unmatched."""
        matched, _, _ = match_alerts(
            [ComparableAlert(route="504", text="504 King: Delays near Spadina")],
            [ComparableAlert(route="504", text="504 King: Detour via Queen")],
            0.9,
        )

        assert matched == 0


class TestMetrics:
    """Tests for compute_metrics and classify_status."""

    @pytest.mark.parametrize(
        ("matched", "upstream", "stored", "expected"),
        [
            (2, 3, 4, (66.67, 50.0)),
            (0, 0, 0, (100.0, 100.0)),
            (0, 2, 0, (0.0, 100.0)),
        ],
    )
    def test_compute_metrics(self, matched: int, upstream: int, stored: int, expected: tuple[float, float]) -> None:
        """Test completeness and precision percentages."""
        assert compute_metrics(matched, upstream, stored) == expected

    @pytest.mark.parametrize(
        ("completeness", "precision", "expected"),
        [
            (100.0, 100.0, AccuracyStatus.HEALTHY),
            (95.0, 98.0, AccuracyStatus.HEALTHY),
            (94.99, 99.0, AccuracyStatus.WARNING),
            (85.0, 90.0, AccuracyStatus.WARNING),
            (79.0, 100.0, AccuracyStatus.CRITICAL),
            (100.0, 89.0, AccuracyStatus.CRITICAL),
        ],
    )
    def test_classify_status(self, completeness: float, precision: float, expected: AccuracyStatus) -> None:
        """Test status thresholds."""
        assert classify_status(completeness, precision) == expected


# ==================== Monitor ====================


class TestAccuracyMonitor:
    """Tests for AccuracyMonitor.run_check."""

    async def test_in_step_store_is_healthy(
        self, upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test an ingested feed compared with itself is fully accurate."""
        upstream.routes = [KING]
        await IngestionService(db_session, ttc_client).run_pass()

        result = await AccuracyMonitor(db_session, ttc_client).run_check()

        assert result.upstream_count == 1
        assert result.stored_count == 1
        assert result.matched_count == 1
        assert result.status == AccuracyStatus.HEALTHY

    async def test_missing_alert_is_critical(
        self, upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test an upstream disruption absent from the store is reported as missing."""
        upstream.routes = [KING]

        result = await AccuracyMonitor(db_session, ttc_client).run_check()

        assert result.completeness == 0.0
        assert result.precision == 100.0
        assert result.status == AccuracyStatus.CRITICAL
        assert [(d.route, d.text) for d in result.missing_alerts] == [
            ("504", "504 King: No service between Dufferin and Lansdowne")
        ]

    async def test_non_disruptions_are_not_compared(
        self, upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test resumed and RSZ items in the live feed are left out of the upstream side."""
        upstream.routes = [
            live_alert("A2", "505 Dundas: Regular service has resumed", route="505"),
            live_alert("R1", "Line 1: Reduced speed zone near Davisville", route="1"),
        ]

        result = await AccuracyMonitor(db_session, ttc_client).run_check()

        assert result.upstream_count == 0
        assert result.status == AccuracyStatus.HEALTHY

    async def test_results_are_stored_and_aggregated(
        self, upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test each check is logged and folded into the daily running averages."""
        upstream.routes = [KING]
        monitor = AccuracyMonitor(db_session, ttc_client)

        await monitor.run_check()
        await IngestionService(db_session, ttc_client).run_pass()
        await monitor.run_check()

        logs = (await db_session.execute(select(AlertAccuracyLog))).scalars().all()
        assert len(logs) == 2
        reports = await recent_accuracy_reports(db_session)
        assert len(reports) == 1
        await db_session.refresh(reports[0])
        assert reports[0].checks_count == 2
        assert reports[0].avg_completeness == pytest.approx(50.0)
        assert reports[0].total_missing == 1
        assert reports[0].last_status == "healthy"

    async def test_upstream_failure_raises(
        self, upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test a failed fetch stores nothing."""
        upstream.live_status = 503

        with pytest.raises(UpstreamError):
            await AccuracyMonitor(db_session, ttc_client).run_check()

        assert (await db_session.execute(select(AlertAccuracyLog))).scalars().all() == []


class TestRecentAccuracyReports:
    """Tests for recent_accuracy_reports."""

    async def test_newest_first_with_limit(self, db_session: AsyncSession) -> None:
        """Test reports are ordered by date descending and limited."""
        for day in (1, 3, 2):
            db_session.add(AlertAccuracyReport(report_date=date(2025, 11, day), last_status="healthy"))
        await db_session.commit()

        reports = await recent_accuracy_reports(db_session, limit=2)

        assert [r.report_date for r in reports] == [date(2025, 11, 3), date(2025, 11, 2)]
