"""Tests for the ingestion pass."""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.upstream import FakeUpstream, elevator_alert, live_alert, rsz_page, rsz_row
from ttc_incidents.core.config import settings
from ttc_incidents.models.incident import AlertSource, IncidentThread
from ttc_incidents.services.ingestion_service import IngestionService, fetch_soft
from ttc_incidents.services.ttc_client import TtcClient, UpstreamError


@pytest.fixture
def populated_upstream(upstream: FakeUpstream) -> FakeUpstream:
    """Upstream reporting one live disruption, one elevator outage and one RSZ."""
    upstream.routes = [live_alert("A1", "504 King: No service between Dufferin and Lansdowne", route="504")]
    upstream.accessibility = [elevator_alert("E1", "Union: Elevator out of service", elevator_code="12A")]
    upstream.rsz_html = rsz_page(("Line 1 (Yonge-University)", [rsz_row("Southbound Eglinton to Davisville")]))
    return upstream


async def get_thread(db: AsyncSession, thread_id: str) -> IncidentThread | None:
    return await db.get(IncidentThread, thread_id, populate_existing=True)


class TestRunPass:
    """Tests for IngestionService.run_pass."""

    async def test_all_sources_are_threaded(
        self, populated_upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test one pass creates a thread per source."""
        result = await IngestionService(db_session, ttc_client).run_pass()

        assert [r.source for r in result.sources] == [AlertSource.LIVE, AlertSource.ELEVATOR, AlertSource.RSZ]
        assert [r.created_threads for r in result.sources] == [1, 1, 1]
        assert all(r.fetched for r in result.sources)
        assert result.failure_count == 0
        assert result.finished_at >= result.started_at
        assert await get_thread(db_session, "thread-live-504-dufferin-lansdowne") is not None
        assert await get_thread(db_session, "thread-elev-12a") is not None
        assert await get_thread(db_session, "thread-rsz-line1-eglinton-davisville") is not None

    async def test_second_pass_is_idempotent(
        self, populated_upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test an unchanged upstream creates nothing new."""
        service = IngestionService(db_session, ttc_client)
        await service.run_pass()

        result = await service.run_pass()

        assert sum(r.created_threads for r in result.sources) == 0
        assert sum(r.created_alerts for r in result.sources) == 0
        assert sum(r.duplicate_alerts for r in result.sources) == 3

    async def test_live_outage_does_not_block_rsz(
        self, populated_upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test a failed live fetch leaves the RSZ source processed and reports live as unfetched."""
        populated_upstream.live_status = 503

        result = await IngestionService(db_session, ttc_client).run_pass()

        live, elevator, rsz = result.sources
        assert live.fetched is False
        assert elevator.fetched is False
        assert live.received == 0
        assert rsz.fetched is True
        assert rsz.created_threads == 1

    async def test_live_outage_never_hides_threads(
        self, populated_upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test repeated live outages keep existing live threads visible."""
        service = IngestionService(db_session, ttc_client)
        await service.run_pass()
        populated_upstream.live_status = 503

        for _ in range(3):
            await service.run_pass()

        thread = await get_thread(db_session, "thread-live-504-dufferin-lansdowne")
        assert thread is not None
        assert thread.is_hidden is False
        assert thread.missed_polls == 0

    async def test_disappearing_alert_is_hidden_after_grace(
        self, populated_upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test an alert gone from a healthy feed is hidden after the grace period."""
        service = IngestionService(db_session, ttc_client)
        await service.run_pass()
        populated_upstream.routes = []

        for _ in range(settings.THREAD_HIDE_GRACE_POLLS):
            result = await service.run_pass()

        assert result.sources[0].hidden_threads == 1
        thread = await get_thread(db_session, "thread-live-504-dufferin-lansdowne")
        assert thread is not None
        assert thread.is_hidden is True

    async def test_live_rsz_items_are_left_to_rsz_scrape(
        self, upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test RSZ items in the live feed are not threaded as live disruptions."""
        upstream.routes = [
            live_alert("R1", "Line 1: Reduced speed zone near Davisville", route="1", effect="SIGNIFICANT_DELAYS"),
        ]

        result = await IngestionService(db_session, ttc_client).run_pass()

        assert result.sources[0].received == 0
        assert result.sources[0].created_threads == 0

    async def test_malformed_records_are_counted(
        self, upstream: FakeUpstream, ttc_client: TtcClient, db_session: AsyncSession
    ) -> None:
        """Test items without ids are skipped and counted, the rest processed."""
        upstream.routes = [{"headerText": "no id"}, live_alert("A1", "501 Queen: Delays", route="501")]
        upstream.accessibility = [{"id": "E9"}]

        result = await IngestionService(db_session, ttc_client).run_pass()

        assert result.skipped_records == 2
        assert result.sources[0].created_alerts == 1

    async def test_missing_configuration_fetches_nothing(
        self,
        upstream: FakeUpstream,
        ttc_client: TtcClient,
        db_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a blank required URL fails before any upstream request."""
        monkeypatch.setattr(settings, "TTC_LIVE_ALERTS_URL", "")

        with pytest.raises(ValueError, match="TTC_LIVE_ALERTS_URL"):
            await IngestionService(db_session, ttc_client).run_pass()

        assert upstream.requests == []


class TestFetchSoft:
    """Tests for fetch_soft."""

    async def test_returns_value(self) -> None:
        """Test a successful fetch passes its value through."""

        async def fetch() -> str:
            return "ok"

        assert await fetch_soft("live", fetch()) == "ok"

    async def test_upstream_error_becomes_none(self) -> None:
        """Test upstream errors are absorbed."""

        async def fetch() -> str:
            raise UpstreamError("live", "HTTP 503", status_code=503)

        assert await fetch_soft("live", fetch()) is None

    async def test_timeout_becomes_none(self) -> None:
        """Test a fetch exceeding its budget is abandoned."""

        async def fetch() -> str:
            await asyncio.sleep(5)
            return "late"

        with patch("ttc_incidents.services.ingestion_service.source_timeout", return_value=0.01):
            assert await fetch_soft("rsz", fetch()) is None
