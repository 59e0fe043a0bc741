"""Tests for the TTC upstream HTTP client."""

from collections.abc import Callable

import httpx
import pytest

from tests.helpers.upstream import FakeUpstream, live_alert, maintenance_result
from ttc_incidents.core.config import settings
from ttc_incidents.services.ttc_client import TtcClient, UpstreamError

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def make_client() -> Callable[[Handler], TtcClient]:
    """Factory for clients over a one-off handler."""

    def factory(handler: Handler) -> TtcClient:
        return TtcClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    return factory


class TestFetchLiveAlerts:
    """Tests for fetch_live_alerts."""

    async def test_parses_payload(self, upstream: FakeUpstream, ttc_client: TtcClient) -> None:
        """Test routes and accessibility arrays are returned."""
        upstream.routes = [live_alert("A1", "504 King: Delays", route="504")]

        payload = await ttc_client.fetch_live_alerts()

        assert [item["id"] for item in payload.routes] == ["A1"]
        assert payload.accessibility == []

    async def test_single_object_arrays_are_normalised(self, make_client: Callable[[Handler], TtcClient]) -> None:
        """Test a lone object where an array is expected becomes a one-item list."""
        client = make_client(lambda request: httpx.Response(200, json={"routes": {"id": "A1"}, "accessibility": None}))

        payload = await client.fetch_live_alerts()

        assert payload.routes == [{"id": "A1"}]
        assert payload.accessibility == []

    async def test_retries_transient_status_then_fails(self, upstream: FakeUpstream, ttc_client: TtcClient) -> None:
        """Test a 503 is retried once and then raised with its status code."""
        upstream.live_status = 503

        with pytest.raises(UpstreamError) as exc_info:
            await ttc_client.fetch_live_alerts()

        assert exc_info.value.status_code == 503
        assert exc_info.value.source == "live"
        assert len(upstream.requests_to(settings.TTC_LIVE_ALERTS_URL)) == settings.UPSTREAM_RETRY_ATTEMPTS + 1

    async def test_retry_recovers(self, make_client: Callable[[Handler], TtcClient]) -> None:
        """Test a transient failure followed by success returns the payload."""
        responses = iter([httpx.Response(502), httpx.Response(200, json={"routes": []})])
        client = make_client(lambda request: next(responses))

        payload = await client.fetch_live_alerts()

        assert payload.routes == []

    async def test_client_error_is_not_retried(self, make_client: Callable[[Handler], TtcClient]) -> None:
        """Test a 404 fails on the first attempt."""
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        with pytest.raises(UpstreamError, match="HTTP 404"):
            await make_client(handler).fetch_live_alerts()

        assert len(calls) == 1

    async def test_network_error(self, make_client: Callable[[Handler], TtcClient]) -> None:
        """Test transport errors are retried and then wrapped."""

        def handler(request: httpx.Request) -> httpx.Response:
            msg = "connection refused"
            raise httpx.ConnectError(msg, request=request)

        with pytest.raises(UpstreamError, match="request failed"):
            await make_client(handler).fetch_live_alerts()

    @pytest.mark.parametrize("body", [b"<html>maintenance</html>", b"[1, 2, 3]"])
    async def test_invalid_payload(self, make_client: Callable[[Handler], TtcClient], body: bytes) -> None:
        """Test non-JSON or non-object bodies raise UpstreamError."""
        client = make_client(lambda request: httpx.Response(200, content=body))

        with pytest.raises(UpstreamError, match="invalid payload"):
            await client.fetch_live_alerts()


class TestFetchRszPage:
    """Tests for fetch_rsz_page."""

    async def test_returns_html(self, upstream: FakeUpstream, ttc_client: TtcClient) -> None:
        """Test the page body is returned as text."""
        upstream.rsz_html = "<html><body>zones</body></html>"

        assert await ttc_client.fetch_rsz_page() == "<html><body>zones</body></html>"

    async def test_failure(self, upstream: FakeUpstream, ttc_client: TtcClient) -> None:
        """Test an unavailable page raises."""
        upstream.rsz_status = 500

        with pytest.raises(UpstreamError):
            await ttc_client.fetch_rsz_page()


class TestFetchMaintenanceResults:
    """Tests for paged maintenance search."""

    async def test_pages_until_short_page(self, upstream: FakeUpstream, ttc_client: TtcClient) -> None:
        """Test pages are requested with increasing offsets until a short page."""
        upstream.maintenance = [maintenance_result(f"M{i}", f"Closure {i}") for i in range(120)]

        results = await ttc_client.fetch_maintenance_results()

        assert len(results) == 120
        offsets = [request.url.params["o"] for request in upstream.requests_to(settings.TTC_MAINTENANCE_URL)]
        assert offsets == ["0", "50", "100"]

    async def test_stops_at_reported_count(self, upstream: FakeUpstream, ttc_client: TtcClient) -> None:
        """Test a full final page is not followed by an empty request when Count is reached."""
        upstream.maintenance = [maintenance_result(f"M{i}", f"Closure {i}") for i in range(50)]

        results = await ttc_client.fetch_maintenance_results()

        assert len(results) == 50
        assert len(upstream.requests_to(settings.TTC_MAINTENANCE_URL)) == 1

    async def test_max_pages_cap(
        self, upstream: FakeUpstream, ttc_client: TtcClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test paging stops at max_pages."""
        monkeypatch.setattr(settings, "MAINTENANCE_PAGE_SIZE", 2)
        upstream.maintenance = [maintenance_result(f"M{i}", f"Closure {i}") for i in range(10)]

        results = await ttc_client.fetch_maintenance_results(max_pages=3)

        assert len(results) == 6

    async def test_non_object_payload(self, make_client: Callable[[Handler], TtcClient]) -> None:
        """Test a JSON array response is rejected."""
        client = make_client(lambda request: httpx.Response(200, json=[]))

        with pytest.raises(UpstreamError, match="not a JSON object"):
            await client.fetch_maintenance_page(0)


class TestClientLifecycle:
    """Tests for client ownership."""

    async def test_injected_client_is_not_closed(self) -> None:
        """Test an injected AsyncClient stays open after the TtcClient closes."""
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))

        async with TtcClient(http_client=http_client):
            pass

        assert http_client.is_closed is False
        await http_client.aclose()

    async def test_owned_client_is_closed(self) -> None:
        """Test a client created by TtcClient is closed with it."""
        client = TtcClient()

        await client.aclose()

        assert client.http_client.is_closed is True
