"""HTTP client for the TTC upstream feeds."""

import asyncio
from types import TracebackType
from typing import Any, Self

import httpx
import structlog
from pydantic import ValidationError

from ttc_incidents.core.config import settings
from ttc_incidents.schemas.ttc import LiveAlertsPayload

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class UpstreamError(Exception):
    """An upstream feed could not be fetched or parsed."""

    def __init__(self, source: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class TtcClient:
    """
    Fetches the live alerts feed, the RSZ page and the maintenance search.

    Transient failures (network errors, timeouts, 429/5xx) are retried
    ``UPSTREAM_RETRY_ATTEMPTS`` times before an UpstreamError is raised.
    Other non-2xx responses fail immediately.

    Pass an ``http_client`` to inject a transport (tests use
    ``httpx.MockTransport``); otherwise the client owns its AsyncClient and
    closes it in ``aclose``.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
            headers={"User-Agent": settings.UPSTREAM_USER_AGENT},
            follow_redirects=True,
        )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def _get(self, source: str, url: str, **kwargs: Any) -> httpx.Response:  # noqa: ANN401
        attempts = settings.UPSTREAM_RETRY_ATTEMPTS + 1
        for attempt in range(1, attempts + 1):
            try:
                response = await self.http_client.get(url, **kwargs)
            except httpx.HTTPError as exc:
                if attempt < attempts:
                    logger.debug("upstream_retry", source=source, attempt=attempt, error=str(exc))
                    continue
                raise UpstreamError(source, f"request failed: {exc!s}") from exc

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < attempts:
                logger.debug("upstream_retry", source=source, attempt=attempt, status_code=response.status_code)
                continue
            if response.is_error:
                raise UpstreamError(source, f"HTTP {response.status_code}", status_code=response.status_code)
            return response

        # Unreachable: the final attempt either returns or raises
        msg = "retry loop exited without a response"
        raise UpstreamError(source, msg)

    async def fetch_live_alerts(self) -> LiveAlertsPayload:
        """
        Fetch the live alerts feed.

        Raises:
            UpstreamError: On transport failure, non-2xx or a payload that is
                not a JSON object
        """
        response = await self._get("live", settings.TTC_LIVE_ALERTS_URL, headers={"Accept": "application/json"})
        try:
            return LiveAlertsPayload.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise UpstreamError("live", f"invalid payload: {exc!s}") from exc

    async def fetch_rsz_page(self) -> str:
        """Fetch the reduced speed zones HTML page."""
        response = await self._get("rsz", settings.TTC_RSZ_URL)
        return response.text

    async def fetch_maintenance_page(self, page_index: int) -> dict[str, Any]:
        """
        Fetch one page of the service-changes search.

        Args:
            page_index: Zero-based page number

        Returns:
            Decoded search response (``{"Results": [...], "Count": n}``)
        """
        page_size = settings.MAINTENANCE_PAGE_SIZE
        response = await self._get(
            "maintenance",
            settings.TTC_MAINTENANCE_URL,
            params={"o": page_index * page_size, "p": page_size},
            headers={"Accept": "application/json"},
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError("maintenance", f"invalid payload: {exc!s}") from exc
        if not isinstance(data, dict):
            raise UpstreamError("maintenance", "payload is not a JSON object")
        return data

    async def fetch_maintenance_results(self, max_pages: int | None = None) -> list[dict[str, Any]]:
        """
        Fetch search results page by page until a short page or ``max_pages``.

        A fixed ``UPSTREAM_REQUEST_DELAY_SECONDS`` delay separates requests.
        """
        max_pages = max_pages or settings.MAINTENANCE_MAX_PAGES
        results: list[dict[str, Any]] = []
        for page_index in range(max_pages):
            if page_index:
                await asyncio.sleep(settings.UPSTREAM_REQUEST_DELAY_SECONDS)
            data = await self.fetch_maintenance_page(page_index)
            page = [item for item in data.get("Results") or [] if isinstance(item, dict)]
            results.extend(page)

            total = data.get("Count")
            if len(page) < settings.MAINTENANCE_PAGE_SIZE or (isinstance(total, int) and len(results) >= total):
                break
        logger.debug("maintenance_results_fetched", count=len(results))
        return results
