"""OpenTelemetry tracing for ingestion passes and the API."""

import threading
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import SpanKind, Status, StatusCode

from ttc_incidents import __version__
from ttc_incidents.core.config import require_config, settings

if TYPE_CHECKING:
    from opentelemetry.trace.span import Span

logger = structlog.get_logger(__name__)

# Created lazily so forked API/worker processes each build their own provider
_tracer_provider: TracerProvider | None = None
_tracer_provider_lock = threading.Lock()
_redis_instrumented: bool = False


def get_tracer_provider() -> TracerProvider | None:
    """
    Get or create the process TracerProvider.

    Returns:
        TracerProvider if OTEL is enabled, None otherwise
    """
    if not settings.OTEL_ENABLED:
        return None

    global _tracer_provider  # noqa: PLW0603
    if _tracer_provider is None:
        with _tracer_provider_lock:
            if _tracer_provider is None:
                _tracer_provider = _create_tracer_provider()
    return _tracer_provider


def _create_tracer_provider() -> TracerProvider:
    """
    Build a TracerProvider with an OTLP/HTTP exporter.

    Raises:
        ValueError: If the traces endpoint is missing outside DEBUG mode
    """
    if not settings.DEBUG:
        require_config("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")

    resource = Resource(
        attributes={
            "service.name": settings.OTEL_SERVICE_NAME,
            "service.version": __version__,
            "deployment.environment": settings.ENVIRONMENT,
        }
    )
    provider = TracerProvider(resource=resource)

    # Change feed publishes go through redis; patched once per process
    global _redis_instrumented  # noqa: PLW0603
    if not _redis_instrumented:
        RedisInstrumentor().instrument()
        _redis_instrumented = True
        logger.debug("redis_instrumented_for_otel")

    if settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT:
        exporter = OTLPSpanExporter(
            endpoint=settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT,
            headers=_parse_otlp_headers(settings.OTEL_EXPORTER_OTLP_HEADERS or ""),
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(
            "otel_tracer_provider_created",
            endpoint=settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT,
            service_name=settings.OTEL_SERVICE_NAME,
        )
    else:
        logger.warning("otel_no_traces_endpoint_configured", message="traces will not be exported")

    return provider


def _parse_otlp_headers(headers_str: str) -> dict[str, str]:
    """
    Parse OTLP headers from comma-separated key=value pairs.

    Example:
        >>> _parse_otlp_headers("Authorization=Bearer abc, X-Team=transit")
        {'Authorization': 'Bearer abc', 'X-Team': 'transit'}
    """
    headers: dict[str, str] = {}
    for raw_pair in headers_str.split(","):
        pair = raw_pair.strip()
        if "=" in pair:
            key, value = pair.split("=", 1)
            headers[key.strip()] = value.strip()
        elif pair:
            logger.warning("otel_malformed_header", pair=pair)
    return headers


def shutdown_tracer_provider() -> None:
    """Flush pending spans. Safe to call when no provider was created."""
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        logger.info("otel_tracer_provider_shutdown")


AttributeValue = str | int | float | bool | list[str] | list[int] | list[float] | list[bool]


@contextmanager
def service_span(
    name: str,
    service: str,
    kind: SpanKind = SpanKind.INTERNAL,
    **attributes: AttributeValue,
) -> Generator["Span"]:
    """Wrap a service operation in a span that ends with an explicit status.

    The tracer is looked up at call time so the provider installed during
    startup (API lifespan or worker init) is used.

    Args:
        name: Span name (e.g. "ingestion.run_pass")
        service: Value for the peer.service attribute (e.g. "threading-engine")
        kind: Span kind, CLIENT for upstream calls
        **attributes: Additional span attributes

    Yields:
        The active span

    Example:
        with service_span("reconcile", "reconciliation", target="rsz") as span:
            report = await verifier.run()
            span.set_attribute("reconcile.missing", len(report.missing_in_db))
    """
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(
        name,
        kind=kind,
        attributes={"peer.service": service, **attributes},
    ) as span:
        yield span
        span.set_status(Status(StatusCode.OK))


def get_current_trace_id() -> str | None:
    """
    Return the active trace id as 32 hex characters, or None outside a span.

    Stored on accuracy log rows so a bad check can be traced back.
    """
    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid or ctx.trace_id == 0:
        return None
    return format(ctx.trace_id, "032x")
