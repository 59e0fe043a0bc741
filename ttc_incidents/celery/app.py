"""Celery application instance and configuration."""

import structlog
from celery.signals import beat_init
from opentelemetry import trace

from celery import Celery
from ttc_incidents.core.config import require_config, settings
from ttc_incidents.core.logging import configure_logging

logger = structlog.get_logger(__name__)

# Workers and beat log through the same structlog pipeline as the API
configure_logging(log_level=settings.LOG_LEVEL)

require_config("CELERY_BROKER_URL", "CELERY_RESULT_BACKEND")

celery_app = Celery("ttc_incidents")

celery_app.conf.update(
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # A poll must finish well inside the next one
    task_time_limit=300,
    task_soft_time_limit=240,
    worker_hijack_root_logger=False,
)

# Tracer provider itself is set per process after fork (worker_process_init / beat_init)
if settings.OTEL_ENABLED:
    from opentelemetry.instrumentation.celery import CeleryInstrumentor

    CeleryInstrumentor().instrument()
    logger.info("celery_otel_instrumentation_enabled")


@beat_init.connect
def init_beat_otel(
    **kwargs: object,
) -> None:
    """Give the beat process its own tracer provider so scheduled sends are traced."""
    if not settings.OTEL_ENABLED:
        return
    from ttc_incidents.core.telemetry import get_tracer_provider  # noqa: PLC0415  # Lazy import for fork-safety

    try:
        if provider := get_tracer_provider():
            trace.set_tracer_provider(provider)
            logger.info("beat_otel_tracer_provider_initialized")
    except ValueError:
        # Missing exporter endpoint; beat keeps scheduling without traces
        logger.exception("beat_otel_initialization_failed")


# Registers the tasks and populates celery_app.conf.beat_schedule
from ttc_incidents.celery import (  # noqa: E402
    schedules,  # noqa: F401
    tasks,  # noqa: F401
)
