"""Per-worker resources for Celery tasks.

Each worker process gets one persistent event loop, created after fork in
``worker_process_init``. The database engine and the Redis client used by
the change feed are created lazily on that loop and reused by every task in
the process, so connection pools survive between polls.
"""

import asyncio
import contextlib
import threading

import structlog
from celery.signals import worker_process_init, worker_process_shutdown
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ttc_incidents.core.config import settings
from ttc_incidents.core.redis import RedisClientProtocol, get_redis_client

_worker_loop: asyncio.AbstractEventLoop | None = None
_worker_engine: AsyncEngine | None = None
_worker_session_factory: async_sessionmaker[AsyncSession] | None = None
_worker_redis_client: RedisClientProtocol | None = None
_worker_sqlalchemy_instrumented: bool = False

_init_lock = threading.RLock()

logger = structlog.get_logger(__name__)


@worker_process_init.connect
def init_worker_resources(
    **kwargs: object,
) -> None:
    """Create the worker's persistent event loop and tracer provider (idempotent)."""
    global _worker_loop  # noqa: PLW0603

    if _worker_loop is not None and not _worker_loop.is_closed():
        logger.debug("worker_process_init_loop_already_exists")
        return

    _worker_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(_worker_loop)

    if settings.OTEL_ENABLED:
        from ttc_incidents.core.telemetry import get_tracer_provider  # noqa: PLC0415  # Lazy import for fork-safety

        if provider := get_tracer_provider():
            trace.set_tracer_provider(provider)
            logger.info("worker_otel_tracer_provider_initialized")

    logger.info("worker_process_init_completed")


@worker_process_shutdown.connect
def cleanup_worker_resources(
    **kwargs: object,
) -> None:
    """Dispose the engine, close Redis and the loop when the worker exits."""
    global _worker_loop, _worker_engine, _worker_session_factory  # noqa: PLW0603
    global _worker_redis_client, _worker_sqlalchemy_instrumented  # noqa: PLW0603

    if _worker_loop is None:
        return

    loop, engine, redis_client = _worker_loop, _worker_engine, _worker_redis_client
    _worker_loop = None
    _worker_engine = None
    _worker_session_factory = None
    _worker_redis_client = None
    _worker_sqlalchemy_instrumented = False

    try:
        if engine is not None:
            loop.run_until_complete(engine.dispose())
        if redis_client is not None:
            loop.run_until_complete(redis_client.aclose())
        if settings.OTEL_ENABLED:
            from ttc_incidents.core.telemetry import shutdown_tracer_provider  # noqa: PLC0415

            shutdown_tracer_provider()
    except Exception as exc:  # noqa: BLE001  # Shutting down; nothing left to propagate to
        logger.warning("worker_shutdown_cleanup_error", error=str(exc), error_type=type(exc).__name__)
    finally:
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            with contextlib.suppress(Exception):
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()
        asyncio.set_event_loop(None)

    logger.info("worker_process_shutdown_completed")


def _get_worker_engine() -> AsyncEngine:
    """Engine bound to the worker loop, instrumented for OTEL once."""
    global _worker_engine, _worker_sqlalchemy_instrumented  # noqa: PLW0603
    if _worker_engine is None or (settings.OTEL_ENABLED and not _worker_sqlalchemy_instrumented):
        with _init_lock:
            if _worker_engine is None:
                _worker_engine = create_async_engine(
                    settings.DATABASE_URL,
                    echo=settings.DATABASE_ECHO,
                    pool_size=settings.DATABASE_POOL_SIZE,
                    max_overflow=settings.DATABASE_MAX_OVERFLOW,
                )
            if settings.OTEL_ENABLED and not _worker_sqlalchemy_instrumented:
                from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor  # noqa: PLC0415

                SQLAlchemyInstrumentor().instrument(engine=_worker_engine.sync_engine)
                _worker_sqlalchemy_instrumented = True
    return _worker_engine


def get_worker_session() -> AsyncSession:
    """New session from the worker's shared factory. Callers close it."""
    global _worker_session_factory  # noqa: PLW0603
    if _worker_session_factory is None:
        with _init_lock:
            if _worker_session_factory is None:
                _worker_session_factory = async_sessionmaker(
                    _get_worker_engine(),
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )
    return _worker_session_factory()


def get_worker_redis_client() -> RedisClientProtocol:
    """
    Shared Redis client for the change feed.

    Do not close it in task code; ``cleanup_worker_resources`` owns it.
    """
    global _worker_redis_client  # noqa: PLW0603
    if _worker_redis_client is None:
        with _init_lock:
            if _worker_redis_client is None:
                _worker_redis_client = get_redis_client()
    return _worker_redis_client


def get_worker_loop() -> asyncio.AbstractEventLoop:
    """
    The worker's persistent event loop.

    Raises:
        RuntimeError: If init_worker_resources has not run or the loop is closed
    """
    if _worker_loop is None:
        msg = "Worker event loop not initialized. Ensure init_worker_resources ran (worker_process_init signal)."
        raise RuntimeError(msg)
    if _worker_loop.is_closed():
        msg = "Worker event loop has been closed."
        raise RuntimeError(msg)
    return _worker_loop
