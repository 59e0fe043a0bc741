"""Live-update channel for thread and alert changes.

Events are published on Redis pub/sub, one channel per table
(``<prefix>:incident_threads`` and ``<prefix>:alert_cache``), so UI
subscribers can patch their state without polling.
"""

import enum
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from ttc_incidents.core.config import settings
from ttc_incidents.core.redis import RedisClientProtocol

logger = structlog.get_logger(__name__)


class ChangeType(str, enum.Enum):
    """Kind of row change."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """One row change on a published table."""

    table: str
    event: ChangeType
    key: str
    record: dict[str, Any] = Field(default_factory=dict)
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChangeFeed:
    """Publishes ChangeEvents to Redis. Failures are logged, never raised."""

    def __init__(self, redis_client: RedisClientProtocol, channel_prefix: str | None = None) -> None:
        self.redis_client = redis_client
        self.channel_prefix = channel_prefix or settings.CHANGE_FEED_CHANNEL_PREFIX

    def channel_for(self, table: str) -> str:
        return f"{self.channel_prefix}:{table}"

    async def publish(self, event: ChangeEvent) -> bool:
        """
        Publish one event.

        Returns:
            True if Redis accepted the message
        """
        try:
            await self.redis_client.publish(self.channel_for(event.table), event.model_dump_json())
        except (RedisError, OSError) as exc:
            logger.warning(
                "change_feed_publish_failed",
                table=event.table,
                change=event.event.value,
                key=event.key,
                error=str(exc),
            )
            return False
        return True

    async def publish_many(self, events: Iterable[ChangeEvent]) -> int:
        """Publish events in order, returning how many were accepted."""
        published = 0
        for event in events:
            if await self.publish(event):
                published += 1
        return published
