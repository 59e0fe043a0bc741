"""
Shared Redis client protocol and factory.

Redis carries the live-update channel: thread and alert change events are
published on pub/sub channels for UI subscribers.
"""

from typing import Protocol, cast

import redis.asyncio as redis

from ttc_incidents.core.config import settings


class RedisClientProtocol(Protocol):
    """
    Subset of redis.asyncio.Redis used by this application.

    Lets tests pass an AsyncMock while keeping type checking honest.
    """

    async def publish(self, channel: str, message: str) -> int:
        """Publish a message on a pub/sub channel, returning the receiver count."""
        ...

    async def ping(self) -> bool:
        """Ping the Redis server to check connectivity."""
        ...

    async def aclose(self, close_connection_pool: bool = True) -> None:
        """Close the client connection."""
        ...


def get_redis_client() -> RedisClientProtocol:
    """
    Create a Redis client with standard configuration.

    Returns:
        Redis client instance that satisfies RedisClientProtocol
    """
    return cast(
        RedisClientProtocol,
        redis.from_url(  # type: ignore[no-untyped-call]
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        ),
    )
