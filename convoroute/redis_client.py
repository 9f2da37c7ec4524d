"""
Redis client construction.

All components share one ``redis.asyncio`` client created with
``decode_responses=True``; stored values are read back as ``str``.
"""

from redis.asyncio import Redis

from convoroute.config.settings import RedisSettings


def create_redis_client(settings: RedisSettings) -> Redis:
    """Build the async client from settings. Connections are opened lazily."""
    return Redis.from_url(
        settings.url,
        decode_responses=True,
        socket_timeout=settings.socket_timeout,
        socket_connect_timeout=settings.socket_timeout,
    )
