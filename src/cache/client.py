"""Redis client and connection management."""

import logging

from redis.asyncio import Redis

from src.config.settings import Settings

logger = logging.getLogger(__name__)


def create_redis(config: Settings) -> Redis:
    """Build a Redis client with socket deadlines from settings.

    Responses are decoded to ``str`` so cache values compare directly with
    token hashes and session ids.
    """
    return Redis.from_url(
        config.redis_url,
        decode_responses=True,
        socket_timeout=config.redis_socket_timeout,
        socket_connect_timeout=config.redis_connect_timeout,
        health_check_interval=30,
    )


async def init_cache(config: Settings) -> Redis:
    """Initialize the Redis connection and verify it responds.

    Args:
        config: Application settings

    Returns:
        Connected Redis client

    """
    client = create_redis(config)
    try:
        logger.info(f"Connecting to Redis at {config.redis_url.split('@')[-1]}")
        await client.ping()
        logger.info("Redis connection successful")
        return client
    except Exception as e:
        logger.error(f"Failed to initialize Redis: {e}")
        await client.aclose()
        raise


async def close_cache(client: Redis) -> None:
    """Close the Redis connection pool gracefully."""
    logger.info("Closing Redis connection")
    await client.aclose()
    logger.info("Redis connection closed")
