"""Redis configuration and connection management."""

import os
import redis.asyncio as redis
from redis.asyncio import ConnectionPool
from redis.exceptions import RedisError
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Redis Configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_MAX_CONNECTIONS = int(os.getenv("REDIS_MAX_CONNECTIONS", "10"))

# Rate limit Redis Keys
RATE_LIMIT_KEY_PREFIX = "rate_limit:"

# Redis Connection Pool
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


async def get_redis_pool() -> ConnectionPool:
    """Get Redis connection pool."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = ConnectionPool.from_url(
            REDIS_URL,
            password=REDIS_PASSWORD,
            max_connections=REDIS_MAX_CONNECTIONS,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30
        )
    return _redis_pool


async def get_redis_client() -> redis.Redis:
    """Get Redis client instance."""
    global _redis_client
    if _redis_client is None:
        pool = await get_redis_pool()
        _redis_client = redis.Redis(connection_pool=pool)
    return _redis_client


async def close_redis_connections():
    """Close Redis connections."""
    global _redis_client, _redis_pool

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


async def ping_redis() -> bool:
    """Test Redis connection."""
    try:
        client = await get_redis_client()
        await client.ping()
        return True
    except (RedisError, OSError):
        return False


class RedisKeyBuilder:
    """Build Redis keys with consistent naming."""

    @staticmethod
    def attempt_key(scope: str, client_ip: str, subject_id: str) -> str:
        """Build verification attempt counter key."""
        return f"{RATE_LIMIT_KEY_PREFIX}{scope}:{client_ip}:{subject_id}"
