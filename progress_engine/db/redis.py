"""Redis connection management.

When REDIS_URL is configured, the local cache mirror for every learner
lives in Redis (one key namespace per user) and survives process
restarts.  When it is None (local dev, tests), each session gets an
in-memory cache and no Redis server is needed.

The cache interface is synchronous (get/set/remove/keys), so this is
the blocking client rather than redis.asyncio.  The wholesale cache
rebuild goes out as one pipeline per reload, and the health check runs
in the threadpool so a slow ping never stalls the event loop.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis

from progress_engine.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_client: redis.Redis | None = redis.Redis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # return str instead of bytes
        max_connections=20,
    )
else:
    redis_client = None


@asynccontextmanager
async def lifespan_redis():
    """Verify the connection on startup and release the pool on shutdown."""
    if redis_client is None:
        logger.info("No REDIS_URL configured; cache mirrors are in-memory")
        yield
        return

    try:
        redis_client.ping()
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except redis.RedisError:
        logger.exception("Redis connection failed on startup")
        # Keep serving: cache failures are logged and skipped by the
        # synchronizer, and the remote store stays authoritative.
        yield
        return

    yield

    redis_client.close()
    logger.info("Redis connection pool closed")
