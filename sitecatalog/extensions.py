"""
Shared client construction — Redis.

create_app() builds the client once and keeps it in app.extensions; services
receive it explicitly. redis.from_url() does not connect until first use, so
building it is always safe (even when Redis is down during tests).
"""
import logging
import redis

from sitecatalog.config import REDIS_URL

logger = logging.getLogger('sitecatalog.extensions')


def create_redis_client(url=None):
    """Return a Redis client for breaker state and the sync lock."""
    client = redis.from_url(url or REDIS_URL, decode_responses=True)
    logger.info("Redis client configured for %s", (url or REDIS_URL).split('@')[-1])
    return client
