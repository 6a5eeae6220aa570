# Shared Redis handle for locks, rate limits, and typing state.
# Off unless REDIS_ENABLED is set; every caller must cope with None.
import logging
import os

import redis

from .config import REDIS_URL, truthy

logger = logging.getLogger("nestrent.redis")

_client = None
_attempted = False


def is_redis_enabled() -> bool:
    # Evaluated per call; tests toggle REDIS_ENABLED at runtime
    return truthy(os.getenv("REDIS_ENABLED", "false"))


def get_redis():
    """
    Connected client, or None when Redis is disabled or unreachable.

    The first call connects and pings with short timeouts. A failed attempt is remembered
    for the life of the process, so callers never wait on a dead server twice.
    """
    global _client, _attempted
    if not is_redis_enabled():
        return None
    if _client is not None or _attempted:
        return _client

    _attempted = True
    client = redis.Redis.from_url(
        REDIS_URL,
        socket_timeout=0.25,
        socket_connect_timeout=0.25,
        retry_on_timeout=False,
    )
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("redis.unavailable", extra={"url": REDIS_URL, "error": str(exc)})
        return None
    _client = client
    logger.info("redis.connected", extra={"url": REDIS_URL})
    return _client
