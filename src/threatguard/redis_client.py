"""Redis client for the session context store.

Returns None when Redis is switched off or cannot be reached, in which case
the API keeps conversation context in process memory.
"""

import logging
import os

import redis

from .logging_utils import log_info, log_warning

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 2.0


def redis_enabled() -> bool:
    """Whether REDIS_ENABLED allows a Redis connection (on unless "false" or "0")."""
    return os.environ.get("REDIS_ENABLED", "true").strip().lower() not in ("false", "0")


def get_redis_client(url: str | None = None) -> redis.Redis | None:
    """Connect to Redis and verify the connection with a ping.

    Args:
        url: Connection URL. Defaults to REDIS_URL, or one built from
            REDIS_HOST / REDIS_PORT / REDIS_DB.

    Returns:
        A client with decoded string responses, or None.
    """
    if not redis_enabled():
        log_info(logger, "Redis disabled, session context stays in memory")
        return None

    if url is None:
        url = os.environ.get("REDIS_URL") or "redis://{}:{}/{}".format(
            os.environ.get("REDIS_HOST", "localhost"),
            os.environ.get("REDIS_PORT", "6379"),
            os.environ.get("REDIS_DB", "0"),
        )

    client = redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=CONNECT_TIMEOUT_SECONDS,
        socket_timeout=CONNECT_TIMEOUT_SECONDS,
    )
    try:
        client.ping()
    except redis.RedisError as e:
        log_warning(logger, "Redis unreachable, session context stays in memory", error=str(e))
        client.close()
        return None

    log_info(logger, "Session context backed by Redis", url=url)
    return client
