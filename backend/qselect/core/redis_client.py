"""Redis client for the shared reservation store."""

import redis
from redis.exceptions import ConnectionError, RedisError

from qselect.core.config import settings
from qselect.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: redis.Redis | None = None


def _connect(url: str) -> redis.Redis:
    client = redis.from_url(
        url,
        decode_responses=True,
        # Claims live for seconds, so a slow store must fail fast and fall to retry/backoff
        socket_connect_timeout=1,
        socket_timeout=1,
        retry_on_timeout=False,
        health_check_interval=30,
    )
    client.ping()
    return client


def get_redis_client() -> redis.Redis | None:
    """
    Shared Redis client, or None when Redis is disabled or unreachable.

    Raises:
        ValueError: REDIS_REQUIRED is set but REDIS_URL is not
        ConnectionError: REDIS_REQUIRED is set and Redis cannot be reached
    """
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None
    if _redis_client is not None:
        return _redis_client

    if not settings.REDIS_URL:
        if settings.REDIS_REQUIRED:
            raise ValueError("REDIS_URL must be set when REDIS_REQUIRED=true")
        logger.warning("REDIS_URL not set; reservations stay process-local")
        return None

    try:
        _redis_client = _connect(settings.REDIS_URL)
        logger.info("Redis reservation store connected")
    except RedisError as e:
        if settings.REDIS_REQUIRED:
            raise ConnectionError(f"Redis connection failed and REDIS_REQUIRED=true: {e}") from e
        logger.warning(f"Redis unavailable, reservations stay process-local: {e}")
        _redis_client = None
    return _redis_client


def is_redis_available() -> bool:
    client = get_redis_client()
    if client is None:
        return False
    try:
        return bool(client.ping())
    except RedisError:
        return False


def init_redis() -> None:
    """Connect on startup so a required Redis fails the boot, not the first selection."""
    if not settings.REDIS_ENABLED:
        return
    try:
        get_redis_client()
    except (RedisError, ValueError) as e:
        if settings.REDIS_REQUIRED:
            raise
        logger.warning(f"Redis initialization failed (non-fatal): {e}")


def close_redis() -> None:
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
