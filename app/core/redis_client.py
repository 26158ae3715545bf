"""Redis connection and the one-time login code store."""

from datetime import datetime
from typing import cast

import redis
import structlog

from app.config import settings
from app.schemas.auth import OneTimeCode

logger = structlog.get_logger()

OTP_KEY_PREFIX = "otp"

_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Shared Redis client, created on first use.

    Returns:
        Redis client configured from ``REDIS_*`` settings
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password or None,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """Ping Redis; failures are logged and reported as unhealthy."""
    try:
        return bool(get_redis_client().ping())
    except redis.RedisError as e:
        logger.warning("redis_ping_failed", error=str(e))
        return False


def close_redis_connection() -> None:
    """Close and forget the shared client."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class OneTimeCodeStore:
    """
    Short-lived login codes keyed by patient account number.

    Codes live under ``otp:{acct_no}`` with a Redis TTL, so an abandoned code
    disappears on its own; the stored expiry is still checked on verification.
    """

    def __init__(self, redis_client: redis.Redis):
        """Initialize store with Redis client."""
        self.redis = redis_client

    @staticmethod
    def key(acct_no: str) -> str:
        """Redis key holding the code for an account."""
        return f"{OTP_KEY_PREFIX}:{acct_no}"

    def issue(self, acct_no: str, code: OneTimeCode, ttl: int) -> None:
        """
        Store a code, replacing any previous one for the account.

        Args:
            acct_no: Patient account number
            code: Code and its expiry
            ttl: Seconds before Redis drops the key
        """
        self.redis.setex(self.key(acct_no), ttl, code.model_dump_json())

    def get(self, acct_no: str) -> OneTimeCode | None:
        """Load the current code for an account, if any."""
        value = cast(str | bytes | None, self.redis.get(self.key(acct_no)))
        if not value:
            return None
        return OneTimeCode.model_validate_json(value)

    def consume(self, acct_no: str) -> None:
        """Delete the code after a successful verification."""
        self.redis.delete(self.key(acct_no))

    @staticmethod
    def is_expired(code: OneTimeCode, now: datetime) -> bool:
        """Codes are valid strictly before their expiry."""
        return now >= code.expires_at
