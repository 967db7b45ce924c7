"""
Shared async Redis client.

Holds the revocation markers for access tokens and the short-lived
failed-login de-duplication locks. Nothing stored here is authoritative:
losing Redis only weakens revocation and de-duplication, never login.
"""

import logging
import redis.asyncio as redis
from fintrack.app.core.config import settings

logger = logging.getLogger("fintrack")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency returning the shared client (overridden in tests)."""
    return redis_client


async def ping_redis() -> bool:
    """Report whether Redis answers; used by the health check."""
    try:
        return bool(await redis_client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    await redis_client.aclose()
