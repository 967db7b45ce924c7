"""
Short-lived idempotency locks for failed-login handling.

One user-perceived login attempt must increment the failure counter
exactly once, even if the failure path is entered twice for the same
request. The lock is a Redis SET NX with a ~2 second TTL keyed by
(account, client IP, request id).
"""

import logging
from typing import Optional

logger = logging.getLogger("fintrack.security")

FAILURE_LOCK_PREFIX = "login_failure_lock:"


class FailureDeduplicator:
    """
    Collapses duplicate failure handling for the same logical request.

    Usage:
        dedup = FailureDeduplicator(redis_client, ttl_seconds=2)
        if await dedup.acquire(account.id, "203.0.113.7", request_id):
            ...  # count the failure
    """

    def __init__(self, redis, ttl_seconds: int = 2):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def lock_key(account_id: int, client_ip: Optional[str], request_id: Optional[str]) -> str:
        key = f"{FAILURE_LOCK_PREFIX}{account_id}:{client_ip or 'unknown'}"
        if request_id:
            key = f"{key}:{request_id}"
        return key

    async def acquire(self, account_id: int, client_ip: Optional[str], request_id: Optional[str]) -> bool:
        """
        Try to take the lock.

        Returns:
            True if this invocation should be counted, False if an
            identical invocation already holds the lock.
        """
        if self.redis is None or self.ttl_seconds <= 0:
            return True

        key = self.lock_key(account_id, client_ip, request_id)
        try:
            acquired = await self.redis.set(key, "1", ex=self.ttl_seconds, nx=True)
        except Exception as e:
            # Fail open and count the attempt
            logger.warning("Failure lock unavailable for %s, counting attempt: %s", key, e)
            return True

        if not acquired:
            logger.info("Duplicate failed-login handling collapsed", extra={"lock_key": key})
            return False
        return True
