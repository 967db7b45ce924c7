"""
Token Revocation System using Redis.

Implements token blacklisting to immediately invalidate JWT tokens
when accounts are blocked, suspended or terminated, or on logout.

Revocation failures are logged and absorbed: Redis being down must
never turn into a login failure.
"""

import logging
from typing import Optional
from fintrack.app.core.config import settings

logger = logging.getLogger("fintrack.security")

# Redis key prefixes
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"


def _token_ttl_seconds() -> int:
    # Tokens expire on their own after this long
    return settings.access_token_expire_minutes * 60


async def revoke_token(redis, jti: str, user_id: int) -> bool:
    """
    Revoke a specific JWT token by adding its id to the blacklist.

    Args:
        redis: Redis client
        jti: The token id claim
        user_id: Account that owns the token

    Returns:
        True if successfully revoked, False otherwise
    """
    try:
        await redis.set(f"{TOKEN_BLACKLIST_PREFIX}{jti}", str(user_id), ex=_token_ttl_seconds())
        return True
    except Exception as e:
        logger.warning("Error revoking token for user %s: %s", user_id, e)
        return False


async def is_token_revoked(redis, jti: Optional[str]) -> bool:
    """Check if a token id has been revoked."""
    if not jti:
        return False
    try:
        return await redis.exists(f"{TOKEN_BLACKLIST_PREFIX}{jti}") > 0
    except Exception as e:
        # Fail open, the account status check in get_current_account still applies
        logger.warning("Error checking token revocation: %s", e)
        return False


async def revoke_all_user_tokens(redis, user_id: int, revoked_at: float) -> bool:
    """
    Revoke every token issued to an account up to `revoked_at`.

    Tokens issued afterwards (e.g. after an auto-unlock) stay valid,
    so the marker never has to be cleared for a fresh login to work.

    Args:
        redis: Redis client
        user_id: Account whose tokens should be revoked
        revoked_at: POSIX timestamp of the revocation

    Returns:
        True if successful
    """
    try:
        await redis.set(f"{USER_TOKENS_PREFIX}{user_id}:revoked", str(revoked_at), ex=_token_ttl_seconds())
        return True
    except Exception as e:
        logger.warning("Error revoking all tokens for user %s: %s", user_id, e)
        return False


async def are_user_tokens_revoked(redis, user_id: int, issued_at: Optional[float]) -> bool:
    """
    Check if a token issued at `issued_at` falls under an account-wide revocation.
    """
    try:
        revoked_at = await redis.get(f"{USER_TOKENS_PREFIX}{user_id}:revoked")
    except Exception as e:
        logger.warning("Error checking user token revocation for user %s: %s", user_id, e)
        return False

    if revoked_at is None:
        return False
    if issued_at is None:
        return True
    return float(issued_at) <= float(revoked_at)


async def clear_user_token_revocation(redis, user_id: int) -> bool:
    """
    Clear the account-wide revocation marker.

    Called when a blocked account is unblocked by an admin.
    """
    try:
        await redis.delete(f"{USER_TOKENS_PREFIX}{user_id}:revoked")
        return True
    except Exception as e:
        logger.warning("Error clearing token revocation for user %s: %s", user_id, e)
        return False
