"""
Authentication and service dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT
authentication and for building the account security services.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select
from fintrack.app.core.config import SecurityPolicy, get_security_policy
from fintrack.app.core.exceptions import TokenRevokedError
from fintrack.app.core.idempotency import FailureDeduplicator
from fintrack.app.core.jwt import decode_access_token
from fintrack.app.core.redis_client import get_redis
from fintrack.app.core.token_revocation import is_token_revoked, are_user_tokens_revoked
from fintrack.app.db.session import get_db, get_session_factory
from fintrack.app.models.user import User
from fintrack.app.schemas.client_context import ClientContext
from fintrack.app.services.account_security import AccountSecurityService
from fintrack.app.services.activity_log import ActivityLog
from fintrack.app.services.authentication import AuthenticationCoordinator
from fintrack.app.services.user_agent import resolve_client_context

# HTTP Bearer security scheme
security = HTTPBearer()


def get_activity_log(
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> ActivityLog:
    return ActivityLog(session_factory)


def get_account_security_service(
    policy: SecurityPolicy = Depends(get_security_policy),
    activity_log: ActivityLog = Depends(get_activity_log),
    redis=Depends(get_redis),
) -> AccountSecurityService:
    return AccountSecurityService(
        policy=policy,
        activity_log=activity_log,
        deduplicator=FailureDeduplicator(redis, ttl_seconds=policy.failure_dedup_seconds),
    )


def get_authentication_coordinator(
    account_security: AccountSecurityService = Depends(get_account_security_service),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> AuthenticationCoordinator:
    return AuthenticationCoordinator(account_security, activity_log)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_account(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
) -> User:
    """
    FastAPI dependency for JWT authentication.

    Security checks:
    1. Validates JWT token signature and expiry
    2. Checks if token has been explicitly revoked (logout)
    3. Checks if the account's tokens were revoked after this one was issued
    4. Verifies in the database that the account still may log in

    The current session snapshot of the account is refreshed on success.
    The decoded payload is kept on `request.state.token_payload`.

    Raises:
        HTTPException: 401 if authentication fails, 403 if the account
            is no longer allowed to log in
        TokenRevokedError: 401 after logout or an account-wide revocation
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    if await is_token_revoked(redis, payload.get("jti")):
        raise TokenRevokedError()

    if await are_user_tokens_revoked(redis, user_id, payload.get("iat")):
        raise TokenRevokedError()

    # Real-time database check
    result = await db.execute(
        select(User).where(User.id == user_id, User.deleted_at.is_(None))
    )
    account = result.scalar_one_or_none()
    if not account:
        raise _unauthorized("User not found")

    if not await account_security.can_login(db, account, client_context):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"User account is {account.account_status.value if account.is_active else 'inactive'}",
        )

    await account_security.refresh_session_snapshot(db, account, client_context)

    request.state.token_payload = payload
    return account


async def get_current_user(
    request: Request,
    account: User = Depends(get_current_account),
) -> dict:
    """Decoded token payload of the authenticated account."""
    return request.state.token_payload
