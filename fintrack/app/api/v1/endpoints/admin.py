"""
Admin API Endpoints.

Provides admin-only account status management: block, suspend,
terminate, unblock, manual lock, activation, soft delete and restore. Every action is
recorded in the activity log with the acting admin.
"""

from datetime import timedelta
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from fintrack.app.core.clock import utcnow, to_timestamp
from fintrack.app.core.dependencies import get_account_security_service
from fintrack.app.core.exceptions import ResourceNotFoundError
from fintrack.app.core.guards import require_admin
from fintrack.app.core.redis_client import get_redis
from fintrack.app.core.token_revocation import revoke_all_user_tokens, clear_user_token_revocation
from fintrack.app.db.session import get_db
from fintrack.app.models.enums import AccountStatus
from fintrack.app.models.user import User
from fintrack.app.schemas.admin import (
    BlockUserRequest, StatusChangeRequest, UnblockUserRequest, LockUserRequest, ActivationRequest,
    AccountSecurityState, AdminActionResponse
)
from fintrack.app.schemas.client_context import ClientContext
from fintrack.app.services.account_security import AccountSecurityService, ADMIN_TRANSITION_ACTIVITY
from fintrack.app.services.activity_log import ActivityType
from fintrack.app.services.user_agent import resolve_client_context

router = APIRouter(prefix="/admin", tags=["Admin"])


async def _get_target(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id, User.deleted_at.is_(None))
    )
    target_user = result.scalar_one_or_none()
    if not target_user:
        raise ResourceNotFoundError("User", user_id)
    return target_user


def _response(account: User, action: str, message: str) -> AdminActionResponse:
    return AdminActionResponse(
        success=True,
        message=message,
        user_id=account.id,
        action=action,
        account=AccountSecurityState.model_validate(account),
    )


async def _restrict(
    target_user: User,
    target: AccountStatus,
    reason: str,
    admin: User,
    db: AsyncSession,
    redis,
    account_security: AccountSecurityService,
    client_context: ClientContext,
    until=None,
) -> AdminActionResponse:
    await account_security.admin_transition(
        db, target_user, admin, target, reason=reason, until=until, client_context=client_context
    )

    # Terminate all active sessions of the account
    await revoke_all_user_tokens(redis, target_user.id, to_timestamp(utcnow()))

    return _response(
        target_user,
        ADMIN_TRANSITION_ACTIVITY[target],
        f"User '{target_user.username}' is now {target.value}",
    )


@router.post("/users/{user_id}/block", response_model=AdminActionResponse)
async def block_user(
    user_id: int,
    request: BlockUserRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """
    Block a user and revoke all their active tokens (admin-only).

    With `duration_minutes` the block lifts itself at the next login
    attempt after it expires; without it only an admin can unblock.
    """
    target_user = await _get_target(db, user_id)
    until = None
    if request.duration_minutes:
        until = utcnow() + timedelta(minutes=request.duration_minutes)

    return await _restrict(
        target_user, AccountStatus.BLOCKED, request.reason, admin, db, redis,
        account_security, client_context, until=until,
    )


@router.post("/users/{user_id}/suspend", response_model=AdminActionResponse)
async def suspend_user(
    user_id: int,
    request: StatusChangeRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Suspend a user until an admin explicitly unblocks them (admin-only)."""
    target_user = await _get_target(db, user_id)
    return await _restrict(
        target_user, AccountStatus.SUSPENDED, request.reason, admin, db, redis,
        account_security, client_context,
    )


@router.post("/users/{user_id}/terminate", response_model=AdminActionResponse)
async def terminate_user(
    user_id: int,
    request: StatusChangeRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Terminate a user account (admin-only). Terminal unless reactivation is enabled."""
    target_user = await _get_target(db, user_id)
    return await _restrict(
        target_user, AccountStatus.TERMINATED, request.reason, admin, db, redis,
        account_security, client_context,
    )


@router.post("/users/{user_id}/unblock", response_model=AdminActionResponse)
async def unblock_user(
    user_id: int,
    request: Optional[UnblockUserRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """
    Return a user to active status and clear token revocations (admin-only).

    Resets the failed attempt counter and the block; the unblocking admin
    and reason are kept as the lock attribution.
    """
    target_user = await _get_target(db, user_id)
    await account_security.admin_transition(
        db,
        target_user,
        admin,
        AccountStatus.ACTIVE,
        reason=request.reason if request else None,
        client_context=client_context,
    )

    # Clear token revocations (user can now login and get new tokens)
    await clear_user_token_revocation(redis, target_user.id)

    return _response(
        target_user,
        ActivityType.ACCOUNT_UNBLOCKED,
        f"User '{target_user.username}' has been unblocked",
    )


@router.post("/users/{user_id}/lock", response_model=AdminActionResponse)
async def lock_user(
    user_id: int,
    request: Optional[LockUserRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Switch the manual lock on (admin-only)."""
    target_user = await _get_target(db, user_id)
    await account_security.set_manual_lock(
        db, target_user, admin, True,
        reason=request.reason if request else None,
        client_context=client_context,
    )
    await revoke_all_user_tokens(redis, target_user.id, to_timestamp(utcnow()))

    return _response(
        target_user,
        ActivityType.ACCOUNT_LOCKED,
        f"User '{target_user.username}' has been locked",
    )


@router.post("/users/{user_id}/unlock", response_model=AdminActionResponse)
async def unlock_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Switch the manual lock off (admin-only)."""
    target_user = await _get_target(db, user_id)
    await account_security.set_manual_lock(
        db, target_user, admin, False, client_context=client_context,
    )

    return _response(
        target_user,
        ActivityType.ACCOUNT_UNLOCKED,
        f"User '{target_user.username}' has been unlocked",
    )


@router.delete("/users/{user_id}", response_model=AdminActionResponse)
async def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Soft delete a user (admin-only). The row and its activity log are kept."""
    target_user = await _get_target(db, user_id)
    await account_security.soft_delete(db, target_user, admin, client_context=client_context)
    await revoke_all_user_tokens(redis, target_user.id, to_timestamp(utcnow()))

    return _response(
        target_user,
        ActivityType.USER_DELETED,
        f"User '{target_user.username}' has been deleted",
    )


@router.post("/users/{user_id}/restore", response_model=AdminActionResponse)
async def restore_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Undo a soft delete (admin-only)."""
    target_user = await db.get(User, user_id)
    if not target_user:
        raise ResourceNotFoundError("User", user_id)
    await account_security.restore(db, target_user, admin, client_context=client_context)

    return _response(
        target_user,
        ActivityType.USER_RESTORED,
        f"User '{target_user.username}' has been restored",
    )


@router.post("/users/{user_id}/activate", response_model=AdminActionResponse)
async def activate_user(
    user_id: int,
    request: Optional[ActivationRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Switch is_active on (admin-only)."""
    target_user = await _get_target(db, user_id)
    await account_security.set_active(
        db, target_user, admin, True,
        reason=request.reason if request else None,
        client_context=client_context,
    )

    return _response(
        target_user,
        ActivityType.PROFILE_UPDATED,
        f"User '{target_user.username}' has been activated",
    )


@router.post("/users/{user_id}/deactivate", response_model=AdminActionResponse)
async def deactivate_user(
    user_id: int,
    request: Optional[ActivationRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Switch is_active off and revoke the account's tokens (admin-only)."""
    target_user = await _get_target(db, user_id)
    await account_security.set_active(
        db, target_user, admin, False,
        reason=request.reason if request else None,
        client_context=client_context,
    )
    await revoke_all_user_tokens(redis, target_user.id, to_timestamp(utcnow()))

    return _response(
        target_user,
        ActivityType.PROFILE_UPDATED,
        f"User '{target_user.username}' has been deactivated",
    )
