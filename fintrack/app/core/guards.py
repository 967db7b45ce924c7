"""
Security guards for role-based access control.

Provides dependencies for protecting admin endpoints.
"""

from fastapi import Depends
from fintrack.app.core.exceptions import InsufficientPermissionsError
from fintrack.app.models.enums import UserRole
from fintrack.app.models.user import User
from fintrack.app.core.dependencies import get_current_account


def require_admin(account: User = Depends(get_current_account)) -> User:
    """
    Dependency for admin-only endpoints.

    The role is read from the database row, not the token, so a demoted
    admin loses access immediately.

    Usage:
        @router.post("/admin/users/{user_id}/block")
        async def block_user(
            user_id: int,
            admin: User = Depends(require_admin)
        ):
            ...

    Returns:
        The admin account

    Raises:
        InsufficientPermissionsError: 403 for non-admin accounts
    """
    if account.role != UserRole.ADMIN:
        raise InsufficientPermissionsError(
            "Admin access required",
            details={"required_role": UserRole.ADMIN.value},
        )

    return account
