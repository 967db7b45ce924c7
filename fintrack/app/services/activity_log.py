"""
Activity logging service for tracking security events and admin actions.

Append-only sink for the user activity audit trail. Writing an entry
is best-effort: a failed write is reported on the `fintrack.audit`
logger and never propagates into the security transition that
triggered it.
"""

import logging
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import async_sessionmaker
from fintrack.app.models.activity_log import UserActivityLog
from fintrack.app.models.enums import ActionResult
from fintrack.app.schemas.client_context import ClientContext

logger = logging.getLogger("fintrack.audit")


# Activity type constants
class ActivityType:
    """Standardized activity type constants (open set, stored as strings)."""
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    LOGIN_DENIED = "login_denied"
    LOGIN_ATTEMPT_UNKNOWN_IDENTIFIER = "login_attempt_unknown_identifier"

    ACCOUNT_BLOCKED = "account_blocked"
    ACCOUNT_BLOCKED_BY_ADMIN = "account_blocked_by_admin"
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_TERMINATED = "account_terminated"
    ACCOUNT_UNBLOCKED = "account_unblocked"
    ACCOUNT_AUTO_UNLOCKED = "account_auto_unlocked"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"

    PASSWORD_CHANGED = "password_changed"
    PROFILE_UPDATED = "profile_updated"
    USER_CREATED = "user_created"
    USER_DELETED = "user_deleted"
    USER_RESTORED = "user_restored"


class ActivityLog:
    """
    Append-only activity log writer.

    Each entry is written and committed in its own session obtained from
    `session_factory`, independent of the caller's transaction.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(
        self,
        activity_type: str,
        user_id: Optional[int] = None,
        description: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        client_context: Optional[ClientContext] = None,
        performed_by: Optional[int] = None,
        action_result: ActionResult = ActionResult.SUCCESS,
        error_message: Optional[str] = None,
    ) -> Optional[UserActivityLog]:
        """
        Append an activity entry.

        Args:
            activity_type: Activity performed (use ActivityType constants)
            user_id: Subject account, None for account-less events
            description: Human readable description
            data: Context-dependent metadata (anomaly flags, counters, before/after values)
            client_context: Client descriptor at time of event
            performed_by: Admin account id when an admin acted on another account
            action_result: success / failed / error
            error_message: Error detail for failed or errored actions

        Returns:
            Created UserActivityLog, or None if the write failed
        """
        entry = UserActivityLog(
            user_id=user_id,
            activity_type=activity_type,
            activity_description=description,
            activity_data=data,
            performed_by=performed_by,
            action_result=action_result,
            error_message=error_message,
            **(client_context.audit_fields() if client_context else {}),
        )

        try:
            return await self._write(entry)
        except Exception as e:
            logger.warning(
                "Activity log write failed: %s",
                e,
                extra={"activity_type": activity_type, "user_id": user_id},
            )
            return None

    async def _write(self, entry: UserActivityLog) -> UserActivityLog:
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
        return entry
