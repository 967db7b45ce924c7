"""
Account security state service.

Owns every transition of an account's status, lock metadata and
failed-attempt counter:

- login eligibility check with lazy auto-unlock of expired blocks
- failed attempt counting and automatic blocking
- successful login bookkeeping
- admin status transitions, manual lock and active switches,
  soft delete and restore
- profile updates
- password change bookkeeping

Counter and status changes that can race between concurrent login
attempts are done with single SQL UPDATE statements. Each operation
commits its own transaction and writes the matching activity log
entry afterwards.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from pydantic import BaseModel, ConfigDict
from sqlalchemy import update, func
from sqlalchemy.ext.asyncio import AsyncSession

from fintrack.app.core.clock import utcnow
from fintrack.app.core.config import SecurityPolicy
from fintrack.app.core.exceptions import InvalidTransitionError
from fintrack.app.core.idempotency import FailureDeduplicator
from fintrack.app.core.security import hash_password_async
from fintrack.app.models.enums import AccountStatus, ActionResult, PasswordChangedBy
from fintrack.app.models.user import User
from fintrack.app.schemas.client_context import ClientContext
from fintrack.app.services.activity_log import ActivityLog, ActivityType
from fintrack.app.services.anomaly_detection import AnomalyReport, EMPTY_REPORT

logger = logging.getLogger("fintrack.security")

SYSTEM_ACTOR = "system"

RESTRICTIVE_STATUSES = frozenset({
    AccountStatus.BLOCKED,
    AccountStatus.SUSPENDED,
    AccountStatus.TERMINATED,
})

ADMIN_TRANSITION_ACTIVITY = {
    AccountStatus.BLOCKED: ActivityType.ACCOUNT_BLOCKED_BY_ADMIN,
    AccountStatus.SUSPENDED: ActivityType.ACCOUNT_SUSPENDED,
    AccountStatus.TERMINATED: ActivityType.ACCOUNT_TERMINATED,
    AccountStatus.ACTIVE: ActivityType.ACCOUNT_UNBLOCKED,
}

PROFILE_FIELDS = ("full_name", "email", "position")


class AccessDenial:
    """Which login condition failed, in evaluation order."""
    STATUS = "status"
    INACTIVE = "inactive"
    LOCKED = "locked"
    TEMPORARY_BLOCK = "temporary_block"


class AccessDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    denial: Optional[str] = None


class AttemptBranch:
    COUNTED = "counted"
    BLOCKED = "blocked"
    DUPLICATE = "duplicate"


class AttemptOutcome(BaseModel):
    """Result of recording one failed login attempt."""
    model_config = ConfigDict(frozen=True)

    branch: str
    failed_attempts: int
    remaining_attempts: int
    blocked_until: Optional[datetime] = None


def system_lock_reason(failed_attempts: int, anomaly_report: AnomalyReport) -> str:
    reason = (
        "Security Protocol: Account automatically blocked after "
        f"{failed_attempts} consecutive failed authentication attempts"
    )
    if anomaly_report.detected:
        reason += f" | Suspicious activity detected: {anomaly_report.summary()}"
    return reason


class AccountSecurityService:
    """
    Account status and lockout transitions.

    Args:
        policy: Immutable security policy
        activity_log: Audit sink for every transition
        deduplicator: Failure de-duplication lock
        clock: Returns the current naive UTC time
    """

    def __init__(
        self,
        policy: SecurityPolicy,
        activity_log: ActivityLog,
        deduplicator: FailureDeduplicator,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.policy = policy
        self.activity_log = activity_log
        self.deduplicator = deduplicator
        self.clock = clock

    # ------------------------------------------------------------------
    # Login eligibility
    # ------------------------------------------------------------------

    def evaluate_access(self, account: User, now: Optional[datetime] = None) -> AccessDecision:
        """Evaluate the login invariant without side effects."""
        now = now or self.clock()
        if account.account_status != AccountStatus.ACTIVE:
            return AccessDecision(allowed=False, denial=AccessDenial.STATUS)
        if not account.is_active:
            return AccessDecision(allowed=False, denial=AccessDenial.INACTIVE)
        if account.is_locked:
            return AccessDecision(allowed=False, denial=AccessDenial.LOCKED)
        if account.blocked_until is not None and account.blocked_until > now:
            return AccessDecision(allowed=False, denial=AccessDenial.TEMPORARY_BLOCK)
        return AccessDecision(allowed=True)

    async def can_login(
        self,
        db: AsyncSession,
        account: User,
        client_context: Optional[ClientContext] = None,
    ) -> bool:
        """
        Check whether the account may log in right now.

        An expired automatic or timed block is lifted first, so an account
        whose block ran out is eligible on its very next attempt.
        """
        now = self.clock()
        if (
            account.account_status == AccountStatus.BLOCKED
            and account.blocked_until is not None
            and account.blocked_until <= now
        ):
            await self._auto_unlock(db, account, now, client_context)

        return self.evaluate_access(account, now).allowed

    async def _auto_unlock(
        self,
        db: AsyncSession,
        account: User,
        now: datetime,
        client_context: Optional[ClientContext],
    ) -> bool:
        previous_until = account.blocked_until
        stmt = (
            update(User)
            .where(
                User.id == account.id,
                User.account_status == AccountStatus.BLOCKED,
                User.blocked_until.is_not(None),
                User.blocked_until <= now,
            )
            .values(
                account_status=AccountStatus.ACTIVE,
                failed_login_attempts=0,
                blocked_until=None,
                locked_at=None,
                locked_by=None,
                locked_reason=None,
                blocked_by=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()
        await db.refresh(account)

        if result.rowcount == 0:
            # Someone else already lifted it
            return False

        logger.info(
            "Account auto-unlocked",
            extra={"user_id": account.id, "blocked_until": previous_until.isoformat()},
        )
        await self.activity_log.record(
            ActivityType.ACCOUNT_AUTO_UNLOCKED,
            user_id=account.id,
            description="Account automatically unlocked after block period expired",
            data={"blocked_until": previous_until.isoformat(), "unlocked_at": now.isoformat()},
            client_context=client_context,
        )
        return True

    # ------------------------------------------------------------------
    # Login attempts
    # ------------------------------------------------------------------

    async def record_failed_attempt(
        self,
        db: AsyncSession,
        account: User,
        client_context: ClientContext,
        anomaly_report: AnomalyReport = EMPTY_REPORT,
    ) -> AttemptOutcome:
        """
        Count a failed password attempt and block the account at the threshold.

        Args:
            db: Database session the account was loaded in
            account: Account whose password did not match
            client_context: Client of the failing request
            anomaly_report: Anomalies of this attempt; doubles the block length

        Returns:
            AttemptOutcome with branch counted, blocked or duplicate
        """
        max_attempts = self.policy.max_failed_attempts

        acquired = await self.deduplicator.acquire(
            account.id, client_context.client_ip, client_context.request_id
        )
        if not acquired:
            return AttemptOutcome(
                branch=AttemptBranch.DUPLICATE,
                failed_attempts=account.failed_login_attempts,
                remaining_attempts=max(max_attempts - account.failed_login_attempts, 0),
                blocked_until=account.blocked_until,
            )

        now = self.clock()
        result = await db.execute(
            update(User)
            .where(User.id == account.id)
            .values(
                failed_login_attempts=User.failed_login_attempts + 1,
                last_failed_login_at=now,
            )
            .returning(User.failed_login_attempts)
            .execution_options(synchronize_session=False)
        )
        failed_attempts = result.scalar_one()

        transitioned = False
        if failed_attempts >= max_attempts:
            block_minutes = self.policy.block_duration_for(anomaly_report.detected)
            result = await db.execute(
                update(User)
                .where(User.id == account.id, User.account_status == AccountStatus.ACTIVE)
                .values(
                    account_status=AccountStatus.BLOCKED,
                    locked_at=now,
                    locked_by=SYSTEM_ACTOR,
                    locked_reason=system_lock_reason(failed_attempts, anomaly_report),
                    blocked_until=now + timedelta(minutes=block_minutes),
                )
                .execution_options(synchronize_session=False)
            )
            transitioned = result.rowcount > 0

        await db.commit()
        await db.refresh(account)

        remaining = max(max_attempts - failed_attempts, 0)

        if failed_attempts >= max_attempts:
            if transitioned:
                await self._log_system_block(account, failed_attempts, client_context, anomaly_report)
            return AttemptOutcome(
                branch=AttemptBranch.BLOCKED,
                failed_attempts=failed_attempts,
                remaining_attempts=0,
                blocked_until=account.blocked_until,
            )

        logger.warning(
            "Failed login attempt",
            extra={
                "user_id": account.id,
                "failed_attempts": failed_attempts,
                "remaining_attempts": remaining,
                "ip": client_context.client_ip,
            },
        )
        data = {
            "failed_attempts": failed_attempts,
            "remaining_attempts": remaining,
            "max_attempts": max_attempts,
            **anomaly_report.as_audit_data(),
        }
        if remaining == 1:
            data["warning"] = "LAST ATTEMPT BEFORE BLOCK"
        await self.activity_log.record(
            ActivityType.LOGIN_FAILED,
            user_id=account.id,
            description=f"Failed login attempt ({failed_attempts}/{max_attempts})",
            data=data,
            client_context=client_context,
            action_result=ActionResult.FAILED,
            error_message="Invalid credentials",
        )
        return AttemptOutcome(
            branch=AttemptBranch.COUNTED,
            failed_attempts=failed_attempts,
            remaining_attempts=remaining,
        )

    async def _log_system_block(
        self,
        account: User,
        failed_attempts: int,
        client_context: ClientContext,
        anomaly_report: AnomalyReport,
    ) -> None:
        logger.critical(
            "Account automatically blocked",
            extra={
                "user_id": account.id,
                "failed_attempts": failed_attempts,
                "blocked_until": account.blocked_until.isoformat(),
                "risk_level": anomaly_report.risk_level,
                "ip": client_context.client_ip,
            },
        )
        await self.activity_log.record(
            ActivityType.ACCOUNT_BLOCKED,
            user_id=account.id,
            description=account.locked_reason,
            data={
                "failed_attempts": failed_attempts,
                "blocked_until": account.blocked_until.isoformat(),
                "block_duration_minutes": self.policy.block_duration_for(anomaly_report.detected),
                **anomaly_report.as_audit_data(),
            },
            client_context=client_context,
        )

    async def record_success(
        self,
        db: AsyncSession,
        account: User,
        client_context: ClientContext,
        anomaly_report: Optional[AnomalyReport] = None,
    ) -> bool:
        """
        Record a successful login.

        Resets the failure counter, updates login history and the current
        session snapshot, and counts the login.

        Returns:
            True if this was the account's first login
        """
        anomaly_report = anomaly_report or EMPTY_REPORT
        now = self.clock()

        values = dict(
            failed_login_attempts=0,
            blocked_until=None,
            locked_reason=None,
            last_login_at=now,
            last_login_ip_private=client_context.ip_private,
            last_login_ip_public=client_context.ip_public,
            last_login_browser=client_context.browser,
            last_login_browser_version=client_context.browser_version,
            last_login_platform=client_context.platform,
            last_login_user_agent=client_context.user_agent,
            total_login_count=User.total_login_count + 1,
            first_login_at=func.coalesce(User.first_login_at, now),
            **self._snapshot_values(client_context),
        )
        if account.account_status == AccountStatus.BLOCKED:
            values["account_status"] = AccountStatus.ACTIVE

        result = await db.execute(
            update(User)
            .where(User.id == account.id)
            .values(**values)
            .returning(User.total_login_count)
            .execution_options(synchronize_session=False)
        )
        total_logins = result.scalar_one()
        await db.commit()
        await db.refresh(account)

        first_login = total_logins == 1

        logger.info(
            "Successful login",
            extra={
                "user_id": account.id,
                "first_login": first_login,
                "risk_level": anomaly_report.risk_level,
                "ip": client_context.client_ip,
            },
        )
        await self.activity_log.record(
            ActivityType.LOGIN,
            user_id=account.id,
            description="User logged in successfully",
            data={
                "first_login": first_login,
                "total_login_count": total_logins,
                **anomaly_report.as_audit_data(),
            },
            client_context=client_context,
        )
        return first_login

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------

    def _coerce_status(self, target_status) -> AccountStatus:
        try:
            return AccountStatus(target_status)
        except ValueError:
            raise InvalidTransitionError(
                f"Unknown account status: {target_status}",
                details={"target_status": str(target_status)},
            )

    def _check_transition(
        self,
        account: User,
        admin: User,
        target: AccountStatus,
        reason: Optional[str],
        until: Optional[datetime],
        now: datetime,
    ) -> None:
        details = {"user_id": account.id, "current_status": account.account_status.value, "target_status": target.value}

        if account.id == admin.id:
            raise InvalidTransitionError("Administrators cannot change the status of their own account", details)
        if target in RESTRICTIVE_STATUSES and not (reason and reason.strip()):
            raise InvalidTransitionError(f"A reason is required to set status '{target.value}'", details)
        if until is not None:
            if target != AccountStatus.BLOCKED:
                raise InvalidTransitionError("Only blocks can have an expiry time", details)
            if until <= now:
                raise InvalidTransitionError("Block expiry must be in the future", details)
        if account.account_status == target:
            raise InvalidTransitionError(f"Account is already {target.value}", details)
        if account.account_status == AccountStatus.TERMINATED and not self.policy.allow_terminated_reactivation:
            raise InvalidTransitionError("Terminated accounts cannot be reactivated", details)

    async def admin_transition(
        self,
        db: AsyncSession,
        account: User,
        admin: User,
        target_status,
        reason: Optional[str] = None,
        until: Optional[datetime] = None,
        client_context: Optional[ClientContext] = None,
    ) -> User:
        """
        Move an account to a new status on an administrator's behalf.

        Args:
            db: Database session
            account: Account to change
            admin: Acting administrator
            target_status: AccountStatus (or its value) to move to
            reason: Required for blocked / suspended / terminated
            until: Optional expiry, only for blocked
            client_context: Admin's client, recorded on the log entry

        Returns:
            Updated account

        Raises:
            InvalidTransitionError: If a precondition is violated
        """
        target = self._coerce_status(target_status)
        now = self.clock()
        self._check_transition(account, admin, target, reason, until, now)

        previous_status = account.account_status

        if target in RESTRICTIVE_STATUSES:
            account.account_status = target
            account.locked_at = now
            account.locked_by = str(admin.id)
            account.locked_reason = reason.strip()
            account.blocked_by = admin.id
            account.blocked_until = until if target == AccountStatus.BLOCKED else None
            if target == AccountStatus.TERMINATED:
                account.is_active = False
        else:
            account.account_status = AccountStatus.ACTIVE
            account.failed_login_attempts = 0
            account.blocked_until = None
            account.locked_at = None
            account.blocked_by = None
            # The unblocking admin stays attributed until the next lock or login
            account.locked_by = str(admin.id)
            account.locked_reason = reason.strip() if reason and reason.strip() else None
            if previous_status == AccountStatus.TERMINATED:
                account.is_active = True

        await db.commit()
        await db.refresh(account)

        logger.warning(
            "Account status changed by admin",
            extra={
                "user_id": account.id,
                "admin_id": admin.id,
                "previous_status": previous_status.value,
                "new_status": target.value,
            },
        )
        await self.activity_log.record(
            ADMIN_TRANSITION_ACTIVITY[target],
            user_id=account.id,
            description=f"Account status changed from {previous_status.value} to {target.value} by {admin.display_name}",
            data={
                "previous_status": previous_status.value,
                "new_status": target.value,
                "reason": reason,
                "blocked_until": until.isoformat() if until else None,
            },
            client_context=client_context,
            performed_by=admin.id,
        )
        return account

    async def set_manual_lock(
        self,
        db: AsyncSession,
        account: User,
        admin: User,
        locked: bool,
        reason: Optional[str] = None,
        client_context: Optional[ClientContext] = None,
    ) -> User:
        """Toggle the manual lock switch. Independent of account_status."""
        if account.id == admin.id:
            raise InvalidTransitionError(
                "Administrators cannot lock their own account", {"user_id": account.id}
            )
        if account.is_locked == locked:
            state = "locked" if locked else "unlocked"
            raise InvalidTransitionError(f"Account is already {state}", {"user_id": account.id})

        now = self.clock()
        account.is_locked = locked
        if locked:
            account.locked_at = now
            account.locked_by = str(admin.id)
            account.locked_reason = reason
        elif account.account_status == AccountStatus.ACTIVE:
            # Keep the metadata of a block that is still in force
            account.locked_at = None
            account.locked_by = None
            account.locked_reason = None

        await db.commit()
        await db.refresh(account)

        await self.activity_log.record(
            ActivityType.ACCOUNT_LOCKED if locked else ActivityType.ACCOUNT_UNLOCKED,
            user_id=account.id,
            description=f"Account {'locked' if locked else 'unlocked'} by {admin.display_name}",
            data={"reason": reason},
            client_context=client_context,
            performed_by=admin.id,
        )
        return account

    async def soft_delete(
        self,
        db: AsyncSession,
        account: User,
        admin: User,
        client_context: Optional[ClientContext] = None,
    ) -> User:
        """Hide an account from login. Rows are never hard-deleted."""
        if account.id == admin.id:
            raise InvalidTransitionError("Administrators cannot delete their own account", {"user_id": account.id})
        if account.deleted_at is not None:
            raise InvalidTransitionError("Account is already deleted", {"user_id": account.id})

        account.deleted_at = self.clock()
        account.is_active = False
        await db.commit()
        await db.refresh(account)

        await self.activity_log.record(
            ActivityType.USER_DELETED,
            user_id=account.id,
            description=f"Account {account.username} deleted by {admin.display_name}",
            data={"username": account.username, "email": account.email},
            client_context=client_context,
            performed_by=admin.id,
        )
        return account

    async def restore(
        self,
        db: AsyncSession,
        account: User,
        admin: User,
        client_context: Optional[ClientContext] = None,
    ) -> User:
        """Undo a soft delete. Terminated accounts come back inactive."""
        if account.deleted_at is None:
            raise InvalidTransitionError("Account is not deleted", {"user_id": account.id})

        account.deleted_at = None
        if account.account_status != AccountStatus.TERMINATED:
            account.is_active = True
        await db.commit()
        await db.refresh(account)

        await self.activity_log.record(
            ActivityType.USER_RESTORED,
            user_id=account.id,
            description=f"Account {account.username} restored by {admin.display_name}",
            data={"is_active": account.is_active},
            client_context=client_context,
            performed_by=admin.id,
        )
        return account

    async def set_active(
        self,
        db: AsyncSession,
        account: User,
        admin: User,
        active: bool,
        reason: Optional[str] = None,
        client_context: Optional[ClientContext] = None,
    ) -> User:
        """
        Flip the is_active switch.

        An inactive account with active status gets the "deactivated"
        login denial. Terminated accounts can only regain is_active
        through an unblock.

        Raises:
            InvalidTransitionError: On self-action, a no-op, or activating
                a terminated account
        """
        details = {"user_id": account.id, "is_active": account.is_active}
        if account.id == admin.id:
            raise InvalidTransitionError("Administrators cannot deactivate their own account", details)
        if account.is_active == active:
            raise InvalidTransitionError(
                f"Account is already {'active' if active else 'inactive'}", details
            )
        if active and account.account_status == AccountStatus.TERMINATED:
            raise InvalidTransitionError("Terminated accounts cannot be activated", details)

        return await self._apply_profile_changes(
            db,
            account,
            {"is_active": active},
            performed_by=admin.id,
            client_context=client_context,
            extra={"reason": reason},
            description=f"Account {'activated' if active else 'deactivated'} by {admin.display_name}",
        )

    async def update_profile(
        self,
        db: AsyncSession,
        account: User,
        changes: dict,
        performed_by: Optional[int] = None,
        client_context: Optional[ClientContext] = None,
    ) -> List[str]:
        """
        Apply profile field changes and log which fields changed.

        Returns:
            Names of the fields that actually changed (empty for a no-op,
            which is not logged)
        """
        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise InvalidTransitionError(
                "Only profile fields can be updated", {"fields": sorted(unknown)}
            )

        changed = [field for field in PROFILE_FIELDS if field in changes and getattr(account, field) != changes[field]]
        if not changed:
            return []

        await self._apply_profile_changes(
            db,
            account,
            {field: changes[field] for field in changed},
            performed_by=performed_by,
            client_context=client_context,
        )
        return changed

    async def _apply_profile_changes(
        self,
        db: AsyncSession,
        account: User,
        values: dict,
        performed_by: Optional[int],
        client_context: Optional[ClientContext],
        extra: Optional[dict] = None,
        description: str = "Profile information updated",
    ) -> User:
        for field, value in values.items():
            setattr(account, field, value)
        await db.commit()
        await db.refresh(account)

        await self.activity_log.record(
            ActivityType.PROFILE_UPDATED,
            user_id=account.id,
            description=description,
            data={"changed_fields": list(values), **values, **(extra or {})},
            client_context=client_context,
            performed_by=performed_by,
        )
        return account

    # ------------------------------------------------------------------
    # Credentials and session
    # ------------------------------------------------------------------

    async def change_password(
        self,
        db: AsyncSession,
        account: User,
        new_password: str,
        changed_by: PasswordChangedBy,
        performed_by: Optional[int] = None,
        client_context: Optional[ClientContext] = None,
    ) -> User:
        account.hashed_password = await hash_password_async(new_password)
        account.password_changed_at = self.clock()
        account.password_changed_by = changed_by
        account.password_change_count = (account.password_change_count or 0) + 1
        await db.commit()
        await db.refresh(account)

        await self.activity_log.record(
            ActivityType.PASSWORD_CHANGED,
            user_id=account.id,
            description="Password changed",
            data={
                "changed_by": changed_by.value,
                "password_change_count": account.password_change_count,
            },
            client_context=client_context,
            performed_by=performed_by,
        )
        return account

    def needs_password_change(self, account: User, now: Optional[datetime] = None) -> bool:
        """Advisory only; never affects whether a login succeeds."""
        reference = account.password_changed_at or account.created_at
        if reference is None:
            return False
        now = now or self.clock()
        return now - reference > timedelta(days=self.policy.password_expiry_days)

    @staticmethod
    def _snapshot_values(client_context: ClientContext) -> dict:
        return {
            "current_ip_private": client_context.ip_private,
            "current_ip_public": client_context.ip_public,
            "current_browser": client_context.browser,
            "current_browser_version": client_context.browser_version,
            "current_platform": client_context.platform,
            "current_user_agent": client_context.user_agent,
        }

    async def refresh_session_snapshot(
        self,
        db: AsyncSession,
        account: User,
        client_context: ClientContext,
    ) -> bool:
        """
        Update the current_* fields for an authenticated request.

        Returns:
            True if anything changed
        """
        values = self._snapshot_values(client_context)
        if all(getattr(account, field) == value for field, value in values.items()):
            return False

        for field, value in values.items():
            setattr(account, field, value)
        await db.commit()
        await db.refresh(account)
        return True
