"""
Login orchestration.

Ties account lookup, eligibility, anomaly detection, password
verification and the security state transitions together into a
single `attempt` call used by the login endpoint.
"""

import logging
from typing import Callable, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from fintrack.app.core.clock import utcnow
from fintrack.app.core.exceptions import CredentialMismatchError
from fintrack.app.core.jwt import create_session_token
from fintrack.app.core.security import verify_password_async
from fintrack.app.models.enums import ActionResult
from fintrack.app.models.user import User
from fintrack.app.schemas.client_context import ClientContext
from fintrack.app.services.account_security import AccountSecurityService
from fintrack.app.services.activity_log import ActivityLog, ActivityType
from fintrack.app.services.anomaly_detection import AnomalyReport, detect_anomalies
from fintrack.app.services.login_denial import denial_error

logger = logging.getLogger("fintrack.auth")


class AuthenticatedSession(BaseModel):
    """Result of a successful login."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    account: User
    access_token: str
    anomaly_report: AnomalyReport
    first_login: bool = False
    needs_password_change: bool = False


async def find_account_by_identifier(db: AsyncSession, identifier: str) -> Optional[User]:
    """First non-deleted account whose username or email equals the identifier."""
    result = await db.execute(
        select(User)
        .where(
            or_(User.username == identifier, User.email == identifier),
            User.deleted_at.is_(None),
        )
        .order_by(User.id)
        .limit(1)
    )
    return result.scalars().first()


class AuthenticationCoordinator:
    """
    End-to-end login attempt.

    Args:
        security: Account security state service
        activity_log: Audit sink
        clock: Returns the current naive UTC time
    """

    def __init__(
        self,
        security: AccountSecurityService,
        activity_log: ActivityLog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.security = security
        self.activity_log = activity_log
        self.clock = clock

    async def attempt(
        self,
        db: AsyncSession,
        identifier: str,
        password: str,
        client_context: ClientContext,
    ) -> AuthenticatedSession:
        """
        Authenticate an identifier / password pair.

        Raises:
            CredentialMismatchError: Unknown identifier or wrong password
                (same message for both)
            AccountNotEligibleError: Account exists but may not log in
        """
        account = await find_account_by_identifier(db, identifier)

        if account is None:
            logger.warning(
                "Login attempt for unknown identifier",
                extra={"identifier": identifier, "ip": client_context.client_ip},
            )
            await self.activity_log.record(
                ActivityType.LOGIN_ATTEMPT_UNKNOWN_IDENTIFIER,
                description="Login attempt with unknown username or email",
                data={"identifier": identifier},
                client_context=client_context,
                action_result=ActionResult.FAILED,
                error_message="Unknown identifier",
            )
            raise CredentialMismatchError()

        if not await self.security.can_login(db, account, client_context):
            await self._deny(db, account, client_context)

        now = self.clock()
        anomaly_report = detect_anomalies(account, client_context, now, self.security.policy)

        if not await verify_password_async(password, account.hashed_password):
            outcome = await self.security.record_failed_attempt(
                db, account, client_context, anomaly_report
            )
            raise CredentialMismatchError(outcome=outcome)

        first_login = await self.security.record_success(
            db, account, client_context, anomaly_report
        )

        return AuthenticatedSession(
            account=account,
            access_token=create_session_token(account),
            anomaly_report=anomaly_report,
            first_login=first_login,
            needs_password_change=self.security.needs_password_change(account),
        )

    async def _deny(self, db: AsyncSession, account: User, client_context: ClientContext):
        now = self.clock()
        admin = None
        if account.blocked_by:
            admin = await db.get(User, account.blocked_by)

        error = denial_error(account, now, self.security.policy, admin=admin)

        logger.warning(
            "Login denied",
            extra={
                "user_id": account.id,
                "account_status": account.account_status.value,
                "ip": client_context.client_ip,
            },
        )
        await self.activity_log.record(
            ActivityType.LOGIN_DENIED,
            user_id=account.id,
            description=f"Login denied: account {account.account_status.value}",
            data=error.details,
            client_context=client_context,
            action_result=ActionResult.FAILED,
            error_message=error.message,
        )
        raise error
