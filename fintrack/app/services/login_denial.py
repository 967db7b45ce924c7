"""
Denial messages for accounts that may not log in.

The message is a single " | " joined string so it can be shown as-is
by any client, while the same facts are also exposed as structured
fields on AccountNotEligibleError.
"""

import re
from datetime import datetime
from typing import Optional

from fintrack.app.core.config import SecurityPolicy
from fintrack.app.core.exceptions import AccountNotEligibleError
from fintrack.app.models.enums import AccountStatus

DEACTIVATED_MESSAGE = "Your account has been deactivated. Please contact the administrator for assistance."
ASSISTANCE_LINE = "For assistance, contact your system administrator"
SYSTEM_LOCK_LINE = "Action: Automatic Security Lock"

STATUS_TITLES = {
    AccountStatus.BLOCKED: "Account Blocked",
    AccountStatus.SUSPENDED: "Account Suspended",
    AccountStatus.TERMINATED: "Account Terminated",
}
LOCKED_TITLE = "Account Locked"
TEMPORARY_BLOCK_TITLE = "Temporary Block Active"

_SYSTEM_REASON_PATTERN = re.compile(
    r"Account automatically (secured|blocked) after \d+ consecutive failed authentication attempts"
)


def remaining_block_minutes(blocked_until: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole minutes until a temporary block expires, None if not blocked."""
    if blocked_until is None or blocked_until <= now:
        return None
    return int((blocked_until - now).total_seconds() // 60)


def format_duration(minutes: int) -> str:
    hours, rest = divmod(minutes, 60)
    if hours > 0:
        return f"{hours} hour(s) {rest} minute(s)"
    return f"{rest} minute(s)"


def _reason_line(locked_reason: str) -> str:
    # Anomaly-enriched reasons are already composed, show them whole
    if "|" in locked_reason:
        return locked_reason
    clean = locked_reason.replace("Security Protocol: ", "")
    clean = _SYSTEM_REASON_PATTERN.sub("Too many failed login attempts", clean)
    return f"Reason: {clean}"


def _attribution_line(account, admin) -> Optional[str]:
    if account.locked_by == "system":
        return SYSTEM_LOCK_LINE
    if account.blocked_by and admin is not None:
        return f"Blocked by: {admin.display_name} ({admin.position or 'Administrator'})"
    return None


def denial_title(account, now: datetime) -> Optional[str]:
    """
    Title of the first failing login condition.

    Returns None for an inactive account with active status, which gets
    the single deactivation line instead of a detailed message.
    """
    if account.account_status != AccountStatus.ACTIVE:
        return STATUS_TITLES.get(account.account_status, "Account Blocked")
    if not account.is_active:
        return None
    if account.is_locked:
        return LOCKED_TITLE
    if account.blocked_until is not None and account.blocked_until > now:
        return TEMPORARY_BLOCK_TITLE
    return None


def build_denial_message(account, now: datetime, policy: SecurityPolicy, admin=None) -> str:
    """
    Build the pipe-delimited denial message for an account.

    Args:
        account: Account that failed the login check
        now: Current naive UTC time
        policy: Security policy (threshold shown in the message)
        admin: Account referenced by account.blocked_by, if any
    """
    title = denial_title(account, now)
    if title is None:
        return DEACTIVATED_MESSAGE

    lines = [title]

    if account.locked_reason:
        lines.append(_reason_line(account.locked_reason))

    remaining = remaining_block_minutes(account.blocked_until, now)
    if remaining is not None:
        lines.append(f"Auto-unlock in: {format_duration(remaining)}")
        lines.append(f"Unlock time: {account.blocked_until.strftime('%d %b %Y, %H:%M')}")

    lines.append(f"Security Policy: Maximum {policy.max_failed_attempts} failed attempts allowed")

    if account.failed_login_attempts > 0:
        lines.append(f"Your failed attempts: {account.failed_login_attempts}")

    attribution = _attribution_line(account, admin)
    if attribution:
        lines.append(attribution)

    lines.append(ASSISTANCE_LINE)
    return " | ".join(lines)


def denial_error(account, now: datetime, policy: SecurityPolicy, admin=None) -> AccountNotEligibleError:
    """Structured LoginDenied error for an account."""
    blocked_by = None
    if account.locked_by == "system":
        blocked_by = "system"
    elif admin is not None:
        blocked_by = admin.display_name

    return AccountNotEligibleError(
        message=build_denial_message(account, now, policy, admin=admin),
        account_status=account.account_status.value,
        remaining_minutes=remaining_block_minutes(account.blocked_until, now),
        blocked_until=account.blocked_until.isoformat() if account.blocked_until else None,
        blocked_by=blocked_by,
    )
