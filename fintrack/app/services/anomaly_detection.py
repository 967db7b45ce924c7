"""
Login anomaly detection.

Compares the current client context and time against the account's
last known login and returns the heuristic flags that fired. The
result never blocks a login by itself: it doubles the block duration
when an account gets locked and is written to the activity log.
"""

import ipaddress
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo
from pydantic import BaseModel, ConfigDict

from fintrack.app.core.config import SecurityPolicy
from fintrack.app.schemas.client_context import ClientContext
from fintrack.app.services.user_agent import classify_device_type


class AnomalyFlag:
    """Anomaly flag names."""
    IP_CHANGE_SIGNIFICANT = "ip_change_significant"
    BROWSER_CHANGE = "browser_change"
    PLATFORM_CHANGE = "platform_change"
    DEVICE_TYPE_CHANGE = "device_type_change"
    RAPID_ATTEMPTS_AUTOMATED = "rapid_attempts_automated"
    UNUSUAL_HOUR_PATTERN = "unusual_hour_pattern"


class RiskLevel:
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Any one of these alone means high risk
HIGH_RISK_FLAGS = frozenset({
    AnomalyFlag.RAPID_ATTEMPTS_AUTOMATED,
    AnomalyFlag.UNUSUAL_HOUR_PATTERN,
})


class AnomalyReport(BaseModel):
    """Flags raised for one login attempt plus the derived risk level."""
    model_config = ConfigDict(frozen=True)

    flags: Tuple[str, ...] = ()
    risk_level: str = RiskLevel.NONE

    @property
    def detected(self) -> bool:
        return bool(self.flags)

    def summary(self) -> str:
        if not self.flags:
            return "no anomalies"
        return f"{', '.join(self.flags)} (risk: {self.risk_level})"

    def as_audit_data(self) -> dict:
        return {"anomaly_flags": list(self.flags), "risk_level": self.risk_level}


EMPTY_REPORT = AnomalyReport()


def classify_risk(flags) -> str:
    """
    Risk level for a set of flags.

    high: 3+ flags, or any rapid-attempt / unusual-hour flag
    medium: exactly 2 flags
    low: exactly 1 flag
    none: no flags
    """
    flags = set(flags)
    if len(flags) >= 3 or flags & HIGH_RISK_FLAGS:
        return RiskLevel.HIGH
    if len(flags) == 2:
        return RiskLevel.MEDIUM
    if len(flags) == 1:
        return RiskLevel.LOW
    return RiskLevel.NONE


def _network_prefix(ip: Optional[str]) -> Optional[Tuple[str, ...]]:
    """First two octets (IPv4) or hextets (IPv6) of an address."""
    if not ip:
        return None
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    if address.version == 4:
        return tuple(str(address).split(".")[:2])
    return tuple(address.exploded.split(":")[:2])


def is_significant_ip_change(previous_ip: Optional[str], current_ip: Optional[str]) -> bool:
    previous, current = _network_prefix(previous_ip), _network_prefix(current_ip)
    if previous is None or current is None:
        return False
    return previous != current


def local_hour(moment: datetime, tz_name: str) -> int:
    """Hour of a naive UTC datetime in the given timezone."""
    aware = moment.replace(tzinfo=timezone.utc)
    if tz_name.upper() == "UTC":
        return aware.hour
    return aware.astimezone(ZoneInfo(tz_name)).hour


def detect_anomalies(
    account,
    client_context: ClientContext,
    now: datetime,
    policy: SecurityPolicy,
) -> AnomalyReport:
    """
    Evaluate the anomaly heuristics for a login attempt.

    Args:
        account: User whose last-known login context is compared against
        client_context: Context of the current attempt
        now: Current naive UTC time
        policy: Security policy (rapid-attempt window, night hours, timezone)

    Returns:
        AnomalyReport; empty when the account has never logged in
    """
    if account.last_login_at is None:
        return EMPTY_REPORT

    flags = []

    if is_significant_ip_change(account.last_login_ip_public, client_context.ip_public):
        flags.append(AnomalyFlag.IP_CHANGE_SIGNIFICANT)

    if account.last_login_browser and client_context.browser != account.last_login_browser:
        flags.append(AnomalyFlag.BROWSER_CHANGE)

    if account.last_login_platform and client_context.platform != account.last_login_platform:
        flags.append(AnomalyFlag.PLATFORM_CHANGE)

    if account.last_login_user_agent and client_context.user_agent is not None:
        if classify_device_type(client_context.user_agent) != classify_device_type(account.last_login_user_agent):
            flags.append(AnomalyFlag.DEVICE_TYPE_CHANGE)

    if account.failed_login_attempts > 0 and account.last_failed_login_at is not None:
        elapsed = now - account.last_failed_login_at
        if timedelta(0) <= elapsed < timedelta(seconds=policy.rapid_attempt_seconds):
            flags.append(AnomalyFlag.RAPID_ATTEMPTS_AUTOMATED)

    night = range(policy.unusual_hour_start, policy.unusual_hour_end + 1)
    if local_hour(now, policy.timezone) in night and local_hour(account.last_login_at, policy.timezone) not in night:
        flags.append(AnomalyFlag.UNUSUAL_HOUR_PATTERN)

    return AnomalyReport(flags=tuple(flags), risk_level=classify_risk(flags))
