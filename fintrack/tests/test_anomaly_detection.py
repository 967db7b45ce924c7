"""
Tests for login anomaly detection.
"""

import pytest
from datetime import datetime, timedelta

from fintrack.app.core.config import SecurityPolicy
from fintrack.app.models.user import User
from fintrack.app.schemas.client_context import ClientContext
from fintrack.app.services.anomaly_detection import (
    AnomalyFlag,
    RiskLevel,
    classify_risk,
    detect_anomalies,
    is_significant_ip_change,
    local_hour,
)
from fintrack.tests.helpers import CHROME_WINDOWS_UA, FIREFOX_LINUX_UA, SAFARI_IPHONE_UA

NOW = datetime(2026, 3, 10, 14, 0, 0)
POLICY = SecurityPolicy()


def known_account(**overrides) -> User:
    values = dict(
        username="alice",
        email="alice@example.com",
        failed_login_attempts=0,
        last_failed_login_at=None,
        last_login_at=NOW - timedelta(days=1),
        last_login_ip_public="203.0.113.10",
        last_login_browser="Chrome",
        last_login_platform="Windows",
        last_login_user_agent=CHROME_WINDOWS_UA,
    )
    values.update(overrides)
    return User(**values)


def context(**overrides) -> ClientContext:
    values = dict(
        ip_public="203.0.113.99",
        browser="Chrome",
        platform="Windows",
        user_agent=CHROME_WINDOWS_UA,
    )
    values.update(overrides)
    return ClientContext(**values)


def test_same_context_has_no_anomalies():
    report = detect_anomalies(known_account(), context(), NOW, POLICY)

    assert report.flags == ()
    assert report.risk_level == RiskLevel.NONE
    assert report.detected is False


def test_never_logged_in_account_is_never_flagged():
    account = known_account(last_login_at=None)

    report = detect_anomalies(
        account,
        context(ip_public="198.51.100.1", browser="Firefox", platform="Linux", user_agent=FIREFOX_LINUX_UA),
        NOW.replace(hour=3),
        POLICY,
    )

    assert report.flags == ()


def test_browser_and_platform_change():
    report = detect_anomalies(
        known_account(),
        context(browser="Firefox", platform="Linux", user_agent=FIREFOX_LINUX_UA),
        NOW,
        POLICY,
    )

    assert AnomalyFlag.BROWSER_CHANGE in report.flags
    assert AnomalyFlag.PLATFORM_CHANGE in report.flags
    assert AnomalyFlag.DEVICE_TYPE_CHANGE not in report.flags
    assert report.risk_level == RiskLevel.MEDIUM


def test_device_type_change_desktop_to_mobile():
    report = detect_anomalies(known_account(), context(user_agent=SAFARI_IPHONE_UA), NOW, POLICY)

    assert report.flags == (AnomalyFlag.DEVICE_TYPE_CHANGE,)
    assert report.risk_level == RiskLevel.LOW


def test_significant_ip_change():
    report = detect_anomalies(known_account(), context(ip_public="198.51.100.10"), NOW, POLICY)

    assert report.flags == (AnomalyFlag.IP_CHANGE_SIGNIFICANT,)


@pytest.mark.parametrize("previous, current, expected", [
    ("203.0.113.10", "203.0.200.1", False),
    ("203.0.113.10", "203.1.113.10", True),
    ("203.0.113.10", None, False),
    (None, "203.0.113.10", False),
    ("not-an-ip", "203.0.113.10", False),
    ("2001:db8:1::1", "2001:db8:ffff::2", False),
    ("2001:db8::1", "2001:db9::1", True),
])
def test_ip_change_compares_network_prefix(previous, current, expected):
    assert is_significant_ip_change(previous, current) is expected


def test_rapid_attempt_after_recent_failure_is_high_risk():
    account = known_account(failed_login_attempts=1, last_failed_login_at=NOW - timedelta(seconds=2))

    report = detect_anomalies(account, context(), NOW, POLICY)

    assert report.flags == (AnomalyFlag.RAPID_ATTEMPTS_AUTOMATED,)
    assert report.risk_level == RiskLevel.HIGH


def test_slow_retry_is_not_rapid():
    account = known_account(failed_login_attempts=1, last_failed_login_at=NOW - timedelta(seconds=30))

    assert detect_anomalies(account, context(), NOW, POLICY).flags == ()


def test_unusual_hour_only_when_history_is_daytime():
    night = NOW.replace(hour=3)

    daytime_user = detect_anomalies(known_account(last_login_at=NOW - timedelta(days=1)), context(), night, POLICY)
    night_owl = detect_anomalies(known_account(last_login_at=night - timedelta(days=1)), context(), night, POLICY)

    assert daytime_user.flags == (AnomalyFlag.UNUSUAL_HOUR_PATTERN,)
    assert daytime_user.risk_level == RiskLevel.HIGH
    assert night_owl.flags == ()


def test_unusual_hour_uses_policy_timezone():
    # 20:00 UTC is 03:00 in Jakarta
    jakarta = SecurityPolicy(timezone="Asia/Jakarta")
    evening_utc = NOW.replace(hour=20)

    assert local_hour(evening_utc, "Asia/Jakarta") == 3
    report = detect_anomalies(known_account(), context(), evening_utc, jakarta)
    assert AnomalyFlag.UNUSUAL_HOUR_PATTERN in report.flags


@pytest.mark.parametrize("flags, expected", [
    ([], RiskLevel.NONE),
    ([AnomalyFlag.BROWSER_CHANGE], RiskLevel.LOW),
    ([AnomalyFlag.BROWSER_CHANGE, AnomalyFlag.PLATFORM_CHANGE], RiskLevel.MEDIUM),
    ([AnomalyFlag.BROWSER_CHANGE, AnomalyFlag.PLATFORM_CHANGE, AnomalyFlag.IP_CHANGE_SIGNIFICANT], RiskLevel.HIGH),
    ([AnomalyFlag.UNUSUAL_HOUR_PATTERN], RiskLevel.HIGH),
    ([AnomalyFlag.RAPID_ATTEMPTS_AUTOMATED, AnomalyFlag.BROWSER_CHANGE], RiskLevel.HIGH),
])
def test_classify_risk(flags, expected):
    assert classify_risk(flags) == expected


def test_summary_lists_flags_and_risk():
    report = detect_anomalies(
        known_account(),
        context(browser="Firefox", platform="Linux", user_agent=FIREFOX_LINUX_UA),
        NOW,
        POLICY,
    )

    assert report.summary() == "browser_change, platform_change (risk: medium)"
    assert report.as_audit_data() == {
        "anomaly_flags": ["browser_change", "platform_change"],
        "risk_level": "medium",
    }
