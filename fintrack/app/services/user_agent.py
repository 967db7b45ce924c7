"""
User agent resolution.

Turns an incoming request into a ClientContext: peer and forwarded IP
addresses plus browser, version and platform parsed from the
User-Agent header with the `user_agents` library.
"""

import ipaddress
import logging
from typing import Optional
from starlette.requests import Request
from user_agents import parse

from fintrack.app.schemas.client_context import ClientContext

logger = logging.getLogger("fintrack.security")

# Checked in order; the first public address wins
FORWARDED_IP_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "cf-connecting-ip",
    "x-client-ip",
    "x-cluster-client-ip",
    "forwarded-for",
)

DEVICE_MOBILE = "mobile"
DEVICE_TABLET = "tablet"
DEVICE_DESKTOP = "desktop"


def _is_public_ip(value: str) -> bool:
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return address.is_global


def resolve_public_ip(request: Request) -> Optional[str]:
    """
    Best public address for the client.

    Falls back to the direct peer address when no proxy header carries
    a public IP.
    """
    for header in FORWARDED_IP_HEADERS:
        raw = request.headers.get(header)
        if not raw:
            continue
        for candidate in raw.split(","):
            candidate = candidate.strip()
            if _is_public_ip(candidate):
                return candidate

    return request.client.host if request.client else None


def classify_device_type(user_agent: Optional[str]) -> str:
    """Classify a raw user agent as mobile, tablet or desktop."""
    if not user_agent:
        return DEVICE_DESKTOP
    parsed = parse(user_agent)
    if parsed.is_tablet:
        return DEVICE_TABLET
    if parsed.is_mobile:
        return DEVICE_MOBILE
    return DEVICE_DESKTOP


def context_from_user_agent(
    user_agent: Optional[str],
    ip_private: Optional[str] = None,
    ip_public: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ClientContext:
    """Build a ClientContext from a raw user agent string and addresses."""
    browser = browser_version = platform = None
    if user_agent:
        parsed = parse(user_agent)
        browser = parsed.browser.family
        browser_version = parsed.browser.version_string or None
        platform = parsed.os.family

    return ClientContext(
        ip_private=ip_private,
        ip_public=ip_public or ip_private,
        browser=browser,
        browser_version=browser_version[:20] if browser_version else None,
        platform=platform,
        user_agent=user_agent,
        request_id=request_id,
    )


def resolve_client_context(request: Request) -> ClientContext:
    """
    FastAPI dependency producing the ClientContext for the current request.

    Parsing problems degrade to a context with only the addresses filled
    in; they never fail the request.
    """
    user_agent = request.headers.get("user-agent")
    ip_private = request.client.host if request.client else None
    request_id = getattr(request.state, "correlation_id", None)

    try:
        return context_from_user_agent(
            user_agent,
            ip_private=ip_private,
            ip_public=resolve_public_ip(request),
            request_id=request_id,
        )
    except Exception as e:
        logger.warning("Client context resolution failed: %s", e)
        return ClientContext(
            ip_private=ip_private,
            ip_public=ip_private,
            user_agent=user_agent,
            request_id=request_id,
        )
