"""
Client context schema.

The resolved browser/platform/IP descriptor for one request. The
security core treats it as opaque input; parsing lives in
services/user_agent.py.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class ClientContext(BaseModel):
    """Immutable per-request client descriptor."""
    model_config = ConfigDict(frozen=True)

    ip_private: Optional[str] = Field(default=None, description="Direct peer address")
    ip_public: Optional[str] = Field(default=None, description="Client address as seen through proxies")
    browser: Optional[str] = Field(default=None, description="Browser family")
    browser_version: Optional[str] = Field(default=None, description="Browser version string")
    platform: Optional[str] = Field(default=None, description="Operating system family")
    user_agent: Optional[str] = Field(default=None, description="Raw User-Agent header")
    request_id: Optional[str] = Field(default=None, description="Correlation id of the logical request")

    @property
    def client_ip(self) -> Optional[str]:
        return self.ip_public or self.ip_private

    def audit_fields(self) -> dict:
        """Columns denormalised onto each activity log entry."""
        return {
            "ip_address_private": self.ip_private,
            "ip_address_public": self.ip_public,
            "browser": self.browser,
            "browser_version": self.browser_version,
            "platform": self.platform,
            "user_agent": self.user_agent,
            "session_id": self.request_id,
        }
