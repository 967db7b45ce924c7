"""
Admin API Schema Definitions.

Pydantic schemas for admin endpoints.
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional
from fintrack.app.models.enums import AccountStatus


class BlockUserRequest(BaseModel):
    """Schema for blocking a user, optionally for a limited time."""
    reason: str = Field(..., min_length=1, description="Reason for blocking (shown to the user and logged)")
    duration_minutes: Optional[int] = Field(None, ge=1, description="Temporary block length; omit for an indefinite block")


class StatusChangeRequest(BaseModel):
    """Schema for suspending or terminating a user."""
    reason: str = Field(..., min_length=1, description="Reason for the status change")


class UnblockUserRequest(BaseModel):
    """Schema for unblocking a user."""
    reason: Optional[str] = Field(None, description="Reason for unblocking (for audit log)")


class LockUserRequest(BaseModel):
    """Schema for the manual lock switch."""
    reason: Optional[str] = Field(None, description="Reason for locking this account")


class ActivationRequest(BaseModel):
    """Schema for the is_active switch."""
    reason: Optional[str] = Field(None, description="Reason for the change (for audit log)")


class AccountSecurityState(BaseModel):
    """Security projection of an account."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: str
    username: str
    account_status: AccountStatus
    is_active: bool
    is_locked: bool
    failed_login_attempts: int
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    locked_reason: Optional[str] = None
    blocked_by: Optional[int] = None
    blocked_until: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class AdminActionResponse(BaseModel):
    """Schema for admin action response."""
    success: bool
    message: str
    user_id: int
    action: str
    account: AccountSecurityState
