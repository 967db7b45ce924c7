"""
Authentication Pydantic schemas.

Defines request and response schemas for authentication endpoints.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from typing import List, Optional
from fintrack.app.models.enums import UserRole, AccountStatus


class UserRegister(BaseModel):
    """
    Schema for user registration.
    
    Used by POST /auth/register endpoint.
    Self-registered accounts always get the USER role.
    """
    email: EmailStr = Field(..., description="User email address")
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9_.-]+$", description="Unique username")
    password: str = Field(..., min_length=8, max_length=128, description="Password (min 8 characters)")
    full_name: Optional[str] = Field(default=None, max_length=255, description="Display name")


class UserLogin(BaseModel):
    """
    Schema for user login.
    
    Used by POST /auth/login endpoint.
    Supports login with either username or email.
    """
    identifier: str = Field(..., min_length=1, max_length=255, description="Username or email")
    password: str = Field(..., min_length=1, max_length=255, description="Password")


class PasswordChangeRequest(BaseModel):
    """Schema for a self-service password change."""
    current_password: str = Field(..., description="Current password")
    new_password: str = Field(..., min_length=8, max_length=128, description="New password (min 8 characters)")


class ProfileUpdateRequest(BaseModel):
    """Schema for a self-service profile update. Omitted fields are left unchanged."""
    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = Field(default=None, max_length=255, description="Display name")
    email: Optional[EmailStr] = Field(default=None, description="New email address")
    position: Optional[str] = Field(default=None, max_length=100, description="Job title shown in admin attributions")


class TokenResponse(BaseModel):
    """
    Schema for JWT token response.
    
    Returned by successful login/register operations.
    """
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    user_id: int = Field(..., description="User ID")
    uuid: str = Field(..., description="Public user identifier")
    username: str = Field(..., description="Username")
    email: str = Field(..., description="Email address")
    role: UserRole = Field(..., description="User role")
    first_login: bool = Field(default=False, description="True on the account's first ever login")
    needs_password_change: bool = Field(default=False, description="Password older than the expiry policy (advisory)")
    risk_level: str = Field(default="none", description="Anomaly risk level of this login")
    anomaly_flags: List[str] = Field(default_factory=list, description="Anomaly flags raised on this login")


class UserResponse(BaseModel):
    """
    Schema for user information response.
    
    Used by GET /auth/me endpoint.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: str
    email: str
    username: str
    full_name: Optional[str] = None
    position: Optional[str] = None
    role: UserRole
    account_status: AccountStatus
    is_active: bool
    is_locked: bool
    first_login_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    total_login_count: int
    password_changed_at: Optional[datetime] = None
    needs_password_change: bool = False
    created_at: datetime


class MessageResponse(BaseModel):
    """Generic acknowledgement."""
    success: bool = True
    message: str
