"""
User database model.

This module defines the User SQLAlchemy model: identity, credentials,
account status and the security bookkeeping (failed attempts, lock
metadata, login history and current session snapshot).
"""

import uuid
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Enum, ForeignKey
from fintrack.app.core.clock import utcnow
from fintrack.app.db.session import Base
from fintrack.app.models.enums import UserRole, AccountStatus, PasswordChangedBy, enum_values


def _new_uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    User model for authentication and account security.

    Status flags:
        account_status: lifecycle state (active/blocked/suspended/terminated)
        is_active: admin on/off switch, independent of account_status
        is_locked: manual lock switch, independent of account_status

    Login is permitted only when is_active, not is_locked, account_status is
    active and blocked_until is not in the future.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    uuid = Column(String(36), unique=True, index=True, nullable=False, default=_new_uuid)

    # Identity
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    position = Column(String(100), nullable=True)
    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)

    # Credentials
    hashed_password = Column(String(255), nullable=False)
    password_changed_at = Column(DateTime, nullable=True)
    password_changed_by = Column(
        Enum(PasswordChangedBy, values_callable=enum_values, native_enum=False, length=20),
        nullable=True
    )
    password_change_count = Column(Integer, default=0, nullable=False)

    # Account status
    account_status = Column(
        Enum(AccountStatus, values_callable=enum_values, native_enum=False, length=20),
        default=AccountStatus.ACTIVE,
        nullable=False,
        index=True
    )
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_locked = Column(Boolean, default=False, nullable=False, index=True)

    # Failure tracking and lock metadata
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    last_failed_login_at = Column(DateTime, nullable=True)
    locked_at = Column(DateTime, nullable=True, index=True)
    locked_by = Column(String(50), nullable=True)  # "system" or admin id
    locked_reason = Column(Text, nullable=True)
    blocked_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    blocked_until = Column(DateTime, nullable=True, index=True)

    # Login history
    first_login_at = Column(DateTime, nullable=True, index=True)
    last_login_at = Column(DateTime, nullable=True, index=True)
    last_login_ip_private = Column(String(45), nullable=True)
    last_login_ip_public = Column(String(45), nullable=True)
    last_login_browser = Column(String(100), nullable=True)
    last_login_browser_version = Column(String(20), nullable=True)
    last_login_platform = Column(String(50), nullable=True)
    last_login_user_agent = Column(Text, nullable=True)
    total_login_count = Column(Integer, default=0, nullable=False)

    # Current session snapshot (refreshed on every authenticated request)
    current_ip_private = Column(String(45), nullable=True)
    current_ip_public = Column(String(45), nullable=True)
    current_browser = Column(String(100), nullable=True)
    current_browser_version = Column(String(20), nullable=True)
    current_platform = Column(String(50), nullable=True)
    current_user_agent = Column(Text, nullable=True)

    # Naive UTC from the app clock, compared against utcnow() in the services
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    # Soft delete only, activity logs keep referencing the row
    deleted_at = Column(DateTime, nullable=True, index=True)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or self.email

    def __repr__(self):
        return (
            f"<User(id={self.id}, username='{self.username}', "
            f"status='{self.account_status.value if self.account_status else None}')>"
        )
