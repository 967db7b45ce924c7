"""
Account enumerations.

Defines roles, account status lifecycle and audit result types
for the account security service.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.
    
    Roles:
        ADMIN: Manages accounts, can block/suspend/terminate other users
        USER: Regular finance-tracking user (default role)
    """
    ADMIN = "ADMIN"
    USER = "USER"


class AccountStatus(str, enum.Enum):
    """Account status enumeration. Exactly one applies at a time."""
    ACTIVE = "active"  # May log in (subject to is_active / is_locked / blocked_until)
    BLOCKED = "blocked"  # Failed-attempt lock or admin block, optionally timed
    SUSPENDED = "suspended"  # Admin only, lifted only by an explicit admin unblock
    TERMINATED = "terminated"  # Admin only, terminal by default


class PasswordChangedBy(str, enum.Enum):
    """Who last changed the password."""
    SYSTEM = "system"
    ADMIN = "admin"
    SELF = "self"


class ActionResult(str, enum.Enum):
    """Outcome recorded on each activity log entry."""
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


def enum_values(enum_cls):
    """values_callable for SQLAlchemy Enum columns storing the lowercase values."""
    return [member.value for member in enum_cls]
