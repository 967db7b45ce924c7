"""
User Activity Log Database Model.

Append-only audit trail of security-relevant events. Rows are never
updated or deleted, so there is no updated_at column.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum, ForeignKey, Index
from fintrack.app.core.clock import utcnow
from fintrack.app.db.session import Base
from fintrack.app.models.enums import ActionResult, enum_values


class UserActivityLog(Base):
    """
    Activity log entry.

    Events logged (open set):
    - login / logout / login_failed / login_denied
    - account_blocked / account_blocked_by_admin / account_suspended / account_terminated
    - account_unblocked / account_auto_unlocked / account_locked / account_unlocked
    - password_changed / user_created / user_deleted
    - login_attempt_unknown_identifier (user_id is NULL)
    """
    __tablename__ = "user_activity_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Subject account (None for attempts on unknown identifiers)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Activity
    activity_type = Column(String(100), nullable=False, index=True)
    activity_description = Column(Text, nullable=True)
    activity_data = Column(JSON, nullable=True)

    # Client context at time of event
    ip_address_private = Column(String(45), nullable=True)
    ip_address_public = Column(String(45), nullable=True, index=True)
    browser = Column(String(100), nullable=True)
    browser_version = Column(String(20), nullable=True)
    platform = Column(String(50), nullable=True)
    user_agent = Column(Text, nullable=True)
    session_id = Column(String(100), nullable=True, index=True)

    # Admin who acted on another account
    performed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action_result = Column(
        Enum(ActionResult, values_callable=enum_values, native_enum=False, length=10),
        default=ActionResult.SUCCESS,
        nullable=False,
        index=True
    )
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_user_activity_logs_user_type", "user_id", "activity_type"),
        Index("ix_user_activity_logs_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<UserActivityLog(id={self.id}, user_id={self.user_id}, type='{self.activity_type}', result='{self.action_result}')>"
