"""
EmailHistory model - append-only log of actions taken on single messages.

CRITICAL: Rows are never updated or deleted by the application.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, JSONB

from sweeper.core.database import Base


EMAIL_ACTIONS = ("delete", "archive", "mark_read", "mark_unread", "apply_rule", "unsubscribe")
ACTION_TYPES = ("manual", "automated")


class EmailHistory(Base):
    """
    One row per affected message per action.

    Action Types:
    - 'manual': single-message action from the inbox view
    - 'automated': performed by a Super Action
    """

    __tablename__ = "email_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Gmail identifiers
    email_id = Column(String, nullable=False, index=True)
    thread_id = Column(String, nullable=True)

    action = Column(String, nullable=False)  # one of EMAIL_ACTIONS
    action_type = Column(String, nullable=False)  # one of ACTION_TYPES
    details = Column(JSONB, default=dict, nullable=False)  # {subject, from, snippet, super_action, ...}

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<EmailHistory {self.action} {self.email_id}>"
