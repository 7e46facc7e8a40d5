"""
ActionHistory model - one row per Super Action job.

Created with status 'processing' before any Gmail call, updated once on completion.
"""

import uuid
from datetime import datetime, timedelta
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, ARRAY
from sqlalchemy.dialects.postgresql import UUID, JSONB

from sweeper.core.config import settings
from sweeper.core.database import Base


STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_PARTIALLY_FAILED = "partially_failed"
STATUS_UNDONE = "undone"


class ActionHistory(Base):
    """
    Bulk job record.

    Job Types:
    - 'super_delete': messages moved to trash
    - 'super_archive': INBOX label removed
    """

    __tablename__ = "action_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    action_type = Column(String, nullable=False)  # 'super_delete' | 'super_archive'
    super_action = Column(String, nullable=True)  # e.g. 'delete_by_sender'
    affected_emails = Column(ARRAY(String), default=list, nullable=False)
    affected_count = Column(Integer, default=0, nullable=False)

    status = Column(String, default=STATUS_PROCESSING, nullable=False)
    error_details = Column(JSONB, nullable=True)  # {failed_count, failed_ids}

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    can_undo_until = Column(DateTime, nullable=True)
    undone_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<ActionHistory {self.action_type} {self.status} count={self.affected_count}>"

    @property
    def is_trash_job(self) -> bool:
        return self.action_type == "super_delete"

    @property
    def failed_ids(self) -> list:
        if not self.error_details:
            return []
        return list(self.error_details.get("failed_ids", []))

    @property
    def succeeded_ids(self) -> list:
        """Messages the job actually changed (affected minus failed)."""
        failed = set(self.failed_ids)
        return [email_id for email_id in (self.affected_emails or []) if email_id not in failed]

    @property
    def can_undo(self) -> bool:
        """Check if the job can still be undone (within the undo window)."""
        if self.status in (STATUS_PROCESSING, STATUS_UNDONE) or not self.can_undo_until:
            return False
        return datetime.utcnow() < self.can_undo_until

    @staticmethod
    def calculate_undo_deadline() -> datetime:
        """Calculate undo deadline (UNDO_WINDOW_DAYS from now)."""
        return datetime.utcnow() + timedelta(days=settings.UNDO_WINDOW_DAYS)
