"""
RateLimitWindow model - approximate per-minute Super Action counter.

Best-effort: no row locking, concurrent writers may under-count.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer
from sqlalchemy.dialects.postgresql import UUID

from sweeper.core.database import Base


class RateLimitWindow(Base):
    """One 60-second window of Gmail actions for a user."""

    __tablename__ = "rate_limit_tracking"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    action_type = Column(String, nullable=False)
    actions_count = Column(Integer, default=0, nullable=False)
    window_start = Column(DateTime, nullable=False)
    window_end = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<RateLimitWindow user_id={self.user_id} count={self.actions_count}>"
