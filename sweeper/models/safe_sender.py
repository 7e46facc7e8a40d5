"""
SafeSender model - addresses or wildcard patterns exempt from Super Actions.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from sweeper.core.database import Base


class SafeSender(Base):
    """
    Protected sender for a user.

    email_address holds one of:
    - exact address: 'boss@work.com'
    - domain wildcard: '*@work.com'
    - local-part wildcard: 'alerts@*'

    Always stored lower-cased.
    """

    __tablename__ = "safe_senders"
    __table_args__ = (
        UniqueConstraint("user_id", "email_address", name="uq_safe_senders_user_email"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    email_address = Column(String, nullable=False)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="safe_senders")

    def __repr__(self):
        return f"<SafeSender {self.email_address}>"
