"""
GmailToken model - one row of OAuth tokens per user.

Created on the first OAuth exchange and overwritten on every refresh.
Only the token manager reads or writes this table.
"""

from datetime import datetime, timedelta
from sqlalchemy import Column, DateTime, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from sweeper.core.database import Base


class GmailToken(Base):
    """
    Stored Gmail OAuth tokens.

    CRITICAL SECURITY:
    - access_token and refresh_token are ALWAYS encrypted before storage
    - Tokens are NEVER logged
    """

    __tablename__ = "gmail_tokens"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)  # Google may omit it on re-consent
    expires_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="gmail_token")

    def __repr__(self):
        return f"<GmailToken user_id={self.user_id} expires_at={self.expires_at}>"

    def expires_within(self, seconds: int) -> bool:
        """Check if the access token expires within the given number of seconds."""
        return self.expires_at <= datetime.utcnow() + timedelta(seconds=seconds)
