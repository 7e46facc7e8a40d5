"""
UserSettings model - per-user Super Actions policy.
"""

from typing import Optional
from sqlalchemy import Column, Boolean, ForeignKey, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from sweeper.core.database import Base


# Training mode loosens as completed Super Actions accumulate
TRAINING_DEFAULT_DAYS = 30
TRAINING_EXTENDED_DAYS = 90
TRAINING_EXTENDED_AFTER = 5
TRAINING_GRADUATES_AFTER = 10


class UserSettings(Base):
    """
    Super Actions gate and training mode state.

    Defaults are conservative: safe senders required, training mode on,
    bulk actions limited to mail from the last 30 days.
    """

    __tablename__ = "user_settings"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    safe_senders_required = Column(Boolean, default=True, nullable=False)

    # Training mode
    training_mode_active = Column(Boolean, default=True, nullable=False)
    successful_actions_count = Column(Integer, default=0, nullable=False)
    days_limit = Column(Integer, default=TRAINING_DEFAULT_DAYS, nullable=True)  # NULL = unlimited

    # Relationships
    user = relationship("User", back_populates="settings")

    def __repr__(self):
        return f"<UserSettings user_id={self.user_id}>"

    @property
    def training_window_days(self) -> Optional[int]:
        """How far back (in days) a Super Action may reach, or None if unrestricted."""
        if not self.training_mode_active:
            return None
        return self.days_limit

    def record_successful_action(self) -> None:
        """Count a completed Super Action and loosen the training window."""
        self.successful_actions_count = (self.successful_actions_count or 0) + 1

        if self.successful_actions_count >= TRAINING_GRADUATES_AFTER:
            self.days_limit = None
            self.training_mode_active = False
        elif self.successful_actions_count >= TRAINING_EXTENDED_AFTER:
            self.days_limit = TRAINING_EXTENDED_DAYS
        else:
            self.days_limit = TRAINING_DEFAULT_DAYS
