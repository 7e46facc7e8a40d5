"""Request/response models for the Super Actions API (camelCase on the wire)."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from sweeper.modules.gmail.schemas import EmailItem


class SuperActionRequest(BaseModel):
    """Body for POST /super-actions and POST /super-actions/preview."""

    model_config = ConfigDict(populate_by_name=True)

    action: str
    selected_email_ids: List[str] = Field(default_factory=list, alias="selectedEmailIds")
    days: Optional[int] = None
    all_emails: List[EmailItem] = Field(default_factory=list, alias="allEmails")


class SuperActionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    processed_count: Optional[int] = Field(default=None, alias="processedCount")
    failed_count: Optional[int] = Field(default=None, alias="failedCount")
    message: Optional[str] = None
    error: Optional[str] = None
    job_id: Optional[UUID] = Field(default=None, alias="jobId")


class PreviewResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    estimated_affected: int = Field(alias="estimatedAffected")
    senders: List[str]
    requires_typed_confirmation: bool = Field(alias="requiresTypedConfirmation")
    confirm_word: str = Field(alias="confirmWord")
    warning_level: str = Field(alias="warningLevel")


class JobSummary(BaseModel):
    """One action_history row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action_type: str
    super_action: Optional[str] = None
    affected_count: int
    status: str
    created_at: datetime
    completed_at: Optional[datetime] = None
    can_undo_until: Optional[datetime] = None
    undone_at: Optional[datetime] = None


class SuperActionStatus(BaseModel):
    """Response for GET /super-actions/status."""

    unlocked: bool
    safe_senders_count: int
    safe_senders_required: int
    training_mode_active: bool
    days_limit: Optional[int] = None
    successful_actions_count: int
    recent_jobs: List[JobSummary] = Field(default_factory=list)
