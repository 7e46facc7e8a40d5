"""
History recorder - email_history log and action_history job rows.

History is best-effort: a failed write is logged and swallowed, never
failing the Gmail action it describes. email_history is append-only.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sweeper.core.exceptions import InvalidAction, NotFound
from sweeper.models.action_history import (
    ActionHistory,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_PARTIALLY_FAILED,
    STATUS_UNDONE,
)
from sweeper.models.email_history import EmailHistory, EMAIL_ACTIONS, ACTION_TYPES

logger = logging.getLogger(__name__)


@dataclass
class HistoryEntry:
    email_id: str
    action: str  # one of EMAIL_ACTIONS
    action_type: str = "manual"  # one of ACTION_TYPES
    thread_id: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.action not in EMAIL_ACTIONS:
            raise InvalidAction(f"Unknown history action: {self.action}")
        if self.action_type not in ACTION_TYPES:
            raise InvalidAction(f"Unknown history action type: {self.action_type}")


class HistoryRecorder:
    """
    Usage:
        recorder = HistoryRecorder(db, user.id)
        await recorder.track_action(HistoryEntry(email_id="abc", action="archive"))
    """

    def __init__(self, db: AsyncSession, user_id: UUID):
        self.db = db
        self.user_id = user_id

    def _to_row(self, entry: HistoryEntry) -> EmailHistory:
        return EmailHistory(
            user_id=self.user_id,
            email_id=entry.email_id,
            thread_id=entry.thread_id,
            action=entry.action,
            action_type=entry.action_type,
            details=entry.details or {},
        )

    async def track_action(self, entry: HistoryEntry) -> bool:
        """Append one history row. Returns False if the write failed."""
        return await self.track_bulk_actions([entry]) == 1

    async def track_bulk_actions(self, entries: Sequence[HistoryEntry]) -> int:
        """Append history rows in one commit. Returns the number written (0 on failure)."""
        if not entries:
            return 0

        try:
            self.db.add_all([self._to_row(entry) for entry in entries])
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Failed to record {len(entries)} history entries for user {self.user_id}: {e}",
                extra={"user_id": str(self.user_id), "count": len(entries)}
            )
            return 0

        return len(entries)

    async def get_history(self, limit: int = 100) -> List[EmailHistory]:
        """Most recent history rows, newest first."""
        result = await self.db.execute(
            select(EmailHistory)
            .where(EmailHistory.user_id == self.user_id)
            .order_by(EmailHistory.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def start_job(
        self,
        action_type: str,
        super_action: str,
        affected_ids: Sequence[str],
    ) -> Optional[UUID]:
        """
        Create the action_history row with status 'processing'.

        Returns the job id, or None if the write failed; the job continues untracked.
        """
        job_id = uuid4()
        job = ActionHistory(
            id=job_id,
            user_id=self.user_id,
            action_type=action_type,
            super_action=super_action,
            affected_emails=list(affected_ids),
            affected_count=len(affected_ids),
            status=STATUS_PROCESSING,
            can_undo_until=ActionHistory.calculate_undo_deadline(),
        )

        try:
            self.db.add(job)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Failed to create action_history row for user {self.user_id}: {e}",
                extra={"user_id": str(self.user_id), "super_action": super_action}
            )
            return None

        return job_id

    async def _update_job(self, job_id: UUID, **values) -> None:
        # Update by id; loaded rows may have been expired by an earlier rollback
        await self.db.execute(
            update(ActionHistory)
            .where(ActionHistory.id == job_id, ActionHistory.user_id == self.user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def finish_job(self, job_id: Optional[UUID], failed_ids: Sequence[str]) -> None:
        """Mark the job completed or partially_failed (best-effort)."""
        if job_id is None:
            return

        try:
            await self._update_job(
                job_id,
                status=STATUS_PARTIALLY_FAILED if failed_ids else STATUS_COMPLETED,
                completed_at=datetime.utcnow(),
                error_details=(
                    {"failed_count": len(failed_ids), "failed_ids": list(failed_ids)}
                    if failed_ids else None
                ),
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Failed to update action_history {job_id}: {e}",
                extra={"user_id": str(self.user_id), "job_id": str(job_id)}
            )

    async def get_job(self, job_id: UUID) -> ActionHistory:
        """
        Raises:
            NotFound: No such job for this user
        """
        result = await self.db.execute(
            select(ActionHistory).where(
                ActionHistory.id == job_id,
                ActionHistory.user_id == self.user_id,
            )
        )
        job = result.scalar_one_or_none()
        if not job:
            raise NotFound("Super Action not found")
        return job

    async def list_jobs(self, limit: int = 20) -> List[ActionHistory]:
        result = await self.db.execute(
            select(ActionHistory)
            .where(ActionHistory.user_id == self.user_id)
            .order_by(ActionHistory.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_undone(self, job_id: UUID) -> None:
        await self._update_job(job_id, status=STATUS_UNDONE, undone_at=datetime.utcnow())
