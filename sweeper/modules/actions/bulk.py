"""
Super Actions - bulk delete/archive by sender or by age.

Execution order (nothing touches Gmail until the policy checks pass):
1. Safe sender gate (at least MIN_SAFE_SENDERS entries)
2. Resolve the affected set, minus safe senders and the training window
3. Empty set -> zero-effect success
4. action_history row ('processing')
5. Batched trash / archive calls through GmailRateLimiter
6. Job status + one automated email_history row per changed message

CRITICAL SAFETY:
- Delete means trash (recoverable for 30 days), never permanent delete
- Partial failure is a normal outcome, never an exception
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sweeper.core.config import settings
from sweeper.core.exceptions import InvalidAction, InsufficientSafeSenders, Conflict
from sweeper.models.action_history import STATUS_PROCESSING, STATUS_UNDONE
from sweeper.models.user_settings import UserSettings, TRAINING_DEFAULT_DAYS
from sweeper.modules.actions.rate_limiter import GmailRateLimiter
from sweeper.modules.gmail.client import GmailClient
from sweeper.modules.gmail.schemas import EmailItem
from sweeper.modules.gmail.token_manager import TokenManager
from sweeper.modules.history.recorder import HistoryRecorder, HistoryEntry
from sweeper.modules.safety.safe_senders import extract_address, is_safe, get_patterns

logger = logging.getLogger(__name__)


# Typed confirmation kicks in above this many messages
TYPED_CONFIRMATION_THRESHOLD = 50

EMPTY_RESULT_MESSAGE = "No emails to process (all senders might be in your safe list)"


class SuperAction(str, Enum):
    DELETE_BY_SENDER = "delete_by_sender"
    ARCHIVE_BY_SENDER = "archive_by_sender"
    DELETE_OLD = "delete_old"
    ARCHIVE_OLD = "archive_old"
    UNSUBSCRIBE_AND_DELETE = "unsubscribe_and_delete"

    @property
    def is_delete(self) -> bool:
        return self in (
            SuperAction.DELETE_BY_SENDER,
            SuperAction.DELETE_OLD,
            SuperAction.UNSUBSCRIBE_AND_DELETE,
        )

    @property
    def by_sender(self) -> bool:
        return self not in (SuperAction.DELETE_OLD, SuperAction.ARCHIVE_OLD)

    @property
    def job_type(self) -> str:
        return "super_delete" if self.is_delete else "super_archive"

    @property
    def history_action(self) -> str:
        return "delete" if self.is_delete else "archive"


def parse_action(value: str) -> SuperAction:
    try:
        return SuperAction(value)
    except ValueError:
        raise InvalidAction("Invalid action type")


@dataclass
class AffectedSet:
    items: List[EmailItem] = field(default_factory=list)
    senders: List[str] = field(default_factory=list)  # Bare addresses, excluding safe senders

    @property
    def ids(self) -> List[str]:
        return [item.id for item in self.items]


@dataclass
class BulkActionResult:
    processed_count: int
    failed_count: int
    message: str
    job_id: Optional[UUID] = None
    failed_ids: List[str] = field(default_factory=list)


@dataclass
class PreviewResult:
    estimated_affected: int
    senders: List[str]
    requires_typed_confirmation: bool
    confirm_word: str
    warning_level: str


def warning_level(count: int) -> str:
    if count > 500:
        return "extreme"
    if count > 100:
        return "high"
    if count > 20:
        return "moderate"
    return "low"


def compute_affected_set(
    action: SuperAction,
    selection_ids: Iterable[str],
    all_items: Sequence[EmailItem],
    safe_patterns: Sequence[str],
    days: Optional[int] = None,
    training_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> AffectedSet:
    """
    Resolve which known messages an action would touch.

    Pure function of its inputs: same items, same clock, same result.
    Senders are compared as bare lower-cased addresses. Messages with no
    known date are never treated as old and are skipped by the training window.

    Raises:
        InvalidAction: days missing or not a positive integer for *_old actions
    """
    now = now or datetime.utcnow()
    selected = set(selection_ids or [])

    # Dedupe by id, keep listing order
    seen = set()
    items = []
    for item in all_items:
        if item.id not in seen:
            seen.add(item.id)
            items.append(item)

    if action.by_sender:
        selected_senders = {
            extract_address(item.from_) for item in items if item.id in selected
        }
        selected_senders.discard("")
        senders = sorted(s for s in selected_senders if not is_safe(s, safe_patterns))
        sender_set = set(senders)
        candidates = [item for item in items if extract_address(item.from_) in sender_set]
    else:
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise InvalidAction("days must be a positive number of days")
        cutoff = now - timedelta(days=days)
        candidates = [
            item for item in items
            if item.date is not None and item.date < cutoff
            and not is_safe(extract_address(item.from_), safe_patterns)
        ]
        senders = sorted({extract_address(item.from_) for item in candidates} - {""})

    if training_days:
        training_cutoff = now - timedelta(days=training_days)
        candidates = [
            item for item in candidates
            if item.date is not None and item.date >= training_cutoff
        ]

    return AffectedSet(items=candidates, senders=senders)


async def get_user_settings(db: AsyncSession, user_id: UUID) -> UserSettings:
    """Load the user's Super Actions settings, creating the defaults on first use."""
    user_settings = await db.get(UserSettings, user_id)
    if user_settings:
        return user_settings

    user_settings = UserSettings(
        user_id=user_id,
        safe_senders_required=True,
        training_mode_active=True,
        successful_actions_count=0,
        days_limit=TRAINING_DEFAULT_DAYS,
    )
    db.add(user_settings)
    await db.commit()
    return user_settings


class BulkActionExecutor:
    """
    Runs Super Actions for one user.

    Usage:
        executor = BulkActionExecutor(db, user.id, token_manager)
        result = await executor.execute("delete_by_sender", ["id1"], emails)
    """

    def __init__(
        self,
        db: AsyncSession,
        user_id: UUID,
        token_manager: TokenManager,
        client_factory: Callable[[str], GmailClient] = GmailClient,
        recorder: Optional[HistoryRecorder] = None,
        limiter_factory: Callable[..., GmailRateLimiter] = GmailRateLimiter,
    ):
        self.db = db
        self.user_id = user_id
        self.token_manager = token_manager
        self.client_factory = client_factory
        self.recorder = recorder or HistoryRecorder(db, user_id)
        self.limiter_factory = limiter_factory

    async def _check_policy(self) -> tuple:
        """
        Enforce the safe sender gate.

        Returns:
            Tuple of (user settings, safe sender patterns)
        """
        user_settings = await get_user_settings(self.db, self.user_id)
        patterns = await get_patterns(self.db, self.user_id)

        if user_settings.safe_senders_required and len(patterns) < settings.MIN_SAFE_SENDERS:
            logger.info(
                f"Super Action blocked for user {self.user_id}: {len(patterns)} safe senders",
                extra={"user_id": str(self.user_id), "safe_senders": len(patterns)}
            )
            raise InsufficientSafeSenders(len(patterns), settings.MIN_SAFE_SENDERS)

        return user_settings, patterns

    async def _resolve(
        self,
        action: SuperAction,
        selection_ids: Iterable[str],
        all_items: Sequence[EmailItem],
        days: Optional[int],
    ) -> tuple:
        user_settings, patterns = await self._check_policy()
        affected = compute_affected_set(
            action,
            selection_ids,
            all_items,
            patterns,
            days=days,
            training_days=user_settings.training_window_days,
        )
        return user_settings, affected

    async def preview(
        self,
        action: str,
        selection_ids: Iterable[str],
        all_items: Sequence[EmailItem],
        days: Optional[int] = None,
    ) -> PreviewResult:
        """Compute what execute() would touch. No Gmail calls, no writes beyond default settings."""
        super_action = parse_action(action)
        _, affected = await self._resolve(super_action, selection_ids, all_items, days)

        count = len(affected.items)
        return PreviewResult(
            estimated_affected=count,
            senders=affected.senders,
            requires_typed_confirmation=count > TYPED_CONFIRMATION_THRESHOLD,
            confirm_word="DELETE" if super_action.is_delete else "CONFIRM",
            warning_level=warning_level(count),
        )

    async def execute(
        self,
        action: str,
        selection_ids: Iterable[str],
        all_items: Sequence[EmailItem],
        days: Optional[int] = None,
    ) -> BulkActionResult:
        """
        Run a Super Action.

        Raises:
            InvalidAction: Unknown action or bad days
            InsufficientSafeSenders: Safe sender gate not met (no Gmail calls made)
            AuthError: No usable Gmail token
        """
        super_action = parse_action(action)
        _, affected = await self._resolve(super_action, selection_ids, all_items, days)

        if not affected.items:
            logger.info(
                f"Super Action {super_action.value} for user {self.user_id}: nothing to process",
                extra={"user_id": str(self.user_id), "super_action": super_action.value}
            )
            return BulkActionResult(processed_count=0, failed_count=0, message=EMPTY_RESULT_MESSAGE)

        access_token = await self.token_manager.get_access_token()

        affected_ids = affected.ids
        job_id = await self.recorder.start_job(super_action.job_type, super_action.value, affected_ids)

        logger.info(
            f"Starting Super Action {super_action.value} for user {self.user_id}: "
            f"{len(affected_ids)} emails",
            extra={
                "user_id": str(self.user_id),
                "super_action": super_action.value,
                "affected_count": len(affected_ids),
            }
        )

        limiter = self.limiter_factory(self.db, self.user_id, super_action.job_type)
        batches = limiter.create_batches(affected_ids)

        try:
            async with self.client_factory(access_token) as client:
                operation = client.trash_message if super_action.is_delete else client.archive_message
                totals = await limiter.process_all_batches(batches, operation)
        except Exception:
            # Outcome unknown: close the job so it never stays 'processing'
            await self.recorder.finish_job(job_id, affected_ids)
            raise

        failed_ids = list(totals.failed)
        await self.recorder.finish_job(job_id, failed_ids)

        items_by_id = {item.id: item for item in affected.items}
        await self.recorder.track_bulk_actions([
            HistoryEntry(
                email_id=email_id,
                thread_id=items_by_id[email_id].thread_id,
                action=super_action.history_action,
                action_type="automated",
                details={
                    "super_action": super_action.value,
                    "subject": items_by_id[email_id].subject,
                    "from": items_by_id[email_id].from_,
                    "snippet": items_by_id[email_id].snippet,
                },
            )
            for email_id in totals.succeeded
        ])

        if not failed_ids:
            await self._record_success()

        message = self._build_message(super_action, totals.total_succeeded, totals.total_failed)
        if totals.aborted:
            message += " - stopped early because of Gmail rate limits"

        logger.info(
            f"Super Action {super_action.value} finished for user {self.user_id}: "
            f"{totals.total_succeeded} succeeded, {totals.total_failed} failed",
            extra={
                "user_id": str(self.user_id),
                "super_action": super_action.value,
                "processed_count": totals.total_succeeded,
                "failed_count": totals.total_failed,
            }
        )

        return BulkActionResult(
            processed_count=totals.total_succeeded,
            failed_count=totals.total_failed,
            message=message,
            job_id=job_id,
            failed_ids=failed_ids,
        )

    async def _record_success(self):
        """Advance training mode after a fully successful job (best-effort)."""
        try:
            # Reload; earlier best-effort rollbacks may have expired the row
            user_settings = await get_user_settings(self.db, self.user_id)
            user_settings.record_successful_action()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                f"Failed to update training progress for user {self.user_id}: {e}",
                extra={"user_id": str(self.user_id)}
            )

    @staticmethod
    def _build_message(action: SuperAction, succeeded: int, failed: int) -> str:
        verb = "Moved {n} emails to trash" if action.is_delete else "Archived {n} emails"
        message = verb.format(n=succeeded)
        if failed:
            message += f" ({failed} failed)"
        return message

    async def undo(self, job_id: UUID) -> BulkActionResult:
        """
        Restore the messages a job changed.

        Trashed messages are untrashed, archived ones get INBOX back. Only
        messages the job actually changed are touched.

        Raises:
            NotFound: No such job
            Conflict: Job still processing or already undone
            InvalidAction: Undo window has passed
        """
        job = await self.recorder.get_job(job_id)

        if job.status == STATUS_UNDONE:
            raise Conflict("This Super Action has already been undone")
        if job.status == STATUS_PROCESSING:
            raise Conflict("This Super Action is still processing")
        if not job.can_undo:
            raise InvalidAction("The undo window for this Super Action has expired")

        # Read the row up front; limiter rollbacks may expire it
        email_ids = job.succeeded_ids
        action_type = job.action_type
        is_trash_job = job.is_trash_job

        access_token = await self.token_manager.get_access_token()

        limiter = self.limiter_factory(self.db, self.user_id, f"undo_{action_type}")
        batches = limiter.create_batches(email_ids)

        async with self.client_factory(access_token) as client:
            operation = client.untrash_message if is_trash_job else client.unarchive_message
            totals = await limiter.process_all_batches(batches, operation)

        if totals.total_failed == 0:
            await self.recorder.mark_undone(job_id)
            message = f"Restored {totals.total_succeeded} emails"
        else:
            message = (
                f"Restored {totals.total_succeeded} emails, {totals.total_failed} failed - "
                f"try undo again"
            )

        logger.info(
            f"Undo of job {job_id} for user {self.user_id}: "
            f"{totals.total_succeeded} restored, {totals.total_failed} failed",
            extra={"user_id": str(self.user_id), "job_id": str(job_id)}
        )

        return BulkActionResult(
            processed_count=totals.total_succeeded,
            failed_count=totals.total_failed,
            message=message,
            job_id=job_id,
            failed_ids=list(totals.failed),
        )

    async def get_status(self) -> dict:
        """Safe sender gate and training mode state for the dashboard."""
        user_settings = await get_user_settings(self.db, self.user_id)
        patterns = await get_patterns(self.db, self.user_id)

        unlocked = (
            not user_settings.safe_senders_required
            or len(patterns) >= settings.MIN_SAFE_SENDERS
        )

        return {
            "unlocked": unlocked,
            "safe_senders_count": len(patterns),
            "safe_senders_required": settings.MIN_SAFE_SENDERS,
            "training_mode_active": user_settings.training_mode_active,
            "days_limit": user_settings.training_window_days,
            "successful_actions_count": user_settings.successful_actions_count,
        }
