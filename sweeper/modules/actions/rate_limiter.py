"""
Rate limiter and batcher for Super Actions.

Keeps bulk Gmail calls under the per-user quota by:
- Splitting work into fixed-size batches (50 by default)
- Staggering item starts inside a batch (50ms apart)
- Pausing between batches (2.5s base, doubled on 429/503, decays when clean)
- Gating each batch on a per-minute action counter in rate_limit_tracking

Gmail allows ~250 quota units/second per user; at 5 units per modify/trash
call, 20 actions/second keeps us at ~40% of that.

The window counter is best-effort: no row locking, so concurrent jobs for the
same user may under-count.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from sweeper.core.config import settings
from sweeper.models.rate_limit import RateLimitWindow
from sweeper.modules.gmail.client import GmailAPIError, THROTTLE_STATUSES

logger = logging.getLogger(__name__)


WINDOW_SECONDS = 60

# Gate polling: 1s, 2s, 4s, 8s, then every 16s
GATE_MAX_ATTEMPTS = 10


class RateLimitExceeded(Exception):
    """Raised when the per-minute window stays full for longer than the max wait."""
    pass


@dataclass
class BatchResult:
    """Outcome of one batch."""

    succeeded: List[Any] = field(default_factory=list)
    failed: List[Any] = field(default_factory=list)
    throttled: bool = False  # Saw a 429/503 from Gmail


@dataclass
class AllBatchesResult:
    """Outcome of a whole job."""

    total_succeeded: int = 0
    total_failed: int = 0
    succeeded: List[Any] = field(default_factory=list)
    failed: List[Any] = field(default_factory=list)
    aborted: bool = False  # Stopped early, remaining items counted as failed


class GmailRateLimiter:
    """
    Batches and throttles per-item Gmail calls for one user.

    Usage:
        limiter = GmailRateLimiter(db, user_id, action_type="super_delete")
        batches = limiter.create_batches(email_ids)
        result = await limiter.process_all_batches(batches, client.trash_message)
    """

    def __init__(
        self,
        db: AsyncSession,
        user_id: UUID,
        action_type: str,
        batch_size: Optional[int] = None,
        actions_per_second: Optional[int] = None,
        item_delay: Optional[float] = None,
        batch_delay: Optional[float] = None,
        max_batch_delay: Optional[float] = None,
        max_wait_seconds: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db
        self.user_id = user_id
        self.action_type = action_type

        self.batch_size = batch_size or settings.SUPER_ACTIONS_BATCH_SIZE
        self.actions_per_second = actions_per_second or settings.SUPER_ACTIONS_PER_SECOND
        self.item_delay = (
            item_delay if item_delay is not None else settings.SUPER_ACTIONS_ITEM_DELAY_SECONDS
        )
        self.base_batch_delay = (
            batch_delay if batch_delay is not None else settings.SUPER_ACTIONS_BATCH_DELAY_SECONDS
        )
        self.max_batch_delay = max_batch_delay or settings.SUPER_ACTIONS_MAX_BATCH_DELAY_SECONDS
        self.max_wait_seconds = max_wait_seconds or settings.SUPER_ACTIONS_MAX_WAIT_SECONDS
        self._sleep = sleep

        self.batch_delay = self.base_batch_delay
        self.current_batch = 0
        self.total_batches = 0

    @property
    def actions_per_window(self) -> int:
        return self.actions_per_second * WINDOW_SECONDS

    def create_batches(self, items: Sequence[Any]) -> List[List[Any]]:
        """Split items into order-preserving chunks of batch_size (last may be short)."""
        batches = [
            list(items[start:start + self.batch_size])
            for start in range(0, len(items), self.batch_size)
        ]
        self.total_batches = len(batches)
        return batches

    async def _get_active_window(self) -> Optional[RateLimitWindow]:
        result = await self.db.execute(
            select(RateLimitWindow)
            .where(
                RateLimitWindow.user_id == self.user_id,
                RateLimitWindow.window_end >= datetime.utcnow(),
            )
            .order_by(RateLimitWindow.window_end.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def _create_window(self) -> RateLimitWindow:
        now = datetime.utcnow()
        window = RateLimitWindow(
            user_id=self.user_id,
            action_type=self.action_type,
            actions_count=0,
            window_start=now,
            window_end=now + timedelta(seconds=WINDOW_SECONDS),
        )
        self.db.add(window)
        await self.db.commit()
        return window

    async def can_perform_action(self) -> bool:
        """
        Check the active window against the per-minute quota.

        Opens a new window (and allows the call) when none is active. A
        database failure also allows the call; the counter is best-effort.
        """
        try:
            window = await self._get_active_window()

            if not window:
                await self._create_window()
                return True

            return window.actions_count < self.actions_per_window
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                f"Rate window check failed for user {self.user_id}, allowing batch: {e}",
                extra={"user_id": str(self.user_id), "action_type": self.action_type}
            )
            return True

    async def record_actions(self, count: int):
        """Add count to the active window (best-effort)."""
        if count <= 0:
            return

        try:
            window = await self._get_active_window()
            if window:
                window.actions_count = window.actions_count + count
                await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                f"Failed to record {count} actions for user {self.user_id}: {e}",
                extra={"user_id": str(self.user_id), "count": count}
            )

    async def wait_for_capacity(self):
        """
        Block until the active window has capacity (exponential backoff).

        Raises:
            RateLimitExceeded: Window still full after max_wait_seconds
        """
        async for attempt in AsyncRetrying(
            sleep=self._sleep,
            retry=retry_if_exception_type(RateLimitExceeded),
            wait=wait_exponential(multiplier=1, min=1, max=16),
            stop=stop_after_delay(self.max_wait_seconds) | stop_after_attempt(GATE_MAX_ATTEMPTS),
            reraise=True,
        ):
            with attempt:
                if not await self.can_perform_action():
                    logger.info(
                        f"Rate window full for user {self.user_id}, waiting",
                        extra={
                            "user_id": str(self.user_id),
                            "attempt": attempt.retry_state.attempt_number,
                        }
                    )
                    raise RateLimitExceeded(
                        f"Rate limit wait timeout for user {self.user_id} "
                        f"after {self.max_wait_seconds}s"
                    )

    async def process_batch(
        self,
        batch: Sequence[Any],
        action: Callable[[Any], Awaitable[Any]],
    ) -> BatchResult:
        """
        Run action for every item of the batch concurrently.

        Item i starts i * item_delay seconds after the first. Failures are
        isolated per item: no rollback, no retry.
        """
        async def run(index: int, item: Any):
            if index and self.item_delay:
                await self._sleep(index * self.item_delay)
            try:
                await action(item)
                return item, None
            except Exception as e:
                logger.warning(
                    f"Super Action item failed: {type(e).__name__}: {e}",
                    extra={"user_id": str(self.user_id), "action_type": self.action_type}
                )
                return item, e

        outcomes = await asyncio.gather(*(run(i, item) for i, item in enumerate(batch)))

        result = BatchResult()
        for item, error in outcomes:
            if error is None:
                result.succeeded.append(item)
            else:
                result.failed.append(item)
                if isinstance(error, GmailAPIError) and error.status_code in THROTTLE_STATUSES:
                    result.throttled = True

        return result

    def _adjust_delay(self, throttled: bool):
        """Double the inter-batch delay after throttling, decay toward base otherwise."""
        if throttled:
            self.batch_delay = min(self.batch_delay * 2, self.max_batch_delay)
            logger.warning(
                f"Gmail throttled user {self.user_id}, batch delay now {self.batch_delay}s",
                extra={"user_id": str(self.user_id), "batch_delay": self.batch_delay}
            )
        elif self.batch_delay > self.base_batch_delay:
            self.batch_delay = max(self.batch_delay / 2, self.base_batch_delay)

    async def process_all_batches(
        self,
        batches: Sequence[Sequence[Any]],
        action: Callable[[Any], Awaitable[Any]],
    ) -> AllBatchesResult:
        """
        Process batches sequentially with a pause between them.

        If the rate window stays full before a batch, the job stops and every
        unprocessed item is reported as failed.
        """
        self.total_batches = len(batches)
        totals = AllBatchesResult()

        for index, batch in enumerate(batches):
            self.current_batch = index + 1

            try:
                await self.wait_for_capacity()
            except RateLimitExceeded as e:
                remaining = [item for pending in batches[index:] for item in pending]
                totals.failed.extend(remaining)
                totals.total_failed += len(remaining)
                totals.aborted = True
                logger.error(
                    f"Stopping Super Action for user {self.user_id}: {e}",
                    extra={"user_id": str(self.user_id), "remaining": len(remaining)}
                )
                break

            result = await self.process_batch(batch, action)
            await self.record_actions(len(result.succeeded))

            totals.succeeded.extend(result.succeeded)
            totals.failed.extend(result.failed)
            totals.total_succeeded += len(result.succeeded)
            totals.total_failed += len(result.failed)

            logger.info(
                f"Batch {self.current_batch}/{self.total_batches}: "
                f"{len(result.succeeded)} succeeded, {len(result.failed)} failed",
                extra={"user_id": str(self.user_id), "action_type": self.action_type}
            )

            self._adjust_delay(result.throttled)

            if index < len(batches) - 1:
                await self._sleep(self.batch_delay)

        return totals

    def get_status(self) -> dict:
        return {
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "batch_size": self.batch_size,
            "actions_per_second": self.actions_per_second,
            "batch_delay": self.batch_delay,
        }
