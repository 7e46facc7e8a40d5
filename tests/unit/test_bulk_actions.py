"""
Unit tests for Super Actions (BulkActionExecutor and affected-set resolution).

Gmail, the database and the history recorder are all faked; the batcher is
the real GmailRateLimiter with its window gate and sleeps mocked out.

Run tests:
    pytest tests/unit/test_bulk_actions.py -v
"""

import uuid
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from sweeper.core.exceptions import Conflict, InsufficientSafeSenders, InvalidAction, NoGmailConnection
from sweeper.models.action_history import ActionHistory, STATUS_COMPLETED, STATUS_UNDONE, STATUS_PROCESSING
from sweeper.models.user_settings import UserSettings
from sweeper.modules.actions.bulk import (
    BulkActionExecutor,
    SuperAction,
    EMPTY_RESULT_MESSAGE,
    compute_affected_set,
    parse_action,
    warning_level,
)
from sweeper.modules.actions.rate_limiter import GmailRateLimiter
from sweeper.modules.gmail.client import GmailNotFound
from sweeper.modules.history.recorder import HistoryRecorder


SAFE = ["boss@work.com", "*@family.org", "alerts@*"]


class FakeGmailClient:
    """Records calls; ids in fail_ids raise 404."""

    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.calls = []

    def __call__(self, access_token):
        self.access_token = access_token
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def _op(self, name, message_id):
        self.calls.append((name, message_id))
        if message_id in self.fail_ids:
            raise GmailNotFound("gone", 404)
        return {"id": message_id}

    async def trash_message(self, message_id):
        return await self._op("trash", message_id)

    async def archive_message(self, message_id):
        return await self._op("archive", message_id)

    async def untrash_message(self, message_id):
        return await self._op("untrash", message_id)

    async def unarchive_message(self, message_id):
        return await self._op("unarchive", message_id)


def make_settings(required=True, training=False, days_limit=None, count=0):
    return UserSettings(
        user_id=uuid.uuid4(),
        safe_senders_required=required,
        training_mode_active=training,
        days_limit=days_limit,
        successful_actions_count=count,
    )


def make_job(action_type="super_delete", status=STATUS_COMPLETED, affected=("m1", "m2"),
             failed=(), undo_until_days=29):
    return ActionHistory(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        action_type=action_type,
        super_action="delete_by_sender",
        affected_emails=list(affected),
        affected_count=len(affected),
        status=status,
        error_details={"failed_count": len(failed), "failed_ids": list(failed)} if failed else None,
        can_undo_until=datetime.utcnow() + timedelta(days=undo_until_days),
    )


@pytest.fixture
def gmail():
    return FakeGmailClient()


@pytest.fixture
def token_manager():
    manager = AsyncMock()
    manager.get_access_token = AsyncMock(return_value="ya29.test")
    return manager


@pytest.fixture
def recorder():
    recorder = AsyncMock()
    recorder.start_job = AsyncMock(return_value=uuid.uuid4())
    recorder.track_bulk_actions = AsyncMock(side_effect=lambda entries: len(entries))
    return recorder


@pytest.fixture
def limiters():
    """Every limiter the executor builds, batch size 10."""
    return []


@pytest.fixture
def limiter_factory(limiters):
    def factory(db, user_id, action_type):
        limiter = GmailRateLimiter(db, user_id, action_type, batch_size=10, sleep=AsyncMock())
        limiter.can_perform_action = AsyncMock(return_value=True)
        limiter.record_actions = AsyncMock()
        limiters.append(limiter)
        return limiter
    return factory


@pytest.fixture
def user_settings():
    return make_settings()


@pytest.fixture
def patterns():
    return list(SAFE)


@pytest.fixture
def executor(mocker, mock_db, user_id, token_manager, gmail, recorder, limiter_factory,
             user_settings, patterns):
    mocker.patch(
        "sweeper.modules.actions.bulk.get_user_settings",
        AsyncMock(return_value=user_settings),
    )
    mocker.patch(
        "sweeper.modules.actions.bulk.get_patterns",
        AsyncMock(side_effect=lambda db, uid: patterns),
    )
    return BulkActionExecutor(
        mock_db,
        user_id,
        token_manager,
        client_factory=gmail,
        recorder=recorder,
        limiter_factory=limiter_factory,
    )


class TestSuperActionKinds:

    @pytest.mark.parametrize("value,is_delete,by_sender", [
        ("delete_by_sender", True, True),
        ("archive_by_sender", False, True),
        ("delete_old", True, False),
        ("archive_old", False, False),
        ("unsubscribe_and_delete", True, True),
    ])
    def test_action_properties(self, value, is_delete, by_sender):
        action = parse_action(value)
        assert action.is_delete is is_delete
        assert action.by_sender is by_sender
        assert action.job_type == ("super_delete" if is_delete else "super_archive")

    def test_unknown_action_rejected(self):
        with pytest.raises(InvalidAction, match="Invalid action type"):
            parse_action("nuke_everything")

    @pytest.mark.parametrize("count,level", [(5, "low"), (21, "moderate"), (101, "high"), (501, "extreme")])
    def test_warning_level(self, count, level):
        assert warning_level(count) == level


class TestComputeAffectedSet:

    def test_by_sender_includes_all_known_mail_from_sender(self, make_email):
        items = [
            make_email("1", "Shop <news@shop.com>"),
            make_email("2", "news@shop.com"),
            make_email("3", "Other <other@x.com>"),
        ]

        affected = compute_affected_set(SuperAction.DELETE_BY_SENDER, ["1"], items, SAFE)

        assert affected.ids == ["1", "2"]
        assert affected.senders == ["news@shop.com"]

    def test_safe_senders_excluded(self, make_email):
        items = [
            make_email("1", "Boss <boss@work.com>"),
            make_email("2", "Mom <mom@family.org>"),
            make_email("3", "alerts@bank.com"),
            make_email("4", "news@shop.com"),
        ]

        affected = compute_affected_set(
            SuperAction.DELETE_BY_SENDER, ["1", "2", "3", "4"], items, SAFE
        )

        assert affected.ids == ["4"]

    def test_duplicate_items_counted_once(self, make_email):
        item = make_email("1", "news@shop.com")

        affected = compute_affected_set(SuperAction.ARCHIVE_BY_SENDER, ["1", "1"], [item, item], [])

        assert affected.ids == ["1"]

    def test_unknown_selection_ids_ignored(self, make_email):
        items = [make_email("1", "news@shop.com")]

        affected = compute_affected_set(SuperAction.DELETE_BY_SENDER, ["nope"], items, [])

        assert affected.items == []

    def test_old_actions_use_cutoff(self, make_email):
        items = [
            make_email("new", "news@shop.com", age_days=3),
            make_email("old", "news@shop.com", age_days=40),
            make_email("safe-old", "boss@work.com", age_days=40),
        ]

        affected = compute_affected_set(SuperAction.DELETE_OLD, [], items, SAFE, days=30)

        assert affected.ids == ["old"]

    def test_undated_items_never_old(self, make_email):
        item = make_email("1", "news@shop.com")
        item.date = None

        affected = compute_affected_set(SuperAction.ARCHIVE_OLD, [], [item], [], days=1)

        assert affected.items == []

    @pytest.mark.parametrize("days", [None, 0, -5, True, "30"])
    def test_old_actions_require_positive_days(self, make_email, days):
        with pytest.raises(InvalidAction, match="days must be a positive number"):
            compute_affected_set(SuperAction.DELETE_OLD, [], [make_email("1", "a@b.com")], [], days=days)

    def test_training_window_limits_reach(self, make_email):
        items = [
            make_email("recent", "news@shop.com", age_days=10),
            make_email("ancient", "news@shop.com", age_days=60),
        ]

        affected = compute_affected_set(
            SuperAction.DELETE_BY_SENDER, ["recent"], items, [], training_days=30
        )

        assert affected.ids == ["recent"]

    def test_same_inputs_same_result(self, make_email):
        now = datetime.utcnow()
        items = [make_email(str(i), f"s{i % 3}@x.com", age_days=i) for i in range(20)]

        first = compute_affected_set(SuperAction.ARCHIVE_OLD, [], items, [], days=5, now=now)
        second = compute_affected_set(SuperAction.ARCHIVE_OLD, [], items, [], days=5, now=now)

        assert first == second


class TestSafeSenderGate:

    @pytest.mark.asyncio
    async def test_two_safe_senders_blocks_before_any_gmail_call(
        self, executor, patterns, gmail, token_manager, recorder, make_email
    ):
        del patterns[2:]

        with pytest.raises(InsufficientSafeSenders) as exc_info:
            await executor.execute("delete_by_sender", ["1"], [make_email("1", "news@shop.com")])

        assert exc_info.value.status_code == 403
        assert exc_info.value.count == 2
        assert gmail.calls == []
        token_manager.get_access_token.assert_not_awaited()
        recorder.start_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gate_not_enforced_when_disabled(self, executor, patterns, user_settings, gmail, make_email):
        patterns.clear()
        user_settings.safe_senders_required = False

        result = await executor.execute("archive_by_sender", ["1"], [make_email("1", "news@shop.com")])

        assert result.processed_count == 1
        assert gmail.calls == [("archive", "1")]


class TestExecute:

    @pytest.mark.asyncio
    async def test_all_senders_safe_is_zero_effect_success(
        self, executor, gmail, token_manager, recorder, make_email
    ):
        items = [make_email("1", "boss@work.com"), make_email("2", "mom@family.org")]

        result = await executor.execute("delete_by_sender", ["1", "2"], items)

        assert result.processed_count == 0
        assert result.failed_count == 0
        assert result.message == EMPTY_RESULT_MESSAGE
        assert gmail.calls == []
        token_manager.get_access_token.assert_not_awaited()
        recorder.start_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_twelve_messages_in_two_batches(self, executor, gmail, recorder, limiters, make_email):
        items = [make_email(f"m{i}", "news@shop.com") for i in range(12)]

        result = await executor.execute("delete_by_sender", ["m0"], items)

        assert result.processed_count == 12
        assert result.failed_count == 0
        assert result.message == "Moved 12 emails to trash"
        assert sorted(gmail.calls) == sorted(("trash", f"m{i}") for i in range(12))
        assert limiters[0].total_batches == 2
        assert limiters[0].action_type == "super_delete"
        recorder.start_job.assert_awaited_once()
        recorder.finish_job.assert_awaited_once()
        assert recorder.finish_job.await_args.args[1] == []

    @pytest.mark.asyncio
    async def test_history_rows_are_automated(self, executor, recorder, make_email):
        items = [make_email("m1", "Shop <news@shop.com>", subject="Sale")]

        await executor.execute("archive_by_sender", ["m1"], items)

        entries = recorder.track_bulk_actions.await_args.args[0]
        assert len(entries) == 1
        assert entries[0].action == "archive"
        assert entries[0].action_type == "automated"
        assert entries[0].thread_id == "t-m1"
        assert entries[0].details["super_action"] == "archive_by_sender"
        assert entries[0].details["subject"] == "Sale"

    @pytest.mark.asyncio
    async def test_partial_failure_reported_not_raised(
        self, executor, gmail, recorder, user_settings, make_email
    ):
        gmail.fail_ids = {"m2", "m5"}
        items = [make_email(f"m{i}", "news@shop.com") for i in range(6)]

        result = await executor.execute("delete_by_sender", ["m0"], items)

        assert result.processed_count == 4
        assert result.failed_count == 2
        assert sorted(result.failed_ids) == ["m2", "m5"]
        assert result.message == "Moved 4 emails to trash (2 failed)"
        assert sorted(recorder.finish_job.await_args.args[1]) == ["m2", "m5"]
        assert len(recorder.track_bulk_actions.await_args.args[0]) == 4
        assert user_settings.successful_actions_count == 0

    @pytest.mark.asyncio
    async def test_full_success_advances_training(self, executor, user_settings, make_email):
        await executor.execute("delete_by_sender", ["m1"], [make_email("m1", "news@shop.com")])

        assert user_settings.successful_actions_count == 1

    @pytest.mark.asyncio
    async def test_training_window_applied(self, executor, user_settings, gmail, make_email):
        user_settings.training_mode_active = True
        user_settings.days_limit = 30
        items = [
            make_email("recent", "news@shop.com", age_days=5),
            make_email("ancient", "news@shop.com", age_days=90),
        ]

        result = await executor.execute("delete_by_sender", ["recent"], items)

        assert result.processed_count == 1
        assert gmail.calls == [("trash", "recent")]

    @pytest.mark.asyncio
    async def test_delete_old_trashes_only_old_mail(self, executor, gmail, make_email):
        items = [
            make_email("new", "news@shop.com", age_days=1),
            make_email("old", "news@shop.com", age_days=45),
        ]

        result = await executor.execute("delete_old", [], items, days=30)

        assert result.processed_count == 1
        assert gmail.calls == [("trash", "old")]

    @pytest.mark.asyncio
    async def test_missing_gmail_connection_propagates(self, executor, token_manager, recorder, make_email):
        token_manager.get_access_token.side_effect = NoGmailConnection("connect Gmail")

        with pytest.raises(NoGmailConnection):
            await executor.execute("delete_by_sender", ["m1"], [make_email("m1", "news@shop.com")])

        recorder.start_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_untracked_job_still_runs(self, executor, recorder, make_email):
        recorder.start_job.return_value = None

        result = await executor.execute("delete_by_sender", ["m1"], [make_email("m1", "news@shop.com")])

        assert result.processed_count == 1
        assert result.job_id is None


class TestBestEffortWrites:
    """Database failures after Gmail has acted never fail the job."""

    @pytest.fixture
    def failing_commits(self, mock_db):
        """First commit (the job row) succeeds, every later one fails."""
        calls = []

        def commit():
            calls.append(1)
            if len(calls) > 1:
                raise OperationalError("COMMIT", {}, Exception("connection lost"))

        mock_db.commit = AsyncMock(side_effect=commit)
        return mock_db

    @pytest.mark.asyncio
    async def test_history_commit_failures_still_return_counts(
        self, mocker, failing_commits, user_id, token_manager, gmail, limiter_factory,
        user_settings, patterns, make_email
    ):
        mocker.patch("sweeper.modules.actions.bulk.get_user_settings", AsyncMock(return_value=user_settings))
        mocker.patch("sweeper.modules.actions.bulk.get_patterns", AsyncMock(return_value=patterns))
        executor = BulkActionExecutor(
            failing_commits,
            user_id,
            token_manager,
            client_factory=gmail,
            recorder=HistoryRecorder(failing_commits, user_id),
            limiter_factory=limiter_factory,
        )
        items = [make_email("m1", "news@shop.com"), make_email("m2", "news@shop.com")]

        result = await executor.execute("delete_by_sender", ["m1"], items)

        assert result.processed_count == 2
        assert result.failed_count == 0
        assert result.job_id is not None
        assert sorted(gmail.calls) == [("trash", "m1"), ("trash", "m2")]
        # finish_job, track_bulk_actions and the training update all rolled back
        assert failing_commits.rollback.await_count == 3

    @pytest.mark.asyncio
    async def test_window_write_failure_still_finishes_job(
        self, mock_db, user_id, token_manager, gmail, recorder, executor, make_email
    ):
        no_window = MagicMock()
        no_window.scalars.return_value.first.return_value = None
        mock_db.execute = AsyncMock(return_value=no_window)
        mock_db.commit = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("connection lost")))

        def real_gate_factory(db, uid, action_type):
            return GmailRateLimiter(db, uid, action_type, batch_size=10, sleep=AsyncMock())

        executor.limiter_factory = real_gate_factory
        items = [make_email("m1", "news@shop.com"), make_email("m2", "news@shop.com")]

        result = await executor.execute("archive_by_sender", ["m1"], items)

        assert result.processed_count == 2
        assert sorted(gmail.calls) == [("archive", "m1"), ("archive", "m2")]
        job_id = recorder.start_job.return_value
        recorder.finish_job.assert_awaited_once_with(job_id, [])
        mock_db.rollback.assert_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_closes_job_then_propagates(self, executor, recorder, make_email):
        def broken_factory(db, uid, action_type):
            limiter = GmailRateLimiter(db, uid, action_type, batch_size=10, sleep=AsyncMock())
            limiter.process_all_batches = AsyncMock(side_effect=RuntimeError("boom"))
            return limiter

        executor.limiter_factory = broken_factory

        with pytest.raises(RuntimeError):
            await executor.execute("delete_by_sender", ["m1"], [make_email("m1", "news@shop.com")])

        job_id = recorder.start_job.return_value
        recorder.finish_job.assert_awaited_once_with(job_id, ["m1"])


class TestPreview:

    @pytest.mark.asyncio
    async def test_preview_makes_no_gmail_calls(self, executor, gmail, token_manager, make_email):
        items = [make_email(f"m{i}", "news@shop.com") for i in range(60)]

        preview = await executor.preview("delete_by_sender", ["m0"], items)

        assert preview.estimated_affected == 60
        assert preview.senders == ["news@shop.com"]
        assert preview.requires_typed_confirmation is True
        assert preview.confirm_word == "DELETE"
        assert preview.warning_level == "moderate"
        assert gmail.calls == []
        token_manager.get_access_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_archive_preview_confirm_word(self, executor, make_email):
        preview = await executor.preview("archive_by_sender", ["m0"], [make_email("m0", "a@b.com")])

        assert preview.confirm_word == "CONFIRM"
        assert preview.requires_typed_confirmation is False


class TestUndo:

    @pytest.mark.asyncio
    async def test_undo_trash_job_untrashes_succeeded_only(self, executor, recorder, gmail):
        job = make_job(affected=("m1", "m2", "m3"), failed=("m2",))
        recorder.get_job = AsyncMock(return_value=job)

        result = await executor.undo(job.id)

        assert sorted(gmail.calls) == [("untrash", "m1"), ("untrash", "m3")]
        assert result.processed_count == 2
        recorder.mark_undone.assert_awaited_once_with(job.id)

    @pytest.mark.asyncio
    async def test_undo_archive_job_restores_inbox(self, executor, recorder, gmail):
        job = make_job(action_type="super_archive", affected=("m1",))
        recorder.get_job = AsyncMock(return_value=job)

        await executor.undo(job.id)

        assert gmail.calls == [("unarchive", "m1")]

    @pytest.mark.asyncio
    async def test_undo_with_failures_not_marked_undone(self, executor, recorder, gmail):
        gmail.fail_ids = {"m1"}
        job = make_job(affected=("m1", "m2"))
        recorder.get_job = AsyncMock(return_value=job)

        result = await executor.undo(job.id)

        assert result.failed_count == 1
        recorder.mark_undone.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_undo_window_rejected(self, executor, recorder, gmail):
        job = make_job(undo_until_days=-1)
        recorder.get_job = AsyncMock(return_value=job)

        with pytest.raises(InvalidAction, match="undo window"):
            await executor.undo(job.id)

        assert gmail.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [STATUS_UNDONE, STATUS_PROCESSING])
    async def test_undone_or_running_job_conflicts(self, executor, recorder, status):
        job = make_job(status=status)
        recorder.get_job = AsyncMock(return_value=job)

        with pytest.raises(Conflict):
            await executor.undo(job.id)


class TestStatus:

    @pytest.mark.asyncio
    async def test_status_unlocked_with_three_safe_senders(self, executor):
        status = await executor.get_status()

        assert status["unlocked"] is True
        assert status["safe_senders_count"] == 3
        assert status["safe_senders_required"] == 3

    @pytest.mark.asyncio
    async def test_status_locked_with_one_safe_sender(self, executor, patterns):
        del patterns[1:]

        status = await executor.get_status()

        assert status["unlocked"] is False
