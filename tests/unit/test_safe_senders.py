"""
Unit tests for safe sender matching, validation and the repository.

Run tests:
    pytest tests/unit/test_safe_senders.py -v
"""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from sweeper.core.exceptions import InvalidAction, Conflict, NotFound
from sweeper.modules.safety.safe_senders import (
    email_matches_pattern,
    validate_pattern,
    extract_address,
    is_safe,
    filter_out_safe,
    add_safe_sender,
    remove_safe_sender,
)


ADDRESSES = [
    "alice@example.com",
    "Alice@Example.COM",
    "bob@sub.example.com",
    "alerts@bank.com",
    "alerts-noreply@bank.com",
    "someone@notexample.com",
]


class TestEmailMatchesPattern:
    """Matching rules: exact, *@domain, prefix@*."""

    def test_exact_match_is_case_insensitive(self):
        assert email_matches_pattern("Boss@Work.com", "boss@work.com")
        assert email_matches_pattern("boss@work.com", "BOSS@WORK.COM")

    def test_exact_pattern_does_not_match_other_address(self):
        assert not email_matches_pattern("boss2@work.com", "boss@work.com")

    @pytest.mark.parametrize("address", ADDRESSES)
    def test_domain_wildcard_property(self, address):
        pattern = "*@Example.com"
        expected = address.lower().endswith("@example.com")
        assert email_matches_pattern(address, pattern) is expected

    @pytest.mark.parametrize("address", ADDRESSES)
    def test_local_wildcard_property(self, address):
        pattern = "Alerts@*"
        expected = address.lower().startswith("alerts@")
        assert email_matches_pattern(address, pattern) is expected

    @pytest.mark.parametrize("address", ADDRESSES)
    def test_literal_pattern_property(self, address):
        pattern = "alice@example.com"
        assert email_matches_pattern(address, pattern) is (address.lower() == pattern)

    def test_domain_wildcard_does_not_match_subdomain(self):
        assert not email_matches_pattern("bob@sub.example.com", "*@example.com")

    def test_domain_wildcard_does_not_match_suffix_domain(self):
        assert not email_matches_pattern("someone@notexample.com", "*@example.com")

    def test_empty_inputs_never_raise(self):
        assert not email_matches_pattern("", "*@example.com")
        assert not email_matches_pattern(None, "alerts@*")
        assert email_matches_pattern("", "")


class TestValidatePattern:
    """Pattern validation at creation time."""

    @pytest.mark.parametrize("pattern,expected", [
        ("  Boss@Work.com ", "boss@work.com"),
        ("*@Work.com", "*@work.com"),
        ("Alerts@*", "alerts@*"),
    ])
    def test_valid_patterns_are_normalized(self, pattern, expected):
        assert validate_pattern(pattern) == expected

    @pytest.mark.parametrize("pattern", [
        "a*b@x.com",
        "*@*",
        "*boss@work.com",
        "boss@*.com",
        "not-an-email",
        "two@at@signs.com",
        "spaces in@work.com",
    ])
    def test_invalid_patterns_rejected(self, pattern):
        with pytest.raises(InvalidAction):
            validate_pattern(pattern)

    def test_empty_pattern_rejected(self):
        with pytest.raises(InvalidAction) as exc_info:
            validate_pattern("   ")
        assert "required" in exc_info.value.message


class TestFiltering:
    """Address extraction and safe filtering of inbox items."""

    def test_extract_address_from_display_name(self):
        assert extract_address('"Jane Doe" <Jane@Example.com>') == "jane@example.com"

    def test_extract_address_bare(self):
        assert extract_address("jane@example.com") == "jane@example.com"

    def test_is_safe_any_pattern(self):
        assert is_safe("news@shop.com", ["boss@work.com", "*@shop.com"])
        assert not is_safe("news@shop.com", ["boss@work.com"])

    def test_filter_out_safe_uses_bare_address(self, make_email):
        items = [
            make_email("1", "Boss <boss@work.com>"),
            make_email("2", "Shop <news@shop.com>"),
            make_email("3", "boss@work.com.evil.io"),
        ]

        remaining = filter_out_safe(items, ["boss@work.com"])

        assert [item.id for item in remaining] == ["2", "3"]

    def test_filter_out_safe_without_patterns_keeps_everything(self, make_email):
        items = [make_email("1", "a@b.com"), make_email("2", "c@d.com")]
        assert filter_out_safe(items, []) == items


class TestRepository:
    """Safe sender CRUD against a mocked session."""

    @pytest.mark.asyncio
    async def test_add_normalizes_and_commits(self, mock_db):
        user_id = uuid.uuid4()

        safe_sender = await add_safe_sender(mock_db, user_id, "  Boss@Work.com ")

        assert safe_sender.email_address == "boss@work.com"
        assert safe_sender.user_id == user_id
        mock_db.add.assert_called_once_with(safe_sender)
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_add_duplicate_raises_conflict(self, mock_db):
        mock_db.commit.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))

        with pytest.raises(Conflict) as exc_info:
            await add_safe_sender(mock_db, uuid.uuid4(), "boss@work.com")

        assert "already in your safe senders list" in exc_info.value.message
        mock_db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_add_invalid_pattern_never_touches_db(self, mock_db):
        with pytest.raises(InvalidAction):
            await add_safe_sender(mock_db, uuid.uuid4(), "a*b@x.com")

        mock_db.add.assert_not_called()
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_missing_raises_not_found(self, mock_db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db.execute = AsyncMock(return_value=result)

        with pytest.raises(NotFound):
            await remove_safe_sender(mock_db, uuid.uuid4(), uuid.uuid4())

        mock_db.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_existing_deletes(self, mock_db):
        existing = MagicMock()
        result = MagicMock()
        result.scalar_one_or_none.return_value = existing
        mock_db.execute = AsyncMock(return_value=result)

        await remove_safe_sender(mock_db, uuid.uuid4(), uuid.uuid4())

        mock_db.delete.assert_awaited_once_with(existing)
        mock_db.commit.assert_awaited_once()
