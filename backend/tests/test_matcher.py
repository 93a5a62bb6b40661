"""
Unit Tests for ContactMatcher

Run with: pytest tests/test_matcher.py -v
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from identity.matcher import ContactMatcher
from identity.models import Contact, Primary, Secondary

NOW = datetime(2023, 4, 1, tzinfo=timezone.utc)


def make_contact(contact_id, email=None, phone=None, linked_id=None):
    return Contact(
        id=contact_id,
        email=email,
        phone_number=phone,
        precedence=Secondary(linked_id) if linked_id else Primary(),
        created_at=NOW,
        updated_at=NOW,
    )


class TestContactMatcher:
    """Test ContactMatcher.match."""

    @pytest.fixture
    def mock_store(self):
        store = AsyncMock()
        store.find_by_email_or_phone = AsyncMock(return_value=[])
        return store

    @pytest.fixture
    def matcher(self, mock_store):
        return ContactMatcher(mock_store)

    @pytest.mark.asyncio
    async def test_empty_input_matches_nothing(self, matcher, mock_store):
        """Both attributes absent: empty set, store untouched."""
        assert await matcher.match(None, None) == set()
        assert await matcher.match("", "") == set()
        mock_store.find_by_email_or_phone.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_records_gives_empty_set(self, matcher, mock_store):
        assert await matcher.match("lorraine@hillvalley.edu", None) == set()
        mock_store.find_by_email_or_phone.assert_awaited_once_with("lorraine@hillvalley.edu", None)

    @pytest.mark.asyncio
    async def test_primary_resolves_to_itself(self, matcher, mock_store):
        mock_store.find_by_email_or_phone.return_value = [make_contact(1, email="a@x.com")]

        assert await matcher.match("a@x.com", None) == {1}

    @pytest.mark.asyncio
    async def test_secondary_resolves_to_linked_primary(self, matcher, mock_store):
        mock_store.find_by_email_or_phone.return_value = [
            make_contact(7, phone="123456", linked_id=3)
        ]

        assert await matcher.match(None, "123456") == {3}

    @pytest.mark.asyncio
    async def test_roots_are_deduplicated(self, matcher, mock_store):
        """Several members of one cluster yield its primary once."""
        mock_store.find_by_email_or_phone.return_value = [
            make_contact(1, email="a@x.com"),
            make_contact(2, email="a@x.com", phone="555", linked_id=1),
            make_contact(4, phone="555", linked_id=1),
        ]

        assert await matcher.match("a@x.com", "555") == {1}

    @pytest.mark.asyncio
    async def test_either_attribute_can_implicate_a_cluster(self, matcher, mock_store):
        """Email matches one cluster, phone another: both roots returned."""
        mock_store.find_by_email_or_phone.return_value = [
            make_contact(1, email="george@hillvalley.edu"),
            make_contact(9, phone="717171", linked_id=5),
        ]

        assert await matcher.match("george@hillvalley.edu", "717171") == {1, 5}
        mock_store.find_by_email_or_phone.assert_awaited_once_with(
            "george@hillvalley.edu", "717171"
        )
