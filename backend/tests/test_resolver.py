"""
Unit Tests for ContactResolver

Tests the resolution state machine against a mocked store:
- No match: new primary
- One cluster: append or no-op
- Several clusters: merge into the oldest primary
- Invariant violations and stale roots

Run with: pytest tests/test_resolver.py -v
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, call

from identity.errors import ClusterIntegrityError, StaleClusterError
from identity.models import Contact, Primary, Secondary
from identity.resolver import (
    ContactResolver,
    select_primary,
    has_new_information,
    project_cluster,
)

BASE = datetime(2023, 4, 1, tzinfo=timezone.utc)


def make_contact(contact_id, email=None, phone=None, linked_id=None, minutes=0):
    created = BASE + timedelta(minutes=minutes)
    return Contact(
        id=contact_id,
        email=email,
        phone_number=phone,
        precedence=Secondary(linked_id) if linked_id else Primary(),
        created_at=created,
        updated_at=created,
    )


@pytest.fixture
def mock_store():
    store = AsyncMock()
    store.find_by_ids_or_linked_ids = AsyncMock(return_value=[])
    store.insert = AsyncMock()
    store.update_to_secondary = AsyncMock()
    store.lock_roots = AsyncMock()
    return store


@pytest.fixture
def resolver(mock_store):
    return ContactResolver(mock_store)


class TestCreatePrimary:
    """No matched cluster."""

    @pytest.mark.asyncio
    async def test_creates_primary(self, resolver, mock_store):
        mock_store.insert.return_value = make_contact(1, email="a@x.com")

        view = await resolver.resolve("a@x.com", None, set())

        mock_store.insert.assert_awaited_once_with("a@x.com", None, Primary())
        assert view.to_dict() == {
            "primaryContactId": 1,
            "emails": ["a@x.com"],
            "phoneNumbers": [],
            "secondaryContactIds": [],
        }
        mock_store.lock_roots.assert_not_called()
        mock_store.find_by_ids_or_linked_ids.assert_not_called()

    @pytest.mark.asyncio
    async def test_phone_only_primary(self, resolver, mock_store):
        mock_store.insert.return_value = make_contact(2, phone="123456")

        view = await resolver.resolve(None, "123456", [])

        assert view.emails == []
        assert view.phone_numbers == ["123456"]


class TestSingleCluster:
    """Exactly one matched cluster."""

    @pytest.mark.asyncio
    async def test_known_attributes_are_a_no_op(self, resolver, mock_store):
        cluster = [
            make_contact(1, email="a@x.com", phone="111"),
            make_contact(2, email="b@x.com", phone="111", linked_id=1, minutes=5),
        ]
        mock_store.find_by_ids_or_linked_ids.return_value = cluster

        view = await resolver.resolve("b@x.com", "111", {1})

        mock_store.lock_roots.assert_awaited_once_with([1])
        mock_store.insert.assert_not_called()
        mock_store.update_to_secondary.assert_not_called()
        # No write, no reload
        mock_store.find_by_ids_or_linked_ids.assert_awaited_once_with([1])
        assert view.primary_contact_id == 1
        assert view.emails == ["a@x.com", "b@x.com"]
        assert view.phone_numbers == ["111"]
        assert view.secondary_contact_ids == [2]

    @pytest.mark.asyncio
    async def test_new_phone_appends_secondary(self, resolver, mock_store):
        before = [make_contact(1, email="a@x.com")]
        appended = make_contact(5, email="a@x.com", phone="999", linked_id=1, minutes=10)
        mock_store.find_by_ids_or_linked_ids.side_effect = [before, before + [appended]]
        mock_store.insert.return_value = appended

        view = await resolver.resolve("a@x.com", "999", {1})

        mock_store.insert.assert_awaited_once_with("a@x.com", "999", Secondary(linked_id=1))
        assert mock_store.find_by_ids_or_linked_ids.await_args_list[1] == call({1})
        assert view.to_dict() == {
            "primaryContactId": 1,
            "emails": ["a@x.com"],
            "phoneNumbers": ["999"],
            "secondaryContactIds": [5],
        }

    @pytest.mark.asyncio
    async def test_absent_attribute_is_not_new_information(self, resolver, mock_store):
        """A request carrying only a known email adds nothing, even if the cluster has no phone."""
        mock_store.find_by_ids_or_linked_ids.return_value = [make_contact(1, email="a@x.com")]

        await resolver.resolve("a@x.com", None, {1})

        mock_store.insert.assert_not_called()


class TestMerge:
    """Several matched clusters."""

    @pytest.mark.asyncio
    async def test_younger_primary_is_demoted(self, resolver, mock_store):
        older = make_contact(11, email="george@hillvalley.edu", phone="919191")
        younger = make_contact(27, email="biffsucks@hillvalley.edu", phone="717171", minutes=60)
        merged = [older, make_contact(27, email="biffsucks@hillvalley.edu", phone="717171", linked_id=11, minutes=60)]
        mock_store.find_by_ids_or_linked_ids.side_effect = [[older, younger], merged]

        view = await resolver.resolve("george@hillvalley.edu", "717171", {27, 11})

        mock_store.lock_roots.assert_awaited_once_with([11, 27])
        mock_store.update_to_secondary.assert_awaited_once_with(27, 11)
        mock_store.insert.assert_not_called()
        assert view.to_dict() == {
            "primaryContactId": 11,
            "emails": ["george@hillvalley.edu", "biffsucks@hillvalley.edu"],
            "phoneNumbers": ["919191", "717171"],
            "secondaryContactIds": [27],
        }

    @pytest.mark.asyncio
    async def test_secondaries_of_demoted_primary_are_repointed(self, resolver, mock_store):
        older = make_contact(1, email="a@x.com")
        younger = make_contact(2, phone="222", minutes=10)
        younger_child = make_contact(3, email="c@x.com", phone="222", linked_id=2, minutes=20)
        older_child = make_contact(4, email="a@x.com", phone="444", linked_id=1, minutes=30)
        mock_store.find_by_ids_or_linked_ids.side_effect = [
            [older, younger, younger_child, older_child],
            [
                older,
                make_contact(2, phone="222", linked_id=1, minutes=10),
                make_contact(3, email="c@x.com", phone="222", linked_id=1, minutes=20),
                older_child,
            ],
        ]

        view = await resolver.resolve("a@x.com", "222", {1, 2})

        assert mock_store.update_to_secondary.await_args_list == [call(2, 1), call(3, 1)]
        assert view.secondary_contact_ids == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_three_way_merge_flattens(self, resolver, mock_store):
        a = make_contact(1, email="a@x.com", minutes=30)
        b = make_contact(2, phone="222", minutes=0)
        c = make_contact(3, email="c@x.com", minutes=10)
        mock_store.find_by_ids_or_linked_ids.side_effect = [
            [a, b, c],
            [
                make_contact(1, email="a@x.com", linked_id=2, minutes=30),
                b,
                make_contact(3, email="c@x.com", linked_id=2, minutes=10),
            ],
        ]

        view = await resolver.resolve("a@x.com", "222", {1, 2, 3})

        demotions = sorted(entry.args for entry in mock_store.update_to_secondary.await_args_list)
        assert demotions == [(1, 2), (3, 2)]
        assert view.primary_contact_id == 2
        assert view.secondary_contact_ids == [3, 1]

    @pytest.mark.asyncio
    async def test_merge_and_append_in_one_request(self, resolver, mock_store):
        older = make_contact(1, email="a@x.com")
        younger = make_contact(2, phone="222", minutes=5)
        new = make_contact(3, email="new@x.com", phone="222", linked_id=1, minutes=9)
        mock_store.find_by_ids_or_linked_ids.side_effect = [
            [older, younger],
            [older, make_contact(2, phone="222", linked_id=1, minutes=5), new],
        ]
        mock_store.insert.return_value = new

        view = await resolver.resolve("new@x.com", "222", {1, 2})

        mock_store.update_to_secondary.assert_awaited_once_with(2, 1)
        mock_store.insert.assert_awaited_once_with("new@x.com", "222", Secondary(linked_id=1))
        assert view.emails == ["a@x.com", "new@x.com"]
        assert view.secondary_contact_ids == [2, 3]


class TestInvariantViolations:

    @pytest.mark.asyncio
    async def test_demoted_root_is_stale(self, resolver, mock_store):
        """A root demoted after matching must be retried, not merged."""
        demoted = make_contact(1, email="a@x.com", linked_id=9, minutes=5)
        mock_store.find_by_ids_or_linked_ids.side_effect = [
            [demoted],
            [make_contact(9, email="z@x.com"), demoted],
        ]

        with pytest.raises(StaleClusterError) as exc_info:
            await resolver.resolve("a@x.com", None, {1})

        assert exc_info.value.contact_id == 1
        assert mock_store.find_by_ids_or_linked_ids.await_args_list[1] == call({9})
        mock_store.insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_secondary_chain_is_fatal(self, resolver, mock_store):
        """A secondary linked to another secondary is corrupt data, not a race."""
        mock_store.find_by_ids_or_linked_ids.side_effect = [
            [
                make_contact(2, email="s1@x.com", linked_id=1, minutes=1),
                make_contact(3, email="s2@x.com", linked_id=2, minutes=2),
            ],
            [make_contact(1, email="p@x.com"), make_contact(2, email="s1@x.com", linked_id=1, minutes=1)],
        ]

        with pytest.raises(ClusterIntegrityError, match=r"\[3\] link to 2"):
            await resolver.resolve("s2@x.com", None, {2})

        mock_store.insert.assert_not_called()
        mock_store.update_to_secondary.assert_not_called()

    @pytest.mark.asyncio
    async def test_root_linked_to_secondary_is_fatal(self, resolver, mock_store):
        mock_store.find_by_ids_or_linked_ids.side_effect = [
            [make_contact(4, email="a@x.com", linked_id=8, minutes=3)],
            [make_contact(8, email="b@x.com", linked_id=7, minutes=1)],
        ]

        with pytest.raises(ClusterIntegrityError, match="not a primary"):
            await resolver.resolve("a@x.com", None, {4})

    @pytest.mark.asyncio
    async def test_missing_root_is_fatal(self, resolver, mock_store):
        """A secondary pointing at a non-existent primary is not repaired."""
        mock_store.find_by_ids_or_linked_ids.return_value = [
            make_contact(5, email="a@x.com", linked_id=4),
        ]

        with pytest.raises(ClusterIntegrityError):
            await resolver.resolve("a@x.com", None, {4})

        mock_store.insert.assert_not_called()
        mock_store.update_to_secondary.assert_not_called()


class TestHelpers:

    def test_select_primary_prefers_oldest(self):
        cluster = [
            make_contact(1, minutes=20),
            make_contact(2, minutes=5),
            make_contact(3, linked_id=2, minutes=0),
        ]
        assert select_primary(cluster).id == 2

    def test_select_primary_breaks_ties_by_id(self):
        cluster = [make_contact(8), make_contact(4), make_contact(6)]
        assert select_primary(cluster).id == 4

    def test_select_primary_without_primary(self):
        with pytest.raises(ClusterIntegrityError):
            select_primary([make_contact(3, linked_id=1)])

    def test_has_new_information(self):
        cluster = [make_contact(1, email="a@x.com", phone="111")]
        assert not has_new_information("a@x.com", "111", cluster)
        assert not has_new_information(None, "111", cluster)
        assert has_new_information("b@x.com", "111", cluster)
        assert has_new_information("a@x.com", "222", cluster)

    def test_projection_puts_primary_values_first(self):
        cluster = [
            make_contact(3, email="old@x.com", phone="300", linked_id=5, minutes=0),
            make_contact(5, email="primary@x.com", phone="500", minutes=10),
            make_contact(6, email="old@x.com", phone="600", linked_id=5, minutes=20),
        ]

        view = project_cluster(5, cluster)

        assert view.emails == ["primary@x.com", "old@x.com"]
        assert view.phone_numbers == ["500", "300", "600"]
        assert view.secondary_contact_ids == [3, 6]

    def test_projection_rejects_chained_member(self):
        cluster = [
            make_contact(1, email="a@x.com"),
            make_contact(2, email="b@x.com", linked_id=7, minutes=1),
        ]
        with pytest.raises(ClusterIntegrityError):
            project_cluster(1, cluster)
