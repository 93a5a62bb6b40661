"""
Contact Identity - Resolver

Turns the matched primary ids into one cluster:
- no match: create a new primary
- one or more: lock the roots, pick the oldest primary, fold the other
  clusters into it, append a secondary when the observation is new
- reload and project the cluster for the response
"""

import logging
from typing import Iterable, List, Optional, Sequence, Set

from .errors import ClusterIntegrityError, StaleClusterError
from .models import Contact, ClusterView, Primary, Secondary
from .store import ContactStore

logger = logging.getLogger(__name__)


def select_primary(cluster: Sequence[Contact]) -> Contact:
    """Oldest primary by created_at, lowest id on ties."""
    primaries = [c for c in cluster if c.is_primary]
    if not primaries:
        raise ClusterIntegrityError(
            f"Cluster of contacts {sorted(c.id for c in cluster)} has no primary"
        )
    return min(primaries, key=lambda c: c.seniority)


def has_new_information(
    email: Optional[str], phone: Optional[str], cluster: Sequence[Contact]
) -> bool:
    emails = {c.email for c in cluster if c.email}
    phones = {c.phone_number for c in cluster if c.phone_number}
    return bool((email and email not in emails) or (phone and phone not in phones))


def _distinct(values: Iterable[Optional[str]]) -> List[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def project_cluster(primary_id: int, cluster: Sequence[Contact]) -> ClusterView:
    """
    Build the response view of a cluster.

    The primary's own email and phone come first, the rest follow in
    seniority order. Secondary ids are listed in seniority order too.
    """
    primary = next((c for c in cluster if c.id == primary_id), None)
    if primary is None or not primary.is_primary:
        raise ClusterIntegrityError(f"Contact {primary_id} is not the primary of its cluster")

    members = sorted(cluster, key=lambda c: c.seniority)
    for member in members:
        if member.id != primary_id and member.linked_id != primary_id:
            raise ClusterIntegrityError(
                f"Contact {member.id} in cluster {primary_id} links to {member.linked_id}"
            )

    return ClusterView(
        primary_contact_id=primary_id,
        emails=_distinct([primary.email] + [c.email for c in members]),
        phone_numbers=_distinct([primary.phone_number] + [c.phone_number for c in members]),
        secondary_contact_ids=[c.id for c in members if c.id != primary_id],
    )


class ContactResolver:
    """Applies one observation to the store and returns the resulting cluster."""

    def __init__(self, store: ContactStore):
        self.store = store

    async def resolve(
        self,
        email: Optional[str],
        phone: Optional[str],
        matched_primary_ids: Iterable[int],
    ) -> ClusterView:
        roots = sorted(set(matched_primary_ids))

        if not roots:
            return await self._create_primary(email, phone)

        await self.store.lock_roots(roots)
        cluster = await self.store.find_by_ids_or_linked_ids(roots)
        await self._check_roots(roots, cluster)

        primary = select_primary(cluster)
        changed = False

        if len(roots) > 1:
            changed = await self._merge(primary, cluster)

        if has_new_information(email, phone, cluster):
            contact = await self.store.insert(email, phone, Secondary(linked_id=primary.id))
            logger.info(f"Appended secondary contact {contact.id} to cluster {primary.id}")
            changed = True

        if changed:
            cluster = await self.store.find_by_ids_or_linked_ids({primary.id})

        return project_cluster(primary.id, cluster)

    async def _create_primary(self, email: Optional[str], phone: Optional[str]) -> ClusterView:
        contact = await self.store.insert(email, phone, Primary())
        logger.info(f"Created primary contact {contact.id}")

        return ClusterView(
            primary_contact_id=contact.id,
            emails=[email] if email else [],
            phone_numbers=[phone] if phone else [],
            secondary_contact_ids=[],
        )

    async def _check_roots(self, roots: List[int], cluster: Sequence[Contact]) -> None:
        """
        Every matched root must still be a primary.

        A merge relinks a demoted primary and all of its members in one
        transaction. So a root demoted after matching has no members left
        and links to a live primary; that request is retried. A non-primary
        root that still has members, or that links to a non-primary, is a
        stored chain and is reported as corrupt.
        """
        by_id = {c.id: c for c in cluster}
        for root in roots:
            contact = by_id.get(root)
            if contact is None:
                raise ClusterIntegrityError(f"Linked primary contact {root} does not exist")
            if contact.is_primary:
                continue

            members = sorted(c.id for c in cluster if c.linked_id == root)
            if members:
                raise ClusterIntegrityError(
                    f"Contacts {members} link to {root}, which is not a primary"
                )

            parents = await self.store.find_by_ids_or_linked_ids({contact.linked_id})
            parent = next((c for c in parents if c.id == contact.linked_id), None)
            if parent is None or not parent.is_primary:
                raise ClusterIntegrityError(
                    f"Contact {root} links to {contact.linked_id}, which is not a primary"
                )
            raise StaleClusterError(root)

    async def _merge(self, primary: Contact, cluster: Sequence[Contact]) -> bool:
        """
        Fold every other cluster into `primary`.

        Demoted primaries and their secondaries are all pointed straight
        at the survivor, so the merged cluster stays one level deep.
        """
        demoted: Set[int] = {c.id for c in cluster if c.is_primary and c.id != primary.id}
        if not demoted:
            return False

        for contact in sorted(cluster, key=lambda c: c.seniority):
            if contact.id in demoted or contact.linked_id in demoted:
                await self.store.update_to_secondary(contact.id, primary.id)

        logger.info(
            f"Merged clusters {sorted(demoted)} into {primary.id}",
            extra={"primary_contact_id": primary.id, "demoted_contact_ids": sorted(demoted)},
        )
        return True
