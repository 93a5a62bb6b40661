"""
Contact Identity - Matcher

Finds the clusters an observation touches.
"""

import logging
from typing import Optional, Set

from .store import ContactStore

logger = logging.getLogger(__name__)


class ContactMatcher:
    """Maps (email, phone) onto the ids of the primaries they belong to."""

    def __init__(self, store: ContactStore):
        self.store = store

    async def match(self, email: Optional[str], phone: Optional[str]) -> Set[int]:
        """
        Return the primary ids of every record sharing the email OR the phone.

        A primary resolves to its own id, a secondary to its linked_id.
        Empty input matches nothing and does not touch the store.
        """
        if not email and not phone:
            return set()

        records = await self.store.find_by_email_or_phone(email, phone)
        roots = {record.root_id for record in records}

        logger.debug(f"Matched {len(records)} contacts across {len(roots)} clusters")
        return roots
