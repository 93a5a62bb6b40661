"""
Contact Identity - Service Layer

Entry point for the identify operation:
- validates the observation
- runs match + resolve inside one guarded section
- re-runs the section when a concurrent writer caused a retryable conflict
"""

import logging
from functools import lru_cache
from typing import Optional, Union

from config import get_settings

from .errors import IdentityValidationError, RetryableConflictError, ConcurrencyConflictError
from .matcher import ContactMatcher
from .models import ClusterView
from .resolver import ContactResolver
from .store import ContactStoreFactory, SqlContactStoreFactory

logger = logging.getLogger(__name__)


def normalize_attribute(value: Union[str, int, None]) -> Optional[str]:
    """Trim an incoming attribute; blank values count as absent."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class IdentityService:
    """
    Identity Service - reconciles contact observations into clusters.

    Ensures:
    - One primary per cluster, the oldest one
    - At most one primary created per never-seen attribute under concurrency
    - A failed attempt commits nothing
    """

    def __init__(self, stores: ContactStoreFactory, max_attempts: int = 3):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.stores = stores
        self.max_attempts = max_attempts

    async def identify(
        self,
        email: Optional[str] = None,
        phone_number: Union[str, int, None] = None,
    ) -> ClusterView:
        """
        Resolve an observation of (email, phone_number) to its cluster.

        Args:
            email: Email address, optional
            phone_number: Phone number, optional; numbers are converted to text

        Returns:
            ClusterView of the cluster the observation ended up in

        Raises:
            IdentityValidationError: neither attribute was provided
            StorageError: the store failed, or conflicts outlasted max_attempts
            ClusterIntegrityError: stored links break the cluster invariants
        """
        email = normalize_attribute(email)
        phone = normalize_attribute(phone_number)

        if not email and not phone:
            raise IdentityValidationError(
                "Provide email or phoneNumber", parameter="email|phoneNumber"
            )

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._identify_once(email, phone)
            except RetryableConflictError as e:
                logger.warning(f"Identify attempt {attempt}/{self.max_attempts} conflicted: {e}")

        raise ConcurrencyConflictError(self.max_attempts)

    async def _identify_once(self, email: Optional[str], phone: Optional[str]) -> ClusterView:
        async with self.stores.guarded() as store:
            await store.lock_attributes(email, phone)
            matched = await ContactMatcher(store).match(email, phone)
            return await ContactResolver(store).resolve(email, phone, matched)


@lru_cache()
def get_store_factory() -> SqlContactStoreFactory:
    """Process-wide store factory on the application engine."""
    from database import engine, AsyncSessionLocal

    return SqlContactStoreFactory(engine, AsyncSessionLocal)


def get_identity_service() -> IdentityService:
    """FastAPI dependency"""
    return IdentityService(
        get_store_factory(),
        max_attempts=get_settings().IDENTIFY_MAX_ATTEMPTS,
    )
