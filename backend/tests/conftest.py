"""
Shared fixtures for identity tests.

Store-level tests run against an on-disk SQLite database (aiosqlite) in a
per-test temporary directory.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio

from database import build_engine, build_session_factory, create_tables
from identity.models import ContactDB, Contact, LinkPrecedenceType
from identity.service import IdentityService
from identity.store import SqlContactStoreFactory, to_contact

BASE_TIME = datetime(2023, 4, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database with the contact table."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'contacts.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def stores(engine):
    return SqlContactStoreFactory(engine)


@pytest.fixture
def service(stores):
    return IdentityService(stores, max_attempts=3)


@pytest.fixture
def seed(engine):
    """
    Insert a contact row directly, bypassing the resolver.

    `minutes` offsets created_at from BASE_TIME so tests control seniority.
    """
    session_factory = build_session_factory(engine)

    async def _seed(
        email: Optional[str] = None,
        phone: Optional[str] = None,
        linked_id: Optional[int] = None,
        minutes: int = 0,
    ) -> Contact:
        created_at = BASE_TIME + timedelta(minutes=minutes)
        row = ContactDB(
            email=email,
            phone_number=phone,
            linked_id=linked_id,
            link_precedence=(
                LinkPrecedenceType.SECONDARY.value if linked_id else LinkPrecedenceType.PRIMARY.value
            ),
            created_at=created_at,
            updated_at=created_at,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(row)
            return to_contact(row)

    return _seed


@pytest.fixture
def load_all(stores):
    """Read every contact row, ordered by id."""

    async def _load_all():
        from sqlalchemy import select

        async with stores.session_factory() as session:
            result = await session.execute(select(ContactDB).order_by(ContactDB.id))
            return [to_contact(row) for row in result.scalars().all()]

    return _load_all
