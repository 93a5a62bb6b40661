"""
Contact Identity - Storage Boundary

The matcher and resolver only see ContactStore. Every identify call runs
inside one guarded section (ContactStoreFactory.guarded): a transaction
that commits when the block exits cleanly and rolls back otherwise.

Serialization inside a guarded section:
- PostgreSQL: transaction-scoped advisory locks, first on the request's
  attributes (create path), then on the matched cluster roots in
  ascending id order (merge path).
- Any other backend (SQLite in development and tests): whole sections are
  serialized by a process-local asyncio.Lock.
"""

import asyncio
import functools
import hashlib
import logging
from contextlib import asynccontextmanager
from datetime import timezone
from typing import AsyncIterator, Iterable, List, Optional, Protocol, AsyncContextManager

from sqlalchemy import select, update, or_, text
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .errors import IdentityError, StorageError, RetryableConflictError, ClusterIntegrityError
from .models import (
    ContactDB, Contact, LinkPrecedence, LinkPrecedenceType, Primary, Secondary, utc_now
)

logger = logging.getLogger(__name__)

# Advisory lock namespaces (first argument of pg_advisory_xact_lock(int, int))
ATTRIBUTE_LOCK_NAMESPACE = 7301
ROOT_LOCK_NAMESPACE = 7302

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}
UNIQUE_VIOLATION = "23505"
CHECK_VIOLATION = "23514"


class ContactStore(Protocol):
    """Storage operations consumed by the matcher and resolver."""

    async def find_by_email_or_phone(
        self, email: Optional[str], phone: Optional[str]
    ) -> List[Contact]:
        ...

    async def find_by_ids_or_linked_ids(self, ids: Iterable[int]) -> List[Contact]:
        ...

    async def insert(
        self, email: Optional[str], phone: Optional[str], precedence: LinkPrecedence
    ) -> Contact:
        ...

    async def update_to_secondary(self, contact_id: int, linked_id: int) -> None:
        ...

    async def lock_attributes(self, email: Optional[str], phone: Optional[str]) -> None:
        ...

    async def lock_roots(self, ids: Iterable[int]) -> None:
        ...


class ContactStoreFactory(Protocol):
    """Opens guarded sections over the contact store."""

    def guarded(self) -> AsyncContextManager[ContactStore]:
        ...


# ==================== ERROR TRANSLATION ====================

def translate_error(exc: SQLAlchemyError) -> IdentityError:
    """Map a SQLAlchemy failure onto the identity error taxonomy."""
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        message = str(orig)
        if isinstance(exc, IntegrityError):
            if sqlstate == UNIQUE_VIOLATION or "UNIQUE constraint failed" in message:
                return RetryableConflictError(f"Unique violation: {orig}")
            if sqlstate == CHECK_VIOLATION or "CHECK constraint failed" in message:
                return ClusterIntegrityError(f"Contact row rejected by the database: {orig}")
        if sqlstate in RETRYABLE_SQLSTATES:
            return RetryableConflictError(f"Transaction conflict ({sqlstate}): {orig}")
        if isinstance(exc, OperationalError) and "database is locked" in message:
            return RetryableConflictError(f"Database busy: {orig}")

    # str(exc) would include the bound parameters, i.e. customer data
    detail = exc.orig if isinstance(exc, DBAPIError) else type(exc).__name__
    return StorageError(f"Contact store failure: {detail}")


def storage_operation(func):
    """Wrap SQLAlchemy failures raised by a store method."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as e:
            raise translate_error(e) from e

    return wrapper


def attribute_lock_key(kind: str, value: str) -> int:
    """Stable signed 32-bit key for an attribute value."""
    digest = hashlib.blake2b(f"{kind}:{value}".encode("utf-8"), digest_size=4).digest()
    return int.from_bytes(digest, "big", signed=True)


def to_contact(row: ContactDB) -> Contact:
    """Convert a row into a domain Contact, rejecting invalid link states."""
    if row.link_precedence == LinkPrecedenceType.PRIMARY.value:
        if row.linked_id is not None:
            raise ClusterIntegrityError(f"Primary contact {row.id} carries linked_id {row.linked_id}")
        precedence: LinkPrecedence = Primary()
    elif row.link_precedence == LinkPrecedenceType.SECONDARY.value:
        if row.linked_id is None:
            raise ClusterIntegrityError(f"Secondary contact {row.id} has no linked_id")
        precedence = Secondary(linked_id=row.linked_id)
    else:
        raise ClusterIntegrityError(
            f"Contact {row.id} has unknown link_precedence {row.link_precedence!r}"
        )

    return Contact(
        id=row.id,
        email=row.email,
        phone_number=row.phone_number,
        precedence=precedence,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        deleted_at=_as_utc(row.deleted_at) if row.deleted_at else None,
    )


def _as_utc(value):
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ==================== SQLALCHEMY IMPLEMENTATION ====================

class SqlContactStore:
    """ContactStore bound to one AsyncSession inside an open transaction."""

    def __init__(self, session: AsyncSession, advisory_locks: bool = False):
        self.session = session
        self.advisory_locks = advisory_locks

    async def _select(self, condition) -> List[Contact]:
        result = await self.session.execute(
            select(ContactDB)
            .where(condition)
            .order_by(ContactDB.created_at, ContactDB.id)
            .execution_options(populate_existing=True)
        )
        return [to_contact(row) for row in result.scalars().all()]

    @storage_operation
    async def find_by_email_or_phone(
        self, email: Optional[str], phone: Optional[str]
    ) -> List[Contact]:
        conditions = []
        if email:
            conditions.append(ContactDB.email == email)
        if phone:
            conditions.append(ContactDB.phone_number == phone)
        if not conditions:
            return []
        return await self._select(or_(*conditions))

    @storage_operation
    async def find_by_ids_or_linked_ids(self, ids: Iterable[int]) -> List[Contact]:
        ids = sorted(set(ids))
        if not ids:
            return []
        return await self._select(or_(ContactDB.id.in_(ids), ContactDB.linked_id.in_(ids)))

    @storage_operation
    async def insert(
        self, email: Optional[str], phone: Optional[str], precedence: LinkPrecedence
    ) -> Contact:
        now = utc_now()
        row = ContactDB(
            email=email,
            phone_number=phone,
            linked_id=precedence.linked_id if isinstance(precedence, Secondary) else None,
            link_precedence=precedence.value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return to_contact(row)

    @storage_operation
    async def update_to_secondary(self, contact_id: int, linked_id: int) -> None:
        result = await self.session.execute(
            update(ContactDB)
            .where(ContactDB.id == contact_id)
            .values(
                linked_id=linked_id,
                link_precedence=LinkPrecedenceType.SECONDARY.value,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ClusterIntegrityError(f"Contact {contact_id} vanished while relinking")

    @storage_operation
    async def lock_attributes(self, email: Optional[str], phone: Optional[str]) -> None:
        if not self.advisory_locks:
            return
        keys = set()
        if email:
            keys.add(attribute_lock_key("email", email))
        if phone:
            keys.add(attribute_lock_key("phone", phone))
        for key in sorted(keys):
            await self._advisory_lock(ATTRIBUTE_LOCK_NAMESPACE, key)

    @storage_operation
    async def lock_roots(self, ids: Iterable[int]) -> None:
        if not self.advisory_locks:
            return
        for contact_id in sorted(set(ids)):
            await self._advisory_lock(ROOT_LOCK_NAMESPACE, contact_id)

    async def _advisory_lock(self, namespace: int, key: int) -> None:
        await self.session.execute(
            text("SELECT pg_advisory_xact_lock(CAST(:namespace AS integer), CAST(:key AS integer))"),
            {"namespace": namespace, "key": key},
        )


class SqlContactStoreFactory:
    """
    Opens guarded sections on an async engine.

    One factory should be shared per engine: on backends without advisory
    locks its asyncio.Lock is what serializes concurrent sections.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.engine = engine
        self.session_factory = session_factory or async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
        )
        self.advisory_locks = engine.dialect.name == "postgresql"
        self._section_lock = asyncio.Lock()

    @asynccontextmanager
    async def guarded(self) -> AsyncIterator[SqlContactStore]:
        if self.advisory_locks:
            async with self._transaction() as store:
                yield store
        else:
            async with self._section_lock:
                async with self._transaction() as store:
                    yield store

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[SqlContactStore]:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield SqlContactStore(session, advisory_locks=self.advisory_locks)
            except SQLAlchemyError as e:
                # Raised by BEGIN/COMMIT themselves; store calls translate their own
                raise translate_error(e) from e
