"""
Contact Identity - Data Models

SQLAlchemy row model for the contact table, plus the immutable domain
values the matcher and resolver operate on.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Union

from sqlalchemy import Column, Integer, String, DateTime, Index, CheckConstraint

from database.connection import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LinkPrecedenceType(str, Enum):
    """Stored value of the link_precedence column"""
    PRIMARY = "primary"
    SECONDARY = "secondary"


class ContactDB(Base):
    """
    Contact - one observed (email, phone) pair.

    Primary rows have no link; secondary rows point at the primary of
    their cluster through linked_id.
    """
    __tablename__ = "contact"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(String(50), index=True)
    email = Column(String(255), index=True)
    linked_id = Column(Integer, index=True)
    link_precedence = Column(String(10), nullable=False, default=LinkPrecedenceType.PRIMARY.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="ck_contact_precedence_link",
        ),
        Index("ix_contact_precedence_created", "link_precedence", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ContactDB(id={self.id}, precedence={self.link_precedence}, linked_id={self.linked_id})>"


# ==================== DOMAIN VALUES ====================

@dataclass(frozen=True)
class Primary:
    """Precedence of the canonical record of a cluster."""

    @property
    def value(self) -> str:
        return LinkPrecedenceType.PRIMARY.value


@dataclass(frozen=True)
class Secondary:
    """Precedence of a record folded into the cluster of `linked_id`."""
    linked_id: int

    @property
    def value(self) -> str:
        return LinkPrecedenceType.SECONDARY.value


LinkPrecedence = Union[Primary, Secondary]


@dataclass(frozen=True)
class Contact:
    """Immutable snapshot of a contact row as read from the store."""
    id: int
    email: Optional[str]
    phone_number: Optional[str]
    precedence: LinkPrecedence
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return isinstance(self.precedence, Primary)

    @property
    def linked_id(self) -> Optional[int]:
        if isinstance(self.precedence, Secondary):
            return self.precedence.linked_id
        return None

    @property
    def root_id(self) -> int:
        """Id of the primary this record belongs to."""
        if isinstance(self.precedence, Secondary):
            return self.precedence.linked_id
        return self.id

    @property
    def seniority(self):
        """Sort key: older first, lower id breaks ties."""
        return (self.created_at, self.id)


@dataclass
class ClusterView:
    """Projection of one resolved cluster returned to callers."""
    primary_contact_id: int
    emails: List[str] = field(default_factory=list)
    phone_numbers: List[str] = field(default_factory=list)
    secondary_contact_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primaryContactId": self.primary_contact_id,
            "emails": list(self.emails),
            "phoneNumbers": list(self.phone_numbers),
            "secondaryContactIds": list(self.secondary_contact_ids),
        }
