"""
Contact Identity Module

Reconciles partial contact observations (email, phone) into identity
clusters with one primary contact and any number of secondaries.

Features:
- Matching by email OR phone
- Cluster merging (oldest primary wins)
- Secondary creation for new information
- Guarded sections serializing concurrent writers
"""

from .models import (
    ContactDB,
    Contact,
    ClusterView,
    LinkPrecedenceType,
    Primary,
    Secondary,
)
from .errors import (
    IdentityError,
    IdentityValidationError,
    StorageError,
    RetryableConflictError,
    StaleClusterError,
    ConcurrencyConflictError,
    ClusterIntegrityError,
)
from .matcher import ContactMatcher
from .resolver import ContactResolver
from .store import ContactStore, ContactStoreFactory, SqlContactStore, SqlContactStoreFactory
from .service import IdentityService

__all__ = [
    'ContactDB',
    'Contact',
    'ClusterView',
    'LinkPrecedenceType',
    'Primary',
    'Secondary',
    'IdentityError',
    'IdentityValidationError',
    'StorageError',
    'RetryableConflictError',
    'StaleClusterError',
    'ConcurrencyConflictError',
    'ClusterIntegrityError',
    'ContactMatcher',
    'ContactResolver',
    'ContactStore',
    'ContactStoreFactory',
    'SqlContactStore',
    'SqlContactStoreFactory',
    'IdentityService',
]
