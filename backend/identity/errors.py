"""
Contact Identity - Errors

Validation errors are the caller's fault; everything else is reported as
an internal error. Retryable conflicts are re-run by IdentityService.
"""

from typing import Optional


class IdentityError(Exception):
    """Base class for identity resolution failures."""


class IdentityValidationError(IdentityError):
    """The request carries neither an email nor a phone number."""

    def __init__(self, message: str, parameter: Optional[str] = None):
        super().__init__(message)
        self.parameter = parameter


class StorageError(IdentityError):
    """A read or write against the contact store failed."""


class RetryableConflictError(StorageError):
    """A concurrent writer got in the way; re-running the request is safe."""


class StaleClusterError(RetryableConflictError):
    """A matched primary was demoted by a concurrent merge after matching."""

    def __init__(self, contact_id: int):
        super().__init__(f"Contact {contact_id} is no longer a primary")
        self.contact_id = contact_id


class ConcurrencyConflictError(StorageError):
    """Retryable conflicts persisted past the attempt budget."""

    def __init__(self, attempts: int):
        super().__init__(f"Identify gave up after {attempts} conflicting attempts")
        self.attempts = attempts


class ClusterIntegrityError(IdentityError):
    """Stored links violate the one-primary-per-cluster invariants."""
