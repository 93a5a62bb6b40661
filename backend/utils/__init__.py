"""
Utils Package

Provides utility modules for:
- validation_errors: Structured error bodies for the HTTP boundary
"""

from .validation_errors import (
    ValidationErrorResponse,
    raise_missing_parameter,
    raise_internal_error,
)

__all__ = [
    'ValidationErrorResponse',
    'raise_missing_parameter',
    'raise_internal_error',
]
