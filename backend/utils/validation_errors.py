"""
Structured Error Utilities

Provides standardized error bodies so callers can tell client mistakes
from server failures.

Error Response Format:
{
    "error": "missing_parameter" | "internal_error",
    "parameter": "email|phoneNumber",
    "message": "Provide email or phoneNumber"
}
"""

from fastapi import HTTPException, status
from typing import Optional


class ValidationErrorResponse:
    """Structured error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        """
        Create a missing parameter error response.

        Args:
            parameter: Name of the missing parameter
            message: Optional custom message

        Returns:
            Structured error dict
        """
        return {
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }

    @staticmethod
    def internal_error(message: Optional[str] = None, error_type: Optional[str] = None) -> dict:
        response = {
            "error": "internal_error",
            "message": message or "Internal server error"
        }
        if error_type:
            response["type"] = error_type
        return response


def raise_missing_parameter(
    parameter: str,
    message: Optional[str] = None,
    status_code: int = status.HTTP_400_BAD_REQUEST
):
    """
    Raise HTTPException with structured missing parameter error.

    Raises:
        HTTPException with a 400 status and structured error body
    """
    raise HTTPException(
        status_code=status_code,
        detail=ValidationErrorResponse.missing_parameter(parameter, message)
    )


def raise_internal_error(message: Optional[str] = None, error_type: Optional[str] = None):
    """
    Raise HTTPException with a structured internal error.

    Raises:
        HTTPException with a 500 status
    """
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=ValidationErrorResponse.internal_error(message, error_type)
    )
