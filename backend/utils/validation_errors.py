"""
Structured Validation Error Utilities

Provides standardized error responses for input errors.
Helps the UI tell an operator mistake apart from a service problem.

Error Response Format:
{
    "error": "missing_parameter" | "invalid_parameter" | "validation_error",
    "parameter": "chequeImages",
    "message": "Invalid file type. Only JPEG and PNG images are supported."
}
"""

from fastapi import HTTPException, status
from typing import Optional, Any


class ValidationErrorResponse:
    """Structured validation error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        return {
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        Args:
            parameter: Name of the invalid parameter
            message: Description of the validation error
            value: The invalid value (optional, for debugging)

        Returns:
            Structured error dict
        """
        response = {
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]  # Truncate for safety
        return response

    @staticmethod
    def validation_error(message: str, details: Optional[dict] = None) -> dict:
        response = {
            "error": "validation_error",
            "parameter": None,
            "message": message
        }
        if details:
            response["details"] = details
        return response


def raise_missing_parameter(parameter: str, message: Optional[str] = None):
    """
    Raise HTTPException with structured missing parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.missing_parameter(parameter, message)
    )


def raise_invalid_parameter(parameter: str, message: str, value: Optional[Any] = None):
    """
    Raise HTTPException with structured invalid parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.invalid_parameter(parameter, message, value)
    )


def raise_validation_error(message: str, details: Optional[dict] = None):
    """
    Raise HTTPException with structured validation error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.validation_error(message, details)
    )
