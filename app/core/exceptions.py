"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Machine-readable error codes shared with ServiceResult.error_code
- Detailed error information for logging and operator tooling

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Caller error, rejected synchronously
    ├── NotFoundError - Resource not found
    ├── ConflictError - State conflicts (duplicates, concurrent modifications)
    └── ExternalServiceError - Third-party service failures

Usage:
    from core.exceptions import ConflictError

    raise ConflictError(
        "Allocation is already claimed by an active payout",
        error_code="ALLOCATION_CLAIMED",
        details={"allocation_id": str(allocation.id)},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code
        details: Additional error context (ids, amounts, versions)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to a dictionary.

        Example:
            {
                "error": "Settlement not found",
                "error_code": "NOT_FOUND",
                "details": {"settlement_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for amount mismatches, out-of-range values and operations requested
    from a state that does not allow them. Never retried automatically.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource is not found."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Duplicate entries (unique constraint violations)
    - Concurrent modification conflicts
    - Optimistic locking failures

    Retrying unchanged input reproduces the conflict, so these surface to
    the caller or operator instead of being retried.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Note:
        Log the original error for debugging but don't expose internal
        details to sellers.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
