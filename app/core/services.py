"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Service Layer Philosophy:
    Services encapsulate business logic separate from models and jobs.
    Models hold data and state transitions, services hold the rules,
    Celery tasks orchestrate services on a schedule.

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, business rules,
      conflicts the caller must resolve)
    - Exceptions: Use for unexpected failures (database unreachable, bugs)

Usage:
    from core.services import BaseService, ServiceResult

    class PayoutSettingsService(BaseService):
        def verify(self, store_id) -> ServiceResult[PayoutSettings]:
            settings = PayoutSettings.objects.filter(store_id=store_id).first()
            if settings is None:
                return ServiceResult.failure(
                    "Payout settings not configured",
                    error_code="PAYOUT_SETTINGS_MISSING",
                )

            with self.atomic():
                settings.is_verified = True
                settings.save(update_fields=["is_verified", "updated_at"])

            self.get_logger().info("Verified payout settings", extra={"store_id": str(store_id)})
            return ServiceResult.success(settings)

    result = PayoutSettingsService().verify(store_id)
    if not result:
        log_failure(result.error_code)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

    from core.exceptions import BaseApplicationError

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.
    Use this for expected failures (validation errors, business rule violations).

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for caller handling
        errors: Field-level errors for validation failures

    Usage:
        # Success case
        return ServiceResult.success(settlement)

        # Failure case
        return ServiceResult.failure("Settlement is not finalized", "INVALID_STATE")

        # Validation errors with field details
        return ServiceResult.failure(
            "Validation failed",
            error_code="INVALID_RANGE",
            errors={"commission_rate": ["Must be between 0 and 100"]},
        )
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        data: T | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code
            errors: Field-level errors (for validation failures)
            data: Optional context for the caller (e.g. the conflicting rules)

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            data=data,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own error_code; anything else falls
        back to the exception class name.

        Example:
            try:
                provider.transfer(request)
            except TransferRejectedError as e:
                return ServiceResult.from_exception(e)
        """
        code = error_code or getattr(exc, "error_code", None)
        message = getattr(exc, "message", None) or str(exc)
        return cls(
            success=False,
            error=message,
            error_code=code or exc.__class__.__name__.upper(),
        )

    def __bool__(self) -> bool:
        """Allow using result in boolean context (same as result.success)."""
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management
    - Exception handling patterns

    Design Notes:
        - Collaborators (repositories, clock, providers) are passed to the
          constructor; services hold no other state
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for easy filtering
        (e.g. ``funds.services.payout_scheduler.PayoutScheduler``).
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are wrapped in a
        transaction. If any operation raises, all changes are rolled back.
        Row locks taken with select_for_update() are held until the block exits.

        Example:
            with self.atomic():
                payment = self.escrow.get(payment_id, for_update=True)
                allocation.release(released_at=now)
                self.escrow.update_allocation(allocation)
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
        public_message: str | None = None,
        error_code: str | None = None,
    ) -> ServiceResult:
        """
        Convert exception to ServiceResult with logging.

        The full exception is logged; the returned message is replaced by
        ``public_message`` when given, so ledger and numbering internals never
        reach non-admin callers verbatim.

        Args:
            exc: The caught exception
            context: Additional context for logging
            log_level: Logging level (default ERROR)
            public_message: Sanitized message for the result
            error_code: Code to report instead of the exception's own

        Returns:
            ServiceResult with error details
        """
        logger = cls.get_logger()
        message = f"{context}: {exc}" if context else str(exc)
        logger.log(log_level, message, exc_info=True)

        result = ServiceResult.from_exception(exc, error_code=error_code)
        if public_message:
            result.error = public_message
        return result

    @classmethod
    def validate_required(cls, **kwargs) -> ServiceResult | None:
        """
        Validate that required fields are provided.

        Returns a failure result if any required field is None or empty.
        Returns None if all fields are valid.

        Example:
            validation = self.validate_required(reason=reason, reference=reference)
            if validation is not None:
                return validation
        """
        errors: dict[str, list[str]] = {}
        for field_name, value in kwargs.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[field_name] = ["This field is required."]

        if errors:
            return ServiceResult.failure(
                "Required fields missing",
                error_code="VALIDATION_ERROR",
                errors=errors,
            )
        return None

    @classmethod
    def failure_from_error(cls, error: BaseApplicationError) -> ServiceResult:
        """
        Turn a domain error raised deep in a workflow into a result.

        Logged at WARNING since these are expected outcomes.
        """
        cls.get_logger().warning(
            error.message,
            extra={"error_code": error.error_code, **error.details},
        )
        return ServiceResult.failure(
            error.message,
            error_code=error.error_code,
            errors={key: [str(value)] for key, value in error.details.items()} or None,
        )
