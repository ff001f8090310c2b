"""
Seller funds exceptions.

Services return ServiceResult for expected failures and carry these error
codes in ServiceResult.error_code. The exception classes exist for the
places where a failure has to unwind a transaction (a release that fails
while a payout is being marked paid) and for the transfer provider boundary.

Exception Hierarchy:
    ValidationError (core)
    ├── AmountMismatchError - allocations do not sum to the payment total
    ├── InvalidStateError - operation not allowed from the current status
    ├── InvalidRangeError - amount, rate, period or date outside its range
    └── CurrencyMismatchError - amounts in different currencies combined

    ConflictError (core)
    ├── AllocationClaimedError - allocation held by an active payout item
    ├── RuleOverlapError - commission rule windows overlap in one scope
    ├── DuplicateVersionError - settlement version written concurrently
    ├── StaleRecordError - optimistic locking conflict
    ├── LockAcquisitionError - distributed lock timeout
    └── InvalidStateTransitionError - FSM transition not allowed

    ExternalServiceError (core)
    └── TransferProviderError - payment transfer provider failure
        ├── TransferRejectedError - permanent, do not retry
        ├── TransferUnavailableError - transient, retry with backoff
        └── TransferTimeoutError - outcome unknown, reconcile before acting

Usage:
    from funds.exceptions import InvalidStateError

    raise InvalidStateError(
        "Allocation is not held",
        details={"allocation_id": str(allocation.id), "status": allocation.status},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import ConflictError, ExternalServiceError, ValidationError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
INVALID_STATE = "INVALID_STATE"
INVALID_RANGE = "INVALID_RANGE"
CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
NOT_FOUND = "NOT_FOUND"
NOTHING_ELIGIBLE = "NOTHING_ELIGIBLE"
BELOW_THRESHOLD = "BELOW_THRESHOLD"
NO_DATA = "NO_DATA"
RULE_OVERLAP = "RULE_OVERLAP"
ALLOCATION_CLAIMED = "ALLOCATION_CLAIMED"
DUPLICATE_VERSION = "DUPLICATE_VERSION"
PAYOUT_SETTINGS_MISSING = "PAYOUT_SETTINGS_MISSING"
PAYOUT_SETTINGS_UNVERIFIED = "PAYOUT_SETTINGS_UNVERIFIED"
UNKNOWN_OUTCOME = "UNKNOWN_OUTCOME"
LEDGER_FAILED = "LEDGER_FAILED"
NUMBERING_FAILED = "NUMBERING_FAILED"


# =============================================================================
# Validation Errors
# =============================================================================


class AmountMismatchError(ValidationError):
    default_error_code: str = AMOUNT_MISMATCH


class InvalidStateError(ValidationError):
    """Raised when an operation is requested from a status that forbids it."""

    default_error_code: str = INVALID_STATE


class InvalidRangeError(ValidationError):
    default_error_code: str = INVALID_RANGE


class CurrencyMismatchError(ValidationError):
    default_error_code: str = CURRENCY_MISMATCH


# =============================================================================
# Conflicts
# =============================================================================


class AllocationClaimedError(ConflictError):
    """
    Raised when an allocation is already part of an active payout.

    The partial unique index on active payout items is the final guard;
    this error is what callers see when it fires.
    """

    default_error_code: str = ALLOCATION_CLAIMED


class RuleOverlapError(ConflictError):
    default_error_code: str = RULE_OVERLAP


class DuplicateVersionError(ConflictError):
    default_error_code: str = DUPLICATE_VERSION


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Another worker is scheduling or executing for the same store or payout.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    default_error_code: str = "INVALID_STATE_TRANSITION"


# =============================================================================
# Transfer Provider Errors
# =============================================================================


class TransferProviderError(ExternalServiceError):
    """
    Base exception for payment transfer provider failures.

    Attributes:
        provider_code: Provider's own error code, if any
        is_retryable: Whether a retry with the same idempotency key may succeed
        outcome_unknown: The request may have been applied by the provider
    """

    default_error_code: str = "TRANSFER_FAILED"
    is_retryable: bool = False
    outcome_unknown: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if provider_code:
            details["provider_code"] = provider_code
        super().__init__(message, error_code=error_code, details=details)
        self.provider_code = provider_code


class TransferRejectedError(TransferProviderError):
    """
    Permanent rejection (invalid destination account, invalid request,
    authentication failure). Retrying the same request cannot succeed.
    """

    default_error_code: str = "TRANSFER_REJECTED"
    is_retryable: bool = False


class TransferUnavailableError(TransferProviderError):
    """Provider rate limited us or returned a server error."""

    default_error_code: str = "TRANSFER_UNAVAILABLE"
    is_retryable: bool = True


class TransferTimeoutError(TransferProviderError):
    """
    The call timed out or the connection dropped.

    IMPORTANT: the transfer may have been created. The payout stays
    PROCESSING and is reconciled against the provider before it is marked
    paid or failed.
    """

    default_error_code: str = "TRANSFER_TIMEOUT"
    is_retryable: bool = True
    outcome_unknown: bool = True
