"""
Stripe Connect adapter for seller payouts.

StripeAdapter wraps the Stripe Transfer API: every call is bounded by
STRIPE_API_TIMEOUT_SECONDS, carries an idempotency key, is logged with its
duration, and has Stripe SDK errors translated into TransferProviderError
subclasses.

StripeTransferProvider adapts StripeAdapter to the TransferProvider
contract used by PayoutScheduler.

Error mapping:
    CardError, InvalidRequestError, AuthenticationError,
    PermissionError                    -> TransferRejectedError (permanent)
    RateLimitError, APIError           -> TransferUnavailableError (retry)
    APIConnectionError (incl. timeout) -> TransferTimeoutError (unknown)

Usage:
    from funds.adapters import StripeAdapter

    transfer = StripeAdapter.create_transfer(
        amount_cents=5400,
        destination_account="acct_123",
        idempotency_key=str(payout.id),
        transfer_group=f"payout:{payout.id}",
    )
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from funds.exceptions import (
    TransferProviderError,
    TransferRejectedError,
    TransferTimeoutError,
    TransferUnavailableError,
)
from funds.protocols import TransferRequest, TransferResult
from funds.state_machines import PayoutMethod

if TYPE_CHECKING:
    from funds.models import SellerPayout


@dataclass
class StripeTransfer:
    """
    A Stripe Transfer.

    Attributes:
        id: Transfer ID (tr_xxx)
        amount_cents: Amount transferred in cents
        currency: Currency code
        destination_account: Connected account ID (acct_xxx)
        transfer_group: Group tying the transfer to its payout
        reversed: Transfer was reversed after creation
    """

    id: str
    amount_cents: int
    currency: str
    destination_account: str
    transfer_group: str = ""
    reversed: bool = False
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_stripe(cls, transfer: Any) -> StripeTransfer:
        return cls(
            id=transfer.id,
            amount_cents=transfer.amount,
            currency=transfer.currency,
            destination_account=transfer.destination,
            transfer_group=transfer.transfer_group or "",
            reversed=bool(transfer.reversed),
            metadata=dict(transfer.metadata or {}),
        )


def transfer_group_for(payout_id: Any) -> str:
    return f"payout:{payout_id}"


class StripeAdapter:
    """
    Stripe Transfer API operations.

    All methods are class methods; no instance state is kept.
    """

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.STRIPE_API_TIMEOUT_SECONDS
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def create_transfer(
        cls,
        amount_cents: int,
        destination_account: str,
        idempotency_key: str,
        currency: str = "usd",
        transfer_group: str = "",
        metadata: dict[str, str] | None = None,
    ) -> StripeTransfer:
        """
        Create a transfer to a connected account.

        Raises:
            TransferRejectedError: Invalid destination or request
            TransferUnavailableError: Rate limit or Stripe server error
            TransferTimeoutError: No answer; the transfer may exist
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_transfer",
            "amount_cents": amount_cents,
            "destination_account": destination_account,
            "idempotency_key": idempotency_key,
        }
        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            params: dict[str, Any] = {
                "amount": amount_cents,
                "currency": currency,
                "destination": destination_account,
                "metadata": metadata or {},
            }
            if transfer_group:
                params["transfer_group"] = transfer_group

            transfer = stripe.Transfer.create(idempotency_key=idempotency_key, **params)
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "transfer_id": transfer.id,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return StripeTransfer.from_stripe(transfer)

    @classmethod
    def list_transfers_by_group(cls, transfer_group: str) -> list[StripeTransfer]:
        """Transfers created with the given transfer_group."""
        cls._configure_stripe()
        log_context = {"operation": "list_transfers", "transfer_group": transfer_group}
        start_time = time.time()

        try:
            response = stripe.Transfer.list(transfer_group=transfer_group, limit=10)
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        return [StripeTransfer.from_stripe(transfer) for transfer in response.data]

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to transfer provider exceptions.

        Raises:
            TransferRejectedError: Permanent failures
            TransferUnavailableError: Transient failures
            TransferTimeoutError: Outcome unknown
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, (stripe.CardError, stripe.InvalidRequestError)):
            logger.error(
                "Stripe rejected the request",
                extra={**log_context, "stripe_code": error.code},
            )
            raise TransferRejectedError(
                str(error.user_message or error),
                provider_code=error.code or "invalid_request",
            ) from error

        if isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise TransferRejectedError(
                "Stripe authentication failed",
                provider_code="authentication_error",
            ) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise TransferUnavailableError(
                "Stripe rate limit exceeded",
                provider_code="rate_limit",
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise TransferTimeoutError(
                "Could not get an answer from Stripe",
                provider_code="api_connection_error",
            ) from error

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise TransferUnavailableError(
                "Stripe service error",
                provider_code="api_error",
            ) from error

        if isinstance(error, stripe.StripeError):
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise TransferProviderError(str(error), provider_code=error.code) from error


class StripeTransferProvider:
    """TransferProvider backed by Stripe Connect transfers."""

    def __init__(self, adapter: type[StripeAdapter] = StripeAdapter):
        self.adapter = adapter

    def transfer(self, request: TransferRequest) -> TransferResult:
        if request.payout_method != PayoutMethod.STRIPE_CONNECT:
            return TransferResult.failed(
                error_code="unsupported_payout_method",
                error_message=f"Stripe cannot pay out via {request.payout_method}",
                retryable=False,
            )
        if not request.destination_reference:
            return TransferResult.failed(
                error_code="missing_destination",
                error_message="Store has no connected account",
                retryable=False,
            )

        try:
            transfer = self.adapter.create_transfer(
                amount_cents=request.amount_cents,
                destination_account=request.destination_reference,
                idempotency_key=request.idempotency_key,
                currency=request.currency,
                transfer_group=transfer_group_for(request.payout_id),
                metadata=request.metadata,
            )
        except TransferTimeoutError as e:
            return TransferResult.unknown(e.message)
        except TransferProviderError as e:
            return TransferResult.failed(
                error_code=e.provider_code or e.error_code,
                error_message=e.message,
                retryable=e.is_retryable,
            )
        return TransferResult.succeeded(transfer.id)

    def lookup(self, payout: SellerPayout) -> TransferResult:
        """
        Find the transfer created for a payout.

        Absence is reported as a retryable failure: nothing was moved, and
        the retry reuses the payout id as idempotency key.
        """
        try:
            transfers = self.adapter.list_transfers_by_group(transfer_group_for(payout.id))
        except TransferProviderError as e:
            return TransferResult.unknown(e.message)

        live = [transfer for transfer in transfers if not transfer.reversed]
        if live:
            return TransferResult.succeeded(live[0].id)
        return TransferResult.failed(
            error_code="transfer_not_found",
            error_message="No transfer found for payout",
            retryable=True,
        )
