"""
Stripe refund adapter.

Wraps the three Stripe Refunds API calls the cancellation workflow needs
and translates Stripe SDK exceptions into gateway exceptions, so no
Stripe type leaks past this module.

Operations:
    create_refund      - Refund (part of) a charge, idempotently
    retrieve_refund    - Look up a refund by id
    list_refunds       - Refunds issued against a charge (reconciliation)

Usage:
    from cancellations.adapters import GatewayRefundParams, StripeRefundAdapter

    result = StripeRefundAdapter.create_refund(
        GatewayRefundParams(
            payment_reference="pi_123",
            amount_minor=47500,
            currency="usd",
            note="Refund for cancellation request 5f0c...",
            metadata={"cancellation_request_id": "5f0c..."},
        ),
        idempotency_key=IdempotencyKeyGenerator.generate("refund", request.id, attempt=1),
    )
    result.id       # "re_..."
    result.status   # "succeeded" | "pending" | "requires_action" | "failed" | "canceled"

Configuration:
    STRIPE_SECRET_KEY           API key
    STRIPE_API_TIMEOUT_SECONDS  Per-request timeout (default 10)
    STRIPE_MAX_RETRIES          SDK network retries (default 0; the workflow
                                has its own bounded retry)
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import stripe
from django.conf import settings

from cancellations.exceptions import (
    GatewayDeclinedError,
    GatewayInvalidRequestError,
    GatewayRateLimitError,
    GatewayResponseError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)

# Stripe only accepts these reason codes; free text goes into metadata.
STRIPE_REFUND_REASON = "requested_by_customer"


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class GatewayRefundParams:
    """Parameters for a refund call."""

    payment_reference: str
    amount_minor: int
    currency: str
    note: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class GatewayRefundResult:
    """
    A refund as reported by the gateway.

    Attributes:
        id: Gateway refund id (re_xxx)
        amount_minor: Refunded amount in minor units
        currency: Currency code
        status: Raw gateway status
        payment_reference: Charge the refund belongs to
        metadata: Metadata attached at creation
        raw_response: Full gateway payload
    """

    id: str
    amount_minor: int
    currency: str
    status: str
    payment_reference: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Idempotency keys for gateway calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same (operation, entity, attempt) always yields the same key, so a
    replayed call for one attempt can't create a second refund. A new
    attempt gets a new key.
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int = 1) -> str:
        entity = str(entity_id)
        digest = hashlib.sha256(
            f"{operation}:{entity}:{attempt}:{settings.SECRET_KEY}".encode()
        ).hexdigest()[:8]
        return f"{operation}:{entity}:{attempt}:{digest}"


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeRefundAdapter:
    """
    Adapter for Stripe refund operations.

    Stateless classmethods; safe to call from web requests and Celery
    workers. Every call logs start and completion with timing.
    """

    provider = "stripe"

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 0)
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @staticmethod
    def _source_param(payment_reference: str) -> dict[str, str]:
        # Legacy charges are refunded by charge id, everything else by PaymentIntent.
        if payment_reference.startswith("ch_"):
            return {"charge": payment_reference}
        return {"payment_intent": payment_reference}

    # =========================================================================
    # Operations
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        params: GatewayRefundParams,
        idempotency_key: str,
    ) -> GatewayRefundResult:
        """
        Create a refund.

        Args:
            params: Charge reference, amount in minor units, note and metadata
            idempotency_key: Key for this attempt

        Returns:
            GatewayRefundResult

        Raises:
            RefundGatewayError subclass on any failure, including a
            response without a refund id or status
        """
        cls._configure_stripe()
        logger = cls.get_logger()
        log_context = {
            "operation": "create_refund",
            "payment_reference": params.payment_reference,
            "amount_minor": params.amount_minor,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        metadata = dict(params.metadata)
        if params.note:
            metadata["note"] = params.note[:500]

        try:
            refund = stripe.Refund.create(
                amount=params.amount_minor,
                reason=STRIPE_REFUND_REASON,
                metadata=metadata,
                idempotency_key=idempotency_key,
                **cls._source_param(params.payment_reference),
            )
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        result = cls._to_result(refund, params.payment_reference)
        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "refund_id": result.id,
                "refund_status": result.status,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return result

    @classmethod
    def retrieve_refund(cls, refund_id: str) -> GatewayRefundResult:
        """
        Retrieve a refund by id.

        Raises:
            GatewayInvalidRequestError: Unknown refund id
            RefundGatewayError subclass on other failures
        """
        cls._configure_stripe()
        log_context = {"operation": "retrieve_refund", "refund_id": refund_id}
        start_time = time.time()
        cls.get_logger().info("Starting Stripe operation", extra=log_context)

        try:
            refund = stripe.Refund.retrieve(refund_id)
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        return cls._to_result(refund)

    @classmethod
    def list_refunds(cls, payment_reference: str, limit: int = 100) -> list[GatewayRefundResult]:
        """Refunds issued against a charge, newest first."""
        cls._configure_stripe()
        log_context = {
            "operation": "list_refunds",
            "payment_reference": payment_reference,
            "limit": limit,
        }
        start_time = time.time()
        cls.get_logger().info("Starting Stripe operation", extra=log_context)

        try:
            refunds = stripe.Refund.list(
                limit=min(limit, 100),
                **cls._source_param(payment_reference),
            )
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        return [cls._to_result(refund, payment_reference) for refund in refunds.data]

    # =========================================================================
    # Response Parsing
    # =========================================================================

    @classmethod
    def _to_result(cls, refund: Any, payment_reference: str = "") -> GatewayRefundResult:
        refund_id = getattr(refund, "id", None)
        status = getattr(refund, "status", None)
        if not refund_id or not status:
            cls.get_logger().error(
                "Stripe refund response missing id or status",
                extra={"payment_reference": payment_reference},
            )
            raise GatewayResponseError(
                "Payment gateway returned an invalid refund response",
                gateway_code="invalid_payload",
            )

        try:
            raw = refund.to_dict()
        except AttributeError:
            raw = {}

        return GatewayRefundResult(
            id=refund_id,
            amount_minor=int(getattr(refund, "amount", 0) or 0),
            currency=str(getattr(refund, "currency", "") or ""),
            status=str(status),
            payment_reference=(
                getattr(refund, "payment_intent", None)
                or getattr(refund, "charge", None)
                or payment_reference
            ),
            metadata=dict(getattr(refund, "metadata", None) or {}),
            raw_response=raw,
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate a Stripe SDK exception into a gateway exception.

        Raises:
            GatewayDeclinedError: Stripe refused the refund
            GatewayInvalidRequestError: Bad parameters, unknown charge, bad API key
            GatewayRateLimitError: Rate limited
            GatewayTimeoutError: Request timed out
            GatewayUnavailableError: Network or Stripe server error
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            logger.warning("Refund declined by Stripe", extra=log_context)
            raise GatewayDeclinedError(
                str(getattr(error, "user_message", None) or error),
                gateway_code=getattr(error, "code", None),
            ) from error

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": getattr(error, "code", None)},
            )
            code = getattr(error, "code", None)
            if code in {"charge_already_refunded", "charge_disputed"}:
                raise GatewayDeclinedError(str(error), gateway_code=code) from error
            raise GatewayInvalidRequestError(str(error), gateway_code=code) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayRateLimitError(
                "Payment gateway rate limit exceeded",
                gateway_code="rate_limit",
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            message = str(error).lower()
            if "timed out" in message or "timeout" in message:
                logger.error("Stripe request timed out", extra=log_context)
                raise GatewayTimeoutError(
                    "Payment gateway request timed out",
                    gateway_code="timeout",
                ) from error
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Could not connect to payment gateway",
                gateway_code="api_connection_error",
            ) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise GatewayInvalidRequestError(
                "Payment gateway authentication failed",
                gateway_code="authentication_error",
            ) from error

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Payment gateway service error",
                gateway_code="api_error",
            ) from error

        if isinstance(error, TimeoutError):
            logger.error("Stripe request timed out", extra=log_context)
            raise GatewayTimeoutError(
                "Payment gateway request timed out",
                gateway_code="timeout",
            ) from error

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            f"Unexpected payment gateway error: {error}",
            gateway_code="unknown_error",
        ) from error


__all__ = [
    "STRIPE_REFUND_REASON",
    "GatewayRefundParams",
    "GatewayRefundResult",
    "IdempotencyKeyGenerator",
    "StripeRefundAdapter",
]
