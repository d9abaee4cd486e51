"""
Tests for StripeRefundAdapter.

The Stripe SDK calls are patched; responses are real StripeObjects built
with construct_from so attribute access matches the SDK.
"""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from cancellations.adapters import (
    STRIPE_REFUND_REASON,
    GatewayRefundParams,
    IdempotencyKeyGenerator,
    StripeRefundAdapter,
)
from cancellations.exceptions import (
    GatewayDeclinedError,
    GatewayInvalidRequestError,
    GatewayRateLimitError,
    GatewayResponseError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)


def _stripe_refund(**overrides):
    values = {
        "id": "re_123",
        "object": "refund",
        "amount": 47500,
        "currency": "usd",
        "status": "succeeded",
        "payment_intent": "pi_abc",
        "metadata": {"refund_transaction_id": "txn-1"},
    }
    values.update(overrides)
    return stripe.Refund.construct_from(values, "sk_test_placeholder")


def _params(**overrides) -> GatewayRefundParams:
    values = {
        "payment_reference": "pi_abc",
        "amount_minor": 47500,
        "currency": "usd",
        "note": "Refund for cancellation request 42",
        "metadata": {"cancellation_request_id": "42"},
    }
    values.update(overrides)
    return GatewayRefundParams(**values)


class TestIdempotencyKeyGenerator:
    def test_same_attempt_same_key(self):
        first = IdempotencyKeyGenerator.generate("refund", "abc", 1)
        second = IdempotencyKeyGenerator.generate("refund", "abc", 1)

        assert first == second
        assert first.startswith("refund:abc:1:")

    def test_new_attempt_new_key(self):
        assert IdempotencyKeyGenerator.generate(
            "refund", "abc", 1
        ) != IdempotencyKeyGenerator.generate("refund", "abc", 2)


class TestCreateRefund:
    @patch("stripe.Refund.create")
    def test_refunds_payment_intent(self, mock_create):
        mock_create.return_value = _stripe_refund()

        result = StripeRefundAdapter.create_refund(_params(), idempotency_key="refund:42:1:ab")

        mock_create.assert_called_once_with(
            amount=47500,
            reason=STRIPE_REFUND_REASON,
            metadata={
                "cancellation_request_id": "42",
                "note": "Refund for cancellation request 42",
            },
            idempotency_key="refund:42:1:ab",
            payment_intent="pi_abc",
        )
        assert result.id == "re_123"
        assert result.status == "succeeded"
        assert result.amount_minor == 47500
        assert result.payment_reference == "pi_abc"
        assert result.metadata == {"refund_transaction_id": "txn-1"}
        assert result.raw_response["id"] == "re_123"

    @patch("stripe.Refund.create")
    def test_legacy_charge_refunded_by_charge_id(self, mock_create):
        mock_create.return_value = _stripe_refund(payment_intent=None, charge="ch_legacy")

        result = StripeRefundAdapter.create_refund(
            _params(payment_reference="ch_legacy"), idempotency_key="k"
        )

        assert mock_create.call_args.kwargs["charge"] == "ch_legacy"
        assert "payment_intent" not in mock_create.call_args.kwargs
        assert result.payment_reference == "ch_legacy"

    @patch("stripe.Refund.create")
    def test_response_without_status_is_rejected(self, mock_create):
        mock_create.return_value = _stripe_refund(status=None)

        with pytest.raises(GatewayResponseError):
            StripeRefundAdapter.create_refund(_params(), idempotency_key="k")

    @pytest.mark.parametrize(
        "error,expected,retryable",
        [
            (
                stripe.CardError("Your card was declined", None, "card_declined"),
                GatewayDeclinedError,
                False,
            ),
            (
                stripe.InvalidRequestError(
                    "Charge has already been refunded", None, code="charge_already_refunded"
                ),
                GatewayDeclinedError,
                False,
            ),
            (
                stripe.InvalidRequestError("No such payment_intent", "payment_intent"),
                GatewayInvalidRequestError,
                False,
            ),
            (stripe.RateLimitError("Too many requests"), GatewayRateLimitError, True),
            (
                stripe.APIConnectionError("Request timed out after 10s"),
                GatewayTimeoutError,
                True,
            ),
            (
                stripe.APIConnectionError("Connection refused"),
                GatewayUnavailableError,
                True,
            ),
            (stripe.AuthenticationError("Invalid API key"), GatewayInvalidRequestError, False),
            (stripe.APIError("Internal server error"), GatewayUnavailableError, True),
            (TimeoutError("read timeout"), GatewayTimeoutError, True),
        ],
    )
    @patch("stripe.Refund.create")
    def test_stripe_errors_are_translated(self, mock_create, error, expected, retryable):
        mock_create.side_effect = error

        with pytest.raises(expected) as exc_info:
            StripeRefundAdapter.create_refund(_params(), idempotency_key="k")

        assert exc_info.value.is_retryable is retryable
        assert exc_info.value.__cause__ is error


class TestRetrieveAndListRefunds:
    @patch("stripe.Refund.retrieve")
    def test_retrieve(self, mock_retrieve):
        mock_retrieve.return_value = _stripe_refund(status="pending")

        result = StripeRefundAdapter.retrieve_refund("re_123")

        mock_retrieve.assert_called_once_with("re_123")
        assert result.status == "pending"

    @patch("stripe.Refund.retrieve")
    def test_retrieve_unknown_refund(self, mock_retrieve):
        mock_retrieve.side_effect = stripe.InvalidRequestError(
            "No such refund", "id", code="resource_missing"
        )

        with pytest.raises(GatewayInvalidRequestError) as exc_info:
            StripeRefundAdapter.retrieve_refund("re_missing")

        assert exc_info.value.gateway_code == "resource_missing"

    @patch("stripe.Refund.list")
    def test_list_by_payment_intent(self, mock_list):
        mock_list.return_value = MagicMock(
            data=[_stripe_refund(id="re_1"), _stripe_refund(id="re_2", status="failed")]
        )

        results = StripeRefundAdapter.list_refunds("pi_abc", limit=500)

        mock_list.assert_called_once_with(limit=100, payment_intent="pi_abc")
        assert [(r.id, r.status) for r in results] == [("re_1", "succeeded"), ("re_2", "failed")]
