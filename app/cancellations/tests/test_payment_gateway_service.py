"""
Tests for PaymentGatewayService.

The gateway adapter is a MagicMock installed through
PaymentGatewayService.set_gateway_adapter; Redis is mocked by the
autouse fixture in conftest.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest
from django.utils import timezone
from redis.exceptions import ConnectionError as RedisConnectionError

from bookings.models import BookingRefundEntry
from cancellations.conf import MAX_REFUND_RETRIES
from cancellations.exceptions import (
    GatewayDeclinedError,
    GatewayInvalidRequestError,
    GatewayTimeoutError,
)
from cancellations.models import CancellationRequest, RefundTransaction
from cancellations.services import (
    PaymentGatewayService,
    RefundRequestParams,
    canonical_refund_status,
)
from cancellations.signals import refund_completed, refund_failed
from cancellations.state_machines import CancellationStatus, RefundTransactionStatus
from cancellations.tests.factories import RefundTransactionFactory, gateway_refund


def _params(request, **overrides) -> RefundRequestParams:
    values = {
        "cancellation_request_id": request.id,
        "booking_id": request.booking_id,
        "amount": Decimal("475.00"),
        "payment_reference": request.booking.payment_reference,
    }
    values.update(overrides)
    return RefundRequestParams(**values)


def _refetch(request):
    return CancellationRequest.objects.get(id=request.id)


# =============================================================================
# Status Mapping
# =============================================================================


class TestCanonicalRefundStatus:
    @pytest.mark.parametrize(
        "gateway_status,expected",
        [
            ("succeeded", "completed"),
            ("SUCCEEDED", "completed"),
            ("pending", "processing"),
            ("requires_action", "processing"),
            ("failed", "failed"),
            ("canceled", "failed"),
            ("something_new", "processing"),
            (None, "processing"),
        ],
    )
    def test_mapping(self, gateway_status, expected):
        assert canonical_refund_status(gateway_status) == expected


# =============================================================================
# process_refund
# =============================================================================


@pytest.mark.django_db
class TestProcessRefund:
    def test_success_completes_both_records(
        self, processing_request, gateway_adapter, django_capture_on_commit_callbacks
    ):
        received = []
        refund_completed.connect(lambda **kw: received.append(kw), weak=False, dispatch_uid="t1")
        try:
            with django_capture_on_commit_callbacks(execute=True):
                result = PaymentGatewayService.process_refund(_params(processing_request))
        finally:
            refund_completed.disconnect(dispatch_uid="t1")

        assert result.success
        assert result.data.status == "completed"
        assert result.data.gateway_refund_id == "re_test_123"

        txn = RefundTransaction.objects.get(id=result.data.refund_transaction.id)
        assert txn.status == RefundTransactionStatus.COMPLETED
        assert txn.refund_transaction_id == "re_test_123"
        assert txn.amount == Decimal("475.00")
        assert txn.attempt == 1

        request = _refetch(processing_request)
        assert request.status == CancellationStatus.COMPLETED
        assert request.refund_transaction_id == "re_test_123"
        assert len(received) == 1

    def test_success_appends_ledger_entry(self, processing_request, gateway_adapter):
        PaymentGatewayService.process_refund(_params(processing_request))

        entry = BookingRefundEntry.objects.get(booking=processing_request.booking)
        assert entry.gateway_refund_id == "re_test_123"
        assert entry.amount == Decimal("475.00")
        assert entry.sequence == 1
        assert entry.cancellation_request_id == processing_request.id

    def test_gateway_receives_minor_units_and_idempotency_key(
        self, processing_request, gateway_adapter
    ):
        result = PaymentGatewayService.process_refund(_params(processing_request))

        args, kwargs = gateway_adapter.create_refund.call_args
        gateway_params = args[0]
        assert gateway_params.amount_minor == 47500
        assert gateway_params.currency == "usd"
        assert gateway_params.payment_reference == processing_request.booking.payment_reference
        assert gateway_params.metadata["cancellation_request_id"] == str(processing_request.id)
        assert kwargs["idempotency_key"] == result.data.refund_transaction.idempotency_key
        assert kwargs["idempotency_key"].startswith(f"refund:{processing_request.id}:1:")

    def test_timeout_fails_both_records(
        self, processing_request, gateway_adapter, django_capture_on_commit_callbacks
    ):
        gateway_adapter.create_refund.side_effect = GatewayTimeoutError(
            "Payment gateway request timed out", gateway_code="timeout"
        )
        received = []
        refund_failed.connect(lambda **kw: received.append(kw), weak=False, dispatch_uid="t2")
        try:
            with django_capture_on_commit_callbacks(execute=True):
                result = PaymentGatewayService.process_refund(_params(processing_request))
        finally:
            refund_failed.disconnect(dispatch_uid="t2")

        assert not result.success
        assert result.error_code == "REFUND_FAILED"
        assert result.errors == {"gateway_code": "timeout", "retryable": True}
        assert result.data.status == "failed"

        txn = RefundTransaction.objects.get(cancellation_request=processing_request)
        assert txn.status == RefundTransactionStatus.FAILED
        assert txn.is_retryable_failure
        assert "timed out" in txn.gateway_error

        request = _refetch(processing_request)
        assert request.status == CancellationStatus.FAILED
        assert request.retry_count == 0
        assert request.can_retry
        assert len(received) == 1
        assert not BookingRefundEntry.objects.exists()

    def test_declined_failure_is_not_retryable(self, processing_request, gateway_adapter):
        gateway_adapter.create_refund.side_effect = GatewayDeclinedError(
            "Charge already refunded", gateway_code="charge_already_refunded"
        )

        result = PaymentGatewayService.process_refund(_params(processing_request))

        assert result.errors["retryable"] is False
        txn = RefundTransaction.objects.get(cancellation_request=processing_request)
        assert not txn.is_retryable_failure

    def test_unexpected_adapter_error_is_contained(self, processing_request, gateway_adapter):
        gateway_adapter.create_refund.side_effect = RuntimeError("socket closed")

        result = PaymentGatewayService.process_refund(_params(processing_request))

        assert result.error_code == "REFUND_FAILED"
        assert result.errors["gateway_code"] == "unknown_error"
        assert _refetch(processing_request).status == CancellationStatus.FAILED

    def test_gateway_failed_status_fails_records(self, processing_request, gateway_adapter):
        gateway_adapter.create_refund.return_value = gateway_refund(status="failed")

        result = PaymentGatewayService.process_refund(_params(processing_request))

        assert result.error_code == "REFUND_FAILED"
        txn = RefundTransaction.objects.get(cancellation_request=processing_request)
        assert txn.status == RefundTransactionStatus.FAILED
        assert txn.gateway_status == "failed"

    def test_unsettled_refund_stays_pending(self, processing_request, gateway_adapter):
        gateway_adapter.create_refund.return_value = gateway_refund(status="pending")

        result = PaymentGatewayService.process_refund(_params(processing_request))

        assert result.success
        assert result.data.status == "processing"
        txn = RefundTransaction.objects.get(cancellation_request=processing_request)
        assert txn.status == RefundTransactionStatus.PENDING
        assert txn.gateway_response["id"] == "re_test_123"
        assert _refetch(processing_request).status == CancellationStatus.PROCESSING

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-10"), "abc"])
    def test_non_positive_amount_creates_nothing(
        self, processing_request, gateway_adapter, amount
    ):
        result = PaymentGatewayService.process_refund(
            _params(processing_request, amount=amount)
        )

        assert result.error_code == "VALIDATION_ERROR"
        assert not RefundTransaction.objects.exists()
        gateway_adapter.create_refund.assert_not_called()

    def test_request_must_be_processing(self, approved_request, gateway_adapter):
        result = PaymentGatewayService.process_refund(_params(approved_request))

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert result.errors["current_status"] == CancellationStatus.APPROVED
        assert not RefundTransaction.objects.exists()

    def test_unknown_request(self, processing_request, gateway_adapter):
        result = PaymentGatewayService.process_refund(
            _params(processing_request, cancellation_request_id=uuid4())
        )

        assert result.error_code == "CANCELLATION_REQUEST_NOT_FOUND"

    def test_booking_mismatch(self, processing_request, gateway_adapter):
        result = PaymentGatewayService.process_refund(
            _params(processing_request, booking_id=uuid4())
        )

        assert result.error_code == "BOOKING_MISMATCH"

    def test_pending_transaction_blocks_second_attempt(self, processing_request, gateway_adapter):
        RefundTransactionFactory(cancellation_request=processing_request)

        result = PaymentGatewayService.process_refund(_params(processing_request))

        assert result.error_code == "REFUND_IN_PROGRESS"
        gateway_adapter.create_refund.assert_not_called()

    def test_lock_held_elsewhere(self, processing_request, gateway_adapter, mock_redis_lock):
        mock_redis_lock.set.return_value = False

        with patch("cancellations.locks.REFUND_LOCK_TIMEOUT", 0.1), patch(
            "cancellations.locks.time.sleep"
        ):
            result = PaymentGatewayService.process_refund(_params(processing_request))

        assert result.error_code == "REFUND_IN_PROGRESS"
        assert not RefundTransaction.objects.exists()
        gateway_adapter.create_refund.assert_not_called()

    def test_redis_unreachable_is_a_failed_result(
        self, processing_request, gateway_adapter, mock_redis_lock
    ):
        mock_redis_lock.set.side_effect = RedisConnectionError("redis down")

        result = PaymentGatewayService.process_refund(_params(processing_request))

        assert result.error_code == "REFUND_LOCK_UNAVAILABLE"
        assert result.data is None
        assert not RefundTransaction.objects.exists()
        gateway_adapter.create_refund.assert_not_called()

    def test_release_leaves_pending_attempt_alone(self, processing_request):
        RefundTransactionFactory(cancellation_request=processing_request)

        assert PaymentGatewayService.release_unsent_refund(processing_request.id) is False
        assert _refetch(processing_request).status == CancellationStatus.PROCESSING

    def test_lock_released_after_processing(
        self, processing_request, gateway_adapter, mock_redis_lock
    ):
        PaymentGatewayService.process_refund(_params(processing_request))

        key = f"lock:cancellation:refund:{processing_request.id}"
        assert mock_redis_lock.set.call_args.args[0] == key
        assert mock_redis_lock.eval.call_args.args[2] == key

    def test_recording_failure_leaves_pending_for_reconciliation(
        self, processing_request, gateway_adapter
    ):
        with patch(
            "cancellations.services.payment_gateway_service.BookingRefundLedger.append_refund",
            side_effect=RuntimeError("database went away"),
        ):
            result = PaymentGatewayService.process_refund(_params(processing_request))

        assert result.error_code == "REFUND_RECORDING_FAILED"
        assert result.errors == {"gateway_refund_id": "re_test_123"}
        txn = RefundTransaction.objects.get(cancellation_request=processing_request)
        assert txn.status == RefundTransactionStatus.PENDING
        assert _refetch(processing_request).status == CancellationStatus.PROCESSING


# =============================================================================
# check_refund_status
# =============================================================================


@pytest.mark.django_db
class TestCheckRefundStatus:
    def test_reports_canonical_status(self, gateway_adapter):
        gateway_adapter.retrieve_refund.return_value = gateway_refund(status="pending")

        result = PaymentGatewayService.check_refund_status("re_test_123")

        assert result.success
        assert result.data.status == "processing"
        assert result.data.gateway_status == "pending"

    def test_is_read_only_and_repeatable(self, processing_request, gateway_adapter):
        txn = RefundTransactionFactory(
            cancellation_request=processing_request, refund_transaction_id="re_test_123"
        )
        gateway_adapter.retrieve_refund.return_value = gateway_refund()
        version_before = _refetch(processing_request).version

        first = PaymentGatewayService.check_refund_status("re_test_123")
        second = PaymentGatewayService.check_refund_status("re_test_123")

        assert first.data == second.data
        assert RefundTransaction.objects.get(id=txn.id).status == RefundTransactionStatus.PENDING
        assert _refetch(processing_request).version == version_before

    def test_gateway_error_is_returned(self, gateway_adapter):
        gateway_adapter.retrieve_refund.side_effect = GatewayInvalidRequestError(
            "No such refund", gateway_code="resource_missing"
        )

        result = PaymentGatewayService.check_refund_status("re_missing")

        assert not result.success
        assert result.error_code == "REFUND_INVALID_REQUEST"

    def test_requires_id(self, gateway_adapter):
        result = PaymentGatewayService.check_refund_status("")

        assert result.error_code == "VALIDATION_ERROR"
        gateway_adapter.retrieve_refund.assert_not_called()


# =============================================================================
# retry_refund
# =============================================================================


@pytest.mark.django_db
class TestRetryRefund:
    def test_retry_succeeds(self, failed_request, gateway_adapter):
        result = PaymentGatewayService.retry_refund(failed_request.id)

        assert result.success
        request = _refetch(failed_request)
        assert request.status == CancellationStatus.COMPLETED
        assert request.retry_count == 1
        assert request.last_retry_at is not None
        txn = result.data.refund_transaction
        assert txn.attempt == 2
        assert txn.idempotency_key.startswith(f"refund:{failed_request.id}:2:")

    def test_retry_uses_fresh_idempotency_key(self, processing_request, gateway_adapter):
        gateway_adapter.create_refund.side_effect = GatewayTimeoutError("timed out")
        PaymentGatewayService.process_refund(_params(processing_request))
        gateway_adapter.create_refund.side_effect = None

        PaymentGatewayService.retry_refund(processing_request.id)

        keys = [c.kwargs["idempotency_key"] for c in gateway_adapter.create_refund.call_args_list]
        assert len(keys) == 2
        assert keys[0] != keys[1]

    def test_retry_count_is_committed_even_when_retry_fails(
        self, failed_request, gateway_adapter
    ):
        gateway_adapter.create_refund.side_effect = GatewayTimeoutError("timed out")

        result = PaymentGatewayService.retry_refund(failed_request.id)

        assert result.error_code == "REFUND_FAILED"
        request = _refetch(failed_request)
        assert request.status == CancellationStatus.FAILED
        assert request.retry_count == 1

    def test_lock_contention_returns_request_to_failed(
        self, failed_request, gateway_adapter, mock_redis_lock
    ):
        mock_redis_lock.set.return_value = False

        with patch("cancellations.locks.REFUND_LOCK_TIMEOUT", 0.1), patch(
            "cancellations.locks.time.sleep"
        ):
            result = PaymentGatewayService.retry_refund(failed_request.id)

        assert result.error_code == "REFUND_IN_PROGRESS"
        request = _refetch(failed_request)
        assert request.status == CancellationStatus.FAILED
        assert request.retry_count == 0
        assert not RefundTransaction.objects.exists()

        mock_redis_lock.set.return_value = True
        assert PaymentGatewayService.retry_refund(failed_request.id).success
        assert _refetch(failed_request).status == CancellationStatus.COMPLETED

    def test_redis_down_returns_request_to_failed(
        self, failed_request, gateway_adapter, mock_redis_lock
    ):
        mock_redis_lock.set.side_effect = RedisConnectionError("Connection refused")

        result = PaymentGatewayService.retry_refund(failed_request.id)

        assert result.error_code == "REFUND_LOCK_UNAVAILABLE"
        request = _refetch(failed_request)
        assert request.status == CancellationStatus.FAILED
        assert request.retry_count == 0
        gateway_adapter.create_refund.assert_not_called()

    def test_budget_exhausted_skips_gateway(self, failed_request, gateway_adapter):
        gateway_adapter.create_refund.side_effect = GatewayTimeoutError("timed out")
        for _ in range(MAX_REFUND_RETRIES):
            PaymentGatewayService.retry_refund(failed_request.id)
        calls_before = gateway_adapter.create_refund.call_count

        result = PaymentGatewayService.retry_refund(failed_request.id)

        assert result.error_code == "MAX_RETRIES_REACHED"
        assert result.errors == {
            "retry_count": MAX_REFUND_RETRIES,
            "max_retries": MAX_REFUND_RETRIES,
        }
        assert gateway_adapter.create_refund.call_count == calls_before
        assert _refetch(failed_request).retry_count == MAX_REFUND_RETRIES

    def test_only_failed_requests_retry(self, approved_request, gateway_adapter):
        result = PaymentGatewayService.retry_refund(approved_request.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        gateway_adapter.create_refund.assert_not_called()

    def test_unknown_request(self, gateway_adapter):
        result = PaymentGatewayService.retry_refund(uuid4())

        assert result.error_code == "CANCELLATION_REQUEST_NOT_FOUND"

    def test_zero_override_has_nothing_to_retry(self, failed_request, gateway_adapter):
        CancellationRequest.objects.filter(id=failed_request.id).update(
            custom_refund_amount=Decimal("0.00"), custom_refund_note="Credit issued"
        )

        result = PaymentGatewayService.retry_refund(failed_request.id)

        assert result.error_code == "NO_REFUND_DUE"
        assert _refetch(failed_request).retry_count == 0


# =============================================================================
# reconcile_transaction
# =============================================================================


@pytest.mark.django_db
class TestReconcileTransaction:
    def test_found_by_metadata_and_succeeded(self, processing_request, gateway_adapter):
        txn = RefundTransactionFactory(cancellation_request=processing_request)
        gateway_adapter.list_refunds.return_value = [
            gateway_refund(id="re_other", metadata={"refund_transaction_id": str(uuid4())}),
            gateway_refund(id="re_found", metadata={"refund_transaction_id": str(txn.id)}),
        ]

        result = PaymentGatewayService.reconcile_transaction(txn.id)

        assert result.success
        assert result.data.status == "completed"
        gateway_adapter.list_refunds.assert_called_once_with(txn.original_transaction_id)
        txn = RefundTransaction.objects.get(id=txn.id)
        assert txn.status == RefundTransactionStatus.COMPLETED
        assert txn.refund_transaction_id == "re_found"
        assert _refetch(processing_request).status == CancellationStatus.COMPLETED
        assert BookingRefundEntry.objects.filter(gateway_refund_id="re_found").exists()

    def test_known_refund_id_is_retrieved(self, processing_request, gateway_adapter):
        txn = RefundTransactionFactory(
            cancellation_request=processing_request,
            gateway_response={"id": "re_known", "status": "pending"},
        )
        gateway_adapter.retrieve_refund.return_value = gateway_refund(id="re_known")

        PaymentGatewayService.reconcile_transaction(txn.id)

        gateway_adapter.retrieve_refund.assert_called_once_with("re_known")
        gateway_adapter.list_refunds.assert_not_called()
        assert RefundTransaction.objects.get(id=txn.id).status == RefundTransactionStatus.COMPLETED

    def test_not_found_and_abandoned_is_failed(self, processing_request, gateway_adapter):
        txn = RefundTransactionFactory(
            cancellation_request=processing_request,
            initiated_at=timezone.now() - timedelta(hours=30),
        )

        result = PaymentGatewayService.reconcile_transaction(txn.id)

        assert result.error_code == "REFUND_FAILED"
        assert result.errors == {"gateway_code": "not_found", "retryable": True}
        assert RefundTransaction.objects.get(id=txn.id).status == RefundTransactionStatus.FAILED
        assert _refetch(processing_request).status == CancellationStatus.FAILED

    def test_not_found_but_recent_stays_pending(self, processing_request, gateway_adapter):
        txn = RefundTransactionFactory(
            cancellation_request=processing_request,
            initiated_at=timezone.now() - timedelta(minutes=20),
        )

        result = PaymentGatewayService.reconcile_transaction(txn.id)

        assert result.success
        assert result.data.status == "processing"
        assert RefundTransaction.objects.get(id=txn.id).status == RefundTransactionStatus.PENDING

    def test_still_processing_at_gateway(self, processing_request, gateway_adapter):
        txn = RefundTransactionFactory(cancellation_request=processing_request)
        gateway_adapter.list_refunds.return_value = [
            gateway_refund(status="pending", metadata={"refund_transaction_id": str(txn.id)})
        ]

        result = PaymentGatewayService.reconcile_transaction(txn.id)

        assert result.data.status == "processing"
        assert RefundTransaction.objects.get(id=txn.id).status == RefundTransactionStatus.PENDING
        assert _refetch(processing_request).status == CancellationStatus.PROCESSING

    def test_settled_transaction_is_left_alone(self, processing_request, gateway_adapter):
        txn = RefundTransactionFactory(cancellation_request=processing_request)
        txn.cancel(reason="superseded")
        txn.save()

        result = PaymentGatewayService.reconcile_transaction(txn.id)

        assert result.success
        assert result.data.status == "failed"
        gateway_adapter.list_refunds.assert_not_called()

    def test_skips_when_request_is_locked(
        self, processing_request, gateway_adapter, mock_redis_lock
    ):
        txn = RefundTransactionFactory(cancellation_request=processing_request)
        mock_redis_lock.set.return_value = False

        result = PaymentGatewayService.reconcile_transaction(txn.id)

        assert result.error_code == "REFUND_IN_PROGRESS"
        gateway_adapter.list_refunds.assert_not_called()

    def test_unknown_transaction(self, gateway_adapter):
        result = PaymentGatewayService.reconcile_transaction(uuid4())

        assert result.error_code == "REFUND_TRANSACTION_NOT_FOUND"
