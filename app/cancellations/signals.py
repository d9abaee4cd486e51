"""
Cancellation workflow lifecycle signals.

Signals are sent after the surrounding transaction commits, so a
receiver never sees a state that was rolled back.

No receivers are registered in this project; notifications (emails to
the client and owner) and other integrations connect here.

Signals:
    cancellation_requested  - A client created a request (request=)
    cancellation_approved   - Request approved, manually or automatically (request=)
    cancellation_rejected   - Request rejected by the owner or an admin (request=)
    refund_completed        - Gateway refund succeeded (request=, refund_transaction=)
    refund_failed           - Gateway refund failed (request=, refund_transaction=)

Usage:
    from django.dispatch import receiver
    from cancellations.signals import refund_completed

    @receiver(refund_completed)
    def notify_client(sender, request, refund_transaction, **kwargs):
        ...
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

cancellation_requested = Signal()
cancellation_approved = Signal()
cancellation_rejected = Signal()
refund_completed = Signal()
refund_failed = Signal()


def send_on_commit(signal: Signal, sender, **kwargs) -> None:
    """Send ``signal`` once the current transaction commits."""

    def _send():
        responses = signal.send_robust(sender=sender, **kwargs)
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    "Cancellation signal receiver failed",
                    extra={
                        "receiver": getattr(receiver, "__qualname__", repr(receiver)),
                        "error": str(response),
                    },
                    exc_info=response,
                )

    transaction.on_commit(_send)


__all__ = [
    "cancellation_approved",
    "cancellation_rejected",
    "cancellation_requested",
    "refund_completed",
    "refund_failed",
    "send_on_commit",
]
