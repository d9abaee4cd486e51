"""
Cancellations app configuration.

This app owns the cancellation and refund workflow:
- Cancellation requests and their state machine
- Refund transactions against the payment gateway
- Celery tasks for automatic refunds, retries and reconciliation
"""

from django.apps import AppConfig


class CancellationsConfig(AppConfig):
    """Configuration for the cancellations application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "cancellations"
    verbose_name = "Cancellations"
