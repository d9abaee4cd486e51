"""
Cancellation workflow settings with their defaults.

Values come from Django settings (see config.settings) so each
environment can tune them through django-environ.
"""

from django.conf import settings

# A failed request may be retried while retry_count is below this.
MAX_REFUND_RETRIES = getattr(settings, "CANCELLATION_MAX_REFUND_RETRIES", 3)

# Automatic approval needs an automatic-refund policy, at least this
# refund percentage and at least this much lead time.
AUTOMATIC_REFUND_MIN_PERCENTAGE = getattr(
    settings, "CANCELLATION_AUTOMATIC_REFUND_MIN_PERCENTAGE", 100
)
AUTOMATIC_REFUND_MIN_LEAD_HOURS = getattr(
    settings, "CANCELLATION_AUTOMATIC_REFUND_MIN_LEAD_HOURS", 24
)

# Pending refund transactions older than this are reconciled against the gateway.
STUCK_TRANSACTION_MINUTES = getattr(settings, "CANCELLATION_STUCK_TRANSACTION_MINUTES", 15)

# Pending transactions with no trace at the gateway after this long are failed.
ABANDONED_TRANSACTION_HOURS = getattr(
    settings, "CANCELLATION_ABANDONED_TRANSACTION_HOURS", 24
)

REFUND_GATEWAY_PROVIDER = getattr(settings, "CANCELLATION_REFUND_GATEWAY_PROVIDER", "stripe")

# The retry sweep leaves a failed request alone for this long after its last change.
RETRY_BACKOFF_MINUTES = getattr(settings, "CANCELLATION_RETRY_BACKOFF_MINUTES", 15)
