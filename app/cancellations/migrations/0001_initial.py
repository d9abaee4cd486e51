"""
Create cancellation requests and refund transactions.
"""

import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
        (
            "version",
            models.PositiveIntegerField(
                default=1,
                help_text="Version for optimistic locking - incremented on each save",
            ),
        ),
        (
            "id",
            models.UUIDField(
                default=uuid.uuid4,
                editable=False,
                help_text="Unique identifier (UUID v4)",
                primary_key=True,
                serialize=False,
            ),
        ),
    ]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="CancellationRequest",
            fields=_timestamps()
            + [
                ("booking_start_date", models.DateTimeField()),
                ("booking_end_date", models.DateTimeField()),
                ("booking_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "refund_calculation",
                    models.JSONField(
                        default=dict,
                        help_text="RefundCalculation snapshot taken when the request was created",
                    ),
                ),
                (
                    "policy_snapshot",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Listing cancellation policy in force when the request was created",
                    ),
                ),
                (
                    "cancellation_reason",
                    models.CharField(
                        choices=[
                            ("schedule_change", "Schedule change"),
                            ("found_alternative", "Found alternative"),
                            ("emergency", "Emergency"),
                            ("other", "Other"),
                        ],
                        max_length=32,
                    ),
                ),
                ("cancellation_reason_other", models.TextField(blank=True, default="")),
                ("requested_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the request (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "is_automatic",
                    models.BooleanField(
                        default=False,
                        help_text="Approved by the system under an automatic-refund policy",
                    ),
                ),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("rejected_at", models.DateTimeField(blank=True, null=True)),
                ("rejection_reason", models.TextField(blank=True, default="")),
                (
                    "custom_refund_amount",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Owner/admin override of the computed refund",
                        max_digits=12,
                        null=True,
                    ),
                ),
                ("custom_refund_note", models.TextField(blank=True, default="")),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "refund_transaction_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Gateway refund reference of the successful refund",
                        max_length=255,
                    ),
                ),
                (
                    "completion_method",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("gateway", "Gateway refund"),
                            ("manual_override", "Administrative override"),
                        ],
                        default="",
                        max_length=32,
                    ),
                ),
                ("completion_note", models.TextField(blank=True, default="")),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
                ("last_retry_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cancellation_requests",
                        to="bookings.booking",
                    ),
                ),
                (
                    "listing",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cancellation_requests",
                        to="bookings.listing",
                    ),
                ),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cancellation_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="owned_cancellation_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "rejected_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "completed_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Admin who completed the request without a gateway refund",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Cancellation request",
                "verbose_name_plural": "Cancellation requests",
                "ordering": ["-requested_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "requested_at"],
                        name="cancel_status_requested_idx",
                    ),
                    models.Index(
                        fields=["owner", "status"],
                        name="cancel_owner_status_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("status__in", ("pending", "approved", "processing"))
                        ),
                        fields=("booking",),
                        name="one_active_cancellation_per_booking",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundTransaction",
            fields=_timestamps()
            + [
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("payment_method", models.CharField(default="card", max_length=32)),
                (
                    "original_transaction_id",
                    models.CharField(
                        help_text="Gateway charge reference being refunded",
                        max_length=255,
                    ),
                ),
                (
                    "refund_transaction_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway refund reference",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("reason", models.TextField(blank=True, default="")),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the attempt (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("gateway_provider", models.CharField(default="stripe", max_length=32)),
                ("gateway_status", models.CharField(blank=True, default="", max_length=32)),
                ("gateway_response", models.JSONField(blank=True, default=dict)),
                ("gateway_error", models.TextField(blank=True, default="")),
                ("idempotency_key", models.CharField(max_length=255, unique=True)),
                ("attempt", models.PositiveSmallIntegerField(default=1)),
                ("initiated_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "cancellation_request",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_transactions",
                        to="cancellations.cancellationrequest",
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_transactions",
                        to="bookings.booking",
                    ),
                ),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund transaction",
                "verbose_name_plural": "Refund transactions",
                "ordering": ["-initiated_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "initiated_at"],
                        name="refund_txn_status_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "pending")),
                        fields=("cancellation_request",),
                        name="one_pending_refund_per_request",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="refund_transaction_amount_positive",
                    ),
                ],
            },
        ),
    ]
