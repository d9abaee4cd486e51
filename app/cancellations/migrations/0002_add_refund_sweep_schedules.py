"""
Add Celery Beat schedules for the refund sweeps.

- Retry refunds that failed for a transient reason (every 15 minutes)
- Reconcile refund transactions stuck in PENDING (every 10 minutes)
"""

from django.db import migrations

RETRY_TASK_NAME = "Retry Failed Cancellation Refunds"
RECONCILE_TASK_NAME = "Reconcile Pending Refund Transactions"


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule_15min, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )
    schedule_10min, _ = IntervalSchedule.objects.get_or_create(
        every=10,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=RETRY_TASK_NAME,
        defaults={
            "task": "cancellations.tasks.retry_failed_refunds",
            "interval": schedule_15min,
            "enabled": True,
            "description": (
                "Retries FAILED cancellation refunds whose last attempt failed "
                "transiently and that have retries left."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name=RECONCILE_TASK_NAME,
        defaults={
            "task": "cancellations.tasks.reconcile_pending_refund_transactions",
            "interval": schedule_10min,
            "enabled": True,
            "description": (
                "Looks up PENDING refund transactions at the gateway and "
                "settles them, failing ones the gateway never received."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[RETRY_TASK_NAME, RECONCILE_TASK_NAME],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("cancellations", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
