"""
Celery configuration for the cancellation service.

Celery runs the refund work that must not block a request:
- Automatic refunds queued when a request is approved on creation
- Periodic retry of transiently failed refunds
- Periodic reconciliation of refund transactions stuck in PENDING

Redis is both the message broker and result backend. Periodic tasks are
stored in the database by django-celery-beat (DatabaseScheduler).

Usage:
    # Worker
    celery -A config worker -l info

    # Scheduler
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up cancellations.tasks
app.autodiscover_tasks()
