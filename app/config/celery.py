"""
Celery configuration for the settlement service.

Celery runs the settlement housekeeping jobs:
- Replaying failed Stripe webhook events
- Resetting webhook events stuck in processing
- Pruning old webhook dedup records
- Refreshing pending payee accounts and pending refunds from Stripe

Periodic schedules live in the database (django-celery-beat) and are
registered by a settlement data migration.

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    from settlement.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up settlement/tasks.py
app.autodiscover_tasks()
