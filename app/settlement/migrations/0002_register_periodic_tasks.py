"""
Register celery-beat schedules for settlement housekeeping.

- Replay failed webhook events every 5 minutes
- Reset webhook events stuck in processing every 15 minutes
- Refresh payee accounts still being verified every hour
- Pull status of refunds pending without a webhook every 30 minutes
- Prune old webhook dedup records daily at 3 AM UTC
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Retry Failed Stripe Webhooks",
        "task": "settlement.tasks.retry_failed_webhooks",
        "interval": (5, "minutes"),
        "description": "Re-queues failed webhook events below the retry limit.",
    },
    {
        "name": "Reset Stuck Stripe Webhooks",
        "task": "settlement.tasks.cleanup_stuck_webhooks",
        "interval": (15, "minutes"),
        "description": "Marks events stuck in processing as failed so they retry.",
    },
    {
        "name": "Refresh Pending Payee Accounts",
        "task": "settlement.tasks.refresh_pending_payee_accounts",
        "interval": (1, "hours"),
        "description": "Pulls verification state for payees still pending.",
    },
    {
        "name": "Sync Pending Refunds",
        "task": "settlement.tasks.sync_pending_refunds",
        "interval": (30, "minutes"),
        "description": "Pulls refund status from Stripe when no webhook arrived.",
    },
]

CLEANUP_TASK_NAME = "Cleanup Old Stripe Webhooks"


def create_periodic_tasks(apps, schema_editor):
    """Create the settlement periodic tasks."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in PERIODIC_TASKS:
        every, period = entry["interval"]
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=every,
            period=period,
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )

    # Daily at 3 AM UTC
    crontab_daily_3am, _ = CrontabSchedule.objects.get_or_create(
        minute="0",
        hour="3",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )
    PeriodicTask.objects.get_or_create(
        name=CLEANUP_TASK_NAME,
        defaults={
            "task": "settlement.tasks.cleanup_old_webhooks",
            "crontab": crontab_daily_3am,
            "enabled": True,
            "description": (
                "Deletes processed and skipped webhook events older than "
                "SETTLEMENT_WEBHOOK_RETENTION_DAYS."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    names = [entry["name"] for entry in PERIODIC_TASKS] + [CLEANUP_TASK_NAME]
    PeriodicTask.objects.filter(name__in=names).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("settlement", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
