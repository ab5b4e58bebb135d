"""
Add celery-beat schedules for payment status polling and housekeeping.

- scan_due_polling_jobs every 15 seconds
- cleanup_idempotency_keys daily
- cleanup_webhook_inbox daily
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Scan Due Payment Polling Jobs",
        "task": "payments.workers.status_poller.scan_due_polling_jobs",
        "every": 15,
        "period": "seconds",
        "description": (
            "Queues a status poll for every pending PollingJob whose "
            "next_poll_at has passed."
        ),
    },
    {
        "name": "Cleanup Idempotency Keys",
        "task": "payments.tasks.cleanup_idempotency_keys",
        "every": 1,
        "period": "days",
        "description": "Deletes idempotency keys older than the retention horizon.",
    },
    {
        "name": "Cleanup Webhook Inbox",
        "task": "payments.tasks.cleanup_webhook_inbox",
        "every": 1,
        "period": "days",
        "description": "Deletes processed webhook inbox entries older than the retention horizon.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for polling and cleanup."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for spec in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=spec["every"],
            period=spec["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=spec["name"],
            defaults={
                "task": spec["task"],
                "interval": schedule,
                "enabled": True,
                "description": spec["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[spec["name"] for spec in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
