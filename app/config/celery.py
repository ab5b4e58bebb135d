"""
Celery configuration for the payments service.

Celery runs the payment background work:
- Status polling for payments whose webhook has not arrived (every 15 seconds)
- Daily cleanup of idempotency keys and processed webhook inbox entries

Schedules live in the database (django-celery-beat) and are created by the
payments data migrations. Redis is both the message broker and result
backend. Tasks are auto-discovered from all installed Django apps.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import logging
import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

logger = logging.getLogger(__name__)

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up payments.tasks, which re-exports the status poller tasks
app.autodiscover_tasks()


@app.task(bind=True, ignore_result=True)
def debug_task(self):
    """
    Log the task request to check worker connectivity.

    Usage:
        from config.celery import debug_task
        debug_task.delay()
    """
    logger.info("Celery debug task", extra={"request": repr(self.request)})
