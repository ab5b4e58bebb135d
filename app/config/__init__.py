# Payments service configuration: settings, URLs, ASGI/WSGI and Celery.
# The Celery app is imported here so shared_task functions bind to it.

from config.celery import app as celery_app

__all__ = ("celery_app",)
