"""
WSGI config for the payments service.

Fallback entry point for WSGI servers (gunicorn); the service normally runs
under Uvicorn through config.asgi.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
