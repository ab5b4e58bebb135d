"""
Tenant resolution for HTTP requests.

Usage:
    from payments.tenancy import tenant_id_from_request

    tenant_id = tenant_id_from_request(request)
"""

from __future__ import annotations

from django.conf import settings

TENANT_HEADER = "X-Tenant-Id"


def tenant_id_from_request(request) -> str:
    """The ``X-Tenant-Id`` header, or PAYMENTS_DEFAULT_TENANT when absent."""
    tenant_id = (request.headers.get(TENANT_HEADER) or "").strip()
    return tenant_id or getattr(settings, "PAYMENTS_DEFAULT_TENANT", "default")
