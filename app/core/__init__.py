"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the orders and payments apps. Nothing in
this package knows about orders, payments or gateways.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - TenantScopedMixin: Indexed tenant_id column
    - AppendOnlyMixin: Insert-only rows (audit logs)

Services (import from core.services):
    - BaseService: Per-class logger for service classes

Exceptions (import from core.exceptions):
    - BaseApplicationError and its HTTP-mapped subclasses
    - api_exception_handler: DRF exception handler

Helpers (import from core.helpers):
    - sha256_hex, canonical_json, parse_uuid, to_minor_units, format_minor_units

Views (import from core.views):
    - health_check: Liveness/readiness probe
"""
