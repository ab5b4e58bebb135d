"""
Tests for payments app.

This package contains test modules for:
- test_models.py: Payment, Refund, PollingJob and ProviderConfig models
- test_payments_service.py: PaymentsService facade
- test_status_transition.py, test_refund_service.py: status application
- test_views.py: API endpoint tests
- test_scenarios.py: Create, capture, poll and refund journeys

Usage:
    pytest payments/tests/
    pytest payments/tests/test_payments_service.py
"""
