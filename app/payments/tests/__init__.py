"""
Tests for payments app.

This package contains test modules for:
- test_models.py: Transaction, PayoutDistribution, WebhookEvent model tests
- test_orchestrator.py: Intent, confirmation, refund and expiry flows
- test_manual_verification.py: Proof uploads and reviewer decisions
- test_webhooks.py: Webhook processor and endpoint tests
- test_views.py: API endpoint tests
- test_integration.py: Full payment journeys through the API

Usage:
    pytest payments/tests/
    pytest payments/tests/test_orchestrator.py
"""
