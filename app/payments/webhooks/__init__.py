"""
Webhook handling for payment gateway events.

Webhooks are verified, stored idempotently, and processed asynchronously
via Celery tasks.

Usage:
    # In urls.py
    from payments.webhooks.views import gateway_webhook

    urlpatterns = [
        path("webhooks/<str:provider_code>/", gateway_webhook, name="gateway-webhook"),
    ]
"""

from payments.webhooks.processor import WebhookProcessor

__all__ = ["WebhookProcessor"]
