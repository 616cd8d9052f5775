"""
Webhook endpoint for payment gateways.

The view:
1. Verifies the webhook signature with the provider's adapter
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Queues the event for async processing
4. Returns immediately

Usage:
    # In urls.py
    from payments.webhooks.views import gateway_webhook

    urlpatterns = [
        path("webhooks/<str:provider_code>/", gateway_webhook, name="gateway-webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.exceptions import BaseApplicationError
from payments.engine import get_engine

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def gateway_webhook(request: HttpRequest, provider_code: str) -> JsonResponse:
    """
    Receive and queue a gateway webhook.

    Security:
    - Signature verification happens before anything is stored
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Returns:
        JsonResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Invalid signature or malformed payload
        - 404: Unknown provider
    """
    engine = get_engine()
    payload = request.body

    try:
        adapter = engine.gateways.get_adapter(provider_code)
        signature = request.headers.get(adapter.signature_header, "")
        event = engine.webhooks.receive(provider_code, payload, signature)
    except BaseApplicationError as e:
        return JsonResponse(e.to_dict(), status=e.http_status)

    if event.is_processed:
        return JsonResponse({"status": "already_processed", "webhook_event_id": str(event.id)})

    try:
        from payments.tasks import process_webhook_event

        process_webhook_event.delay(str(event.id))
        logger.info(
            "Webhook queued for processing",
            extra={"provider": provider_code, "webhook_event_id": str(event.id)},
        )
    except Exception:
        # Stored PENDING events are re-queued by retry_failed_webhooks
        logger.error(
            "Failed to queue webhook",
            extra={"provider": provider_code, "webhook_event_id": str(event.id)},
            exc_info=True,
        )

    return JsonResponse({"status": "accepted", "webhook_event_id": str(event.id)})
