"""
URL configuration for the Django application.

The `urlpatterns` list routes URLs to views. This is the root URL configuration
that includes all app-specific routes.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - JWT token endpoints
        token/                     - Obtain access/refresh pair
        token/refresh/             - Rotate refresh token
    /api/v1/notifications/         - In-app notifications
    /api/v1/payments/              - Payment endpoints
        payment-methods/           - Active payment methods (list/detail)
        fees/quote/                - Fee breakdown for an amount
        intents/                   - Create or reuse a payment intent
        transactions/              - Own transactions with summary
        transactions/{id}/         - Transaction detail
        transactions/{id}/confirm/ - Confirm a gateway payment
        transactions/{id}/refund/  - Full or partial refund
        transactions/{id}/proof/   - Upload manual payment proof
        payouts/                   - Own payouts with summary
        admin/manual-verifications/        - Proof review queue
        admin/manual-verifications/{id}/   - Approve or reject a proof
        admin/statistics/          - Period statistics
        proofs/{token}/            - Signed proof download
        webhooks/{provider_code}/  - Gateway webhook endpoint (POST)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Authentication (simplejwt)
    path("auth/", include("authentication.urls")),
    # Notifications
    path("notifications/", include("notifications.urls")),
    # Payments
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Payments Admin"
admin.site.site_title = "Payments Admin Portal"
admin.site.index_title = "Payment Operations"
