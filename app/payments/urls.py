"""
URL configuration for the payments app.

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments import views
from payments.webhooks.views import gateway_webhook

app_name = "payments"

urlpatterns = [
    # Catalog & quotes
    path("payment-methods/", views.PaymentMethodListView.as_view(), name="payment-method-list"),
    path("payment-methods/<str:method_code>/", views.PaymentMethodDetailView.as_view(), name="payment-method-detail"),
    path("fees/quote/", views.FeeQuoteView.as_view(), name="fee-quote"),
    # Payer flow
    path("intents/", views.PaymentIntentCreateView.as_view(), name="intent-create"),
    path("transactions/", views.TransactionListView.as_view(), name="transaction-list"),
    path("transactions/<uuid:transaction_id>/", views.TransactionDetailView.as_view(), name="transaction-detail"),
    path(
        "transactions/<uuid:transaction_id>/confirm/",
        views.ConfirmPaymentView.as_view(),
        name="transaction-confirm",
    ),
    path(
        "transactions/<uuid:transaction_id>/refund/",
        views.RefundPaymentView.as_view(),
        name="transaction-refund",
    ),
    path(
        "transactions/<uuid:transaction_id>/proof/",
        views.ProofUploadView.as_view(),
        name="transaction-proof",
    ),
    path("payouts/", views.PayoutListView.as_view(), name="payout-list"),
    # Reviewer flow
    path(
        "admin/manual-verifications/",
        views.ManualVerificationListView.as_view(),
        name="manual-verification-list",
    ),
    path(
        "admin/manual-verifications/<uuid:transaction_id>/",
        views.ManualVerificationDecisionView.as_view(),
        name="manual-verification-decision",
    ),
    path("admin/statistics/", views.PaymentStatisticsView.as_view(), name="statistics"),
    # Unauthenticated
    path("proofs/<str:token>/", views.proof_download, name="proof-download"),
    path("webhooks/<str:provider_code>/", gateway_webhook, name="gateway-webhook"),
]
