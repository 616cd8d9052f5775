"""
DRF views for the payments app.

Endpoints (all under /api/v1/payments/):
    GET  payment-methods/                         - Available payment methods
    GET  payment-methods/{code}/                  - One method, with account details
    POST fees/quote/                              - Fee breakdown for an amount
    POST intents/                                 - Create or refresh a payment intent
    GET  transactions/                            - Caller's transactions with summary
    GET  transactions/{id}/                       - Transaction detail
    POST transactions/{id}/confirm/               - Confirm with the gateway
    POST transactions/{id}/refund/                - Full or partial refund
    POST transactions/{id}/proof/                 - Upload proof of payment
    GET  payouts/                                 - Payouts owed to the caller
    GET  admin/manual-verifications/              - Proofs awaiting review
    POST admin/manual-verifications/{id}/         - Approve or reject a proof
    GET  admin/statistics/                        - Payment statistics
    GET  proofs/{token}/                          - Signed proof download
    POST webhooks/{provider_code}/                - Gateway webhooks (see payments.webhooks)

Security:
    - All endpoints require authentication except webhooks and signed
      proof downloads
    - Service errors are rendered as ``{"error", "error_code", "details"}``
      with the error's HTTP status
"""

from __future__ import annotations

import logging
import mimetypes
from decimal import Decimal
from typing import Any

from django.conf import settings
from django.core import signing
from django.core.files.storage import default_storage
from django.http import FileResponse, Http404
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError
from payments.engine import get_engine
from payments.serializers import (
    ConfirmPaymentSerializer,
    CreatePaymentIntentSerializer,
    FeeQuoteSerializer,
    ManualVerificationQuerySerializer,
    PaymentMethodQuerySerializer,
    PaymentTransactionSerializer,
    PayoutDistributionSerializer,
    PayoutQuerySerializer,
    ProofUploadSerializer,
    RefundPaymentSerializer,
    StatisticsQuerySerializer,
    TransactionQuerySerializer,
    VerifyManualPaymentSerializer,
)
from payments.services import (
    CreatePaymentIntentInput,
    ManualVerificationFilters,
    PaymentMethodService,
    PaymentStatisticsService,
    PayoutQuery,
    PayoutQueryService,
    TransactionQuery,
)
from payments.storage import read_proof_token

logger = logging.getLogger(__name__)


def as_json(value: Any) -> Any:
    """Render Decimals as strings, recursively."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: as_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [as_json(item) for item in value]
    return value


class PaymentAPIView(APIView):
    """Authenticated payments endpoint that renders service errors."""

    permission_classes = [IsAuthenticated]

    def handle_exception(self, exc):
        if isinstance(exc, BaseApplicationError):
            return Response(exc.to_dict(), status=exc.http_status)
        return super().handle_exception(exc)


# =============================================================================
# Catalog & Quotes
# =============================================================================


class PaymentMethodListView(PaymentAPIView):
    """GET /payment-methods/?country=MY&currency=MYR&amount=100"""

    @extend_schema(operation_id="list_payment_methods", tags=["Payments"], parameters=[PaymentMethodQuerySerializer])
    def get(self, request):
        query = PaymentMethodQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        methods = PaymentMethodService.get_available_payment_methods(**query.validated_data)
        return Response({"results": methods})


class PaymentMethodDetailView(PaymentAPIView):
    """GET /payment-methods/{code}/"""

    @extend_schema(operation_id="get_payment_method", tags=["Payments"])
    def get(self, request, method_code):
        return Response(PaymentMethodService.get_payment_method(method_code))


class FeeQuoteView(PaymentAPIView):
    """POST /fees/quote/"""

    @extend_schema(operation_id="quote_fees", tags=["Payments"], request=FeeQuoteSerializer)
    def post(self, request):
        serializer = FeeQuoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        breakdown = get_engine().orchestrator.calculate_fee_quote(**serializer.validated_data)
        return Response(breakdown.to_dict())


# =============================================================================
# Payer Flow
# =============================================================================


class PaymentIntentCreateView(PaymentAPIView):
    """
    POST /intents/

    Returns 201 with the transaction and either gateway client details
    (client_secret / payment_url) or manual transfer instructions.
    """

    @extend_schema(operation_id="create_payment_intent", tags=["Payments"], request=CreatePaymentIntentSerializer)
    def post(self, request):
        serializer = CreatePaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = get_engine().orchestrator.create_payment_intent(
            request.user,
            CreatePaymentIntentInput(**serializer.validated_data),
        )

        data = result.to_dict()
        data["transaction"] = PaymentTransactionSerializer(result.transaction).data
        return Response(data, status=status.HTTP_200_OK if result.reused else status.HTTP_201_CREATED)


class TransactionListView(PaymentAPIView):
    """GET /transactions/"""

    @extend_schema(operation_id="list_transactions", tags=["Payments"], parameters=[TransactionQuerySerializer])
    def get(self, request):
        query = TransactionQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        page = get_engine().orchestrator.list_user_transactions(request.user, TransactionQuery(**query.validated_data))
        return Response(
            {
                "results": PaymentTransactionSerializer(page.items, many=True).data,
                "pagination": page.pagination,
                "summary": as_json(page.summary),
            }
        )


class TransactionDetailView(PaymentAPIView):
    """GET /transactions/{id}/"""

    @extend_schema(operation_id="get_transaction", tags=["Payments"])
    def get(self, request, transaction_id):
        txn = get_engine().orchestrator.get_transaction(request.user, transaction_id)
        return Response(PaymentTransactionSerializer(txn).data)


class ConfirmPaymentView(PaymentAPIView):
    """POST /transactions/{id}/confirm/"""

    @extend_schema(operation_id="confirm_payment", tags=["Payments"], request=ConfirmPaymentSerializer)
    def post(self, request, transaction_id):
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        txn = get_engine().orchestrator.confirm_payment(
            request.user,
            transaction_id,
            gateway_transaction_id=serializer.validated_data["gateway_transaction_id"],
        )
        return Response(PaymentTransactionSerializer(txn).data)


class RefundPaymentView(PaymentAPIView):
    """POST /transactions/{id}/refund/"""

    @extend_schema(operation_id="refund_payment", tags=["Payments"], request=RefundPaymentSerializer)
    def post(self, request, transaction_id):
        serializer = RefundPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        txn = get_engine().orchestrator.refund_payment(
            request.user,
            transaction_id,
            amount=serializer.validated_data["amount"],
            reason=serializer.validated_data["reason"],
        )
        return Response(PaymentTransactionSerializer(txn).data)


class ProofUploadView(PaymentAPIView):
    """POST /transactions/{id}/proof/ (multipart, field "file")"""

    parser_classes = [MultiPartParser, FormParser]

    @extend_schema(operation_id="upload_payment_proof", tags=["Payments"], request=ProofUploadSerializer)
    def post(self, request, transaction_id):
        serializer = ProofUploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        txn = get_engine().manual_verification.upload_payment_proof(
            request.user,
            transaction_id,
            serializer.validated_data["file"],
        )
        return Response(PaymentTransactionSerializer(txn).data)


class PayoutListView(PaymentAPIView):
    """GET /payouts/"""

    @extend_schema(operation_id="list_payouts", tags=["Payments"], parameters=[PayoutQuerySerializer])
    def get(self, request):
        query = PayoutQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        page = PayoutQueryService.list_user_payouts(request.user, PayoutQuery(**query.validated_data))
        return Response(
            {
                "results": PayoutDistributionSerializer(page.items, many=True).data,
                "pagination": page.pagination,
                "summary": as_json(page.summary),
            }
        )


# =============================================================================
# Reviewer Flow
# =============================================================================


class ManualVerificationListView(PaymentAPIView):
    """GET /admin/manual-verifications/"""

    @extend_schema(
        operation_id="list_manual_verifications",
        tags=["Payments - Admin"],
        parameters=[ManualVerificationQuerySerializer],
    )
    def get(self, request):
        query = ManualVerificationQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        page = get_engine().manual_verification.get_pending_manual_verifications(
            request.user,
            ManualVerificationFilters(**query.validated_data),
        )
        return Response(
            {
                "results": [item.to_dict() for item in page.items],
                "pagination": page.pagination,
            }
        )


class ManualVerificationDecisionView(PaymentAPIView):
    """POST /admin/manual-verifications/{id}/ {"action": "approve"|"reject", "notes": "..."}"""

    @extend_schema(
        operation_id="verify_manual_payment",
        tags=["Payments - Admin"],
        request=VerifyManualPaymentSerializer,
    )
    def post(self, request, transaction_id):
        serializer = VerifyManualPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        txn = get_engine().manual_verification.verify_manual_payment(
            request.user,
            transaction_id,
            serializer.validated_data["action"],
            serializer.validated_data["notes"],
        )
        return Response(PaymentTransactionSerializer(txn).data)


class PaymentStatisticsView(PaymentAPIView):
    """GET /admin/statistics/?start=...&end=..."""

    @extend_schema(operation_id="payment_statistics", tags=["Payments - Admin"], parameters=[StatisticsQuerySerializer])
    def get(self, request):
        query = StatisticsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        stats = PaymentStatisticsService.get_payment_statistics(request.user, **query.validated_data)
        return Response(as_json(stats))


# =============================================================================
# Signed Proof Download
# =============================================================================


def proof_download(request, token: str):
    """
    Serve a proof file for a signed, unexpired token.

    Tokens are issued by DefaultStorageProofStorage.get_signed_url when the
    storage backend cannot presign URLs itself.
    """
    max_age = getattr(settings, "PROOF_SIGNED_URL_TTL_SECONDS", 3600)
    try:
        key = read_proof_token(token, max_age=max_age)
    except signing.BadSignature:
        logger.warning("Rejected proof download with invalid or expired token")
        raise Http404("Proof not found") from None

    if not default_storage.exists(key):
        raise Http404("Proof not found")

    content_type, _ = mimetypes.guess_type(key)
    return FileResponse(
        default_storage.open(key, "rb"),
        content_type=content_type or "application/octet-stream",
    )
