"""
Serializers for the payments API.

Request serializers validate input and hand plain values to the services;
response serializers render models and service results.
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from payments.models import PaymentTransaction, PayoutDistribution
from payments.state_machines import (
    PayoutStatus,
    RecipientType,
    TransactionStatus,
    TransactionType,
    VerificationAction,
)

MIN_AMOUNT = Decimal("0.01")


# =============================================================================
# Requests
# =============================================================================


class CreatePaymentIntentSerializer(serializers.Serializer):
    """Input for POST /intents/."""

    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=MIN_AMOUNT)
    currency = serializers.CharField(min_length=3, max_length=3)
    transaction_type = serializers.ChoiceField(
        choices=TransactionType.choices,
        default=TransactionType.GENERIC,
    )
    reference_type = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")
    reference_id = serializers.CharField(max_length=64, required=False, allow_null=True, default=None)
    payment_method = serializers.CharField(max_length=50, required=False, allow_null=True, default=None)
    provider_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
    country = serializers.CharField(max_length=2, required=False, allow_null=True, default=None)
    metadata = serializers.DictField(required=False, default=dict)

    def validate_currency(self, value: str) -> str:
        return value.upper()


class ConfirmPaymentSerializer(serializers.Serializer):
    gateway_transaction_id = serializers.CharField(max_length=255, required=False, allow_null=True, default=None)


class RefundPaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        required=False,
        allow_null=True,
        default=None,
        help_text="Omit for a full refund of the remaining amount",
    )
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")


class FeeQuoteSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=MIN_AMOUNT)
    transaction_type = serializers.ChoiceField(choices=TransactionType.choices)
    currency = serializers.CharField(min_length=3, max_length=3, required=False, allow_null=True, default=None)
    provider_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    payment_method = serializers.CharField(max_length=50, required=False, allow_null=True, default=None)


class ProofUploadSerializer(serializers.Serializer):
    file = serializers.FileField()


class VerifyManualPaymentSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=VerificationAction.choices)
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if attrs["action"] == VerificationAction.REJECT and not attrs.get("notes"):
            raise serializers.ValidationError({"notes": "A reason is required when rejecting a payment."})
        return attrs


class TransactionQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=TransactionStatus.choices, required=False)
    transaction_type = serializers.ChoiceField(choices=TransactionType.choices, required=False)
    provider = serializers.CharField(max_length=30, required=False)
    date_from = serializers.DateTimeField(required=False)
    date_to = serializers.DateTimeField(required=False)
    min_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    max_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False, default=20)


class PayoutQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=PayoutStatus.choices, required=False)
    recipient_type = serializers.ChoiceField(choices=RecipientType.choices, required=False)
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False, default=20)


class ManualVerificationQuerySerializer(serializers.Serializer):
    transaction_type = serializers.ChoiceField(choices=TransactionType.choices, required=False)
    payment_method = serializers.CharField(max_length=50, required=False)
    uploaded_after = serializers.DateTimeField(required=False)
    uploaded_before = serializers.DateTimeField(required=False)
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False, default=20)


class StatisticsQuerySerializer(serializers.Serializer):
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)


class PaymentMethodQuerySerializer(serializers.Serializer):
    country = serializers.CharField(max_length=2, required=False)
    currency = serializers.CharField(min_length=3, max_length=3, required=False)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)


# =============================================================================
# Responses
# =============================================================================


class PaymentTransactionSerializer(serializers.ModelSerializer):
    """Transaction as seen by its payer (and reviewers)."""

    provider = serializers.CharField(source="provider.provider_code", read_only=True, default=None)
    remaining_refundable = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = PaymentTransaction
        fields = [
            "id",
            "transaction_type",
            "reference_type",
            "reference_id",
            "description",
            "amount",
            "currency",
            "platform_fee",
            "gateway_fee",
            "total_fees",
            "net_amount",
            "refunded_amount",
            "remaining_refundable",
            "status",
            "provider",
            "payment_method",
            "is_manual",
            "gateway_transaction_id",
            "payment_reference_code",
            "upload_deadline",
            "manual_payment_details",
            "proof_uploaded_at",
            "proof_upload_attempts",
            "verified_at",
            "rejection_reason",
            "failure_reason",
            "processed_at",
            "refunded_at",
            "canceled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PayoutDistributionSerializer(serializers.ModelSerializer):
    payment_transaction_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = PayoutDistribution
        fields = [
            "id",
            "payment_transaction_id",
            "recipient_type",
            "amount",
            "currency",
            "status",
            "release_date",
            "can_release_at",
            "hold_reason",
            "released_at",
            "frozen_at",
            "canceled_at",
            "attempt_count",
            "failure_reason",
            "created_at",
        ]
        read_only_fields = fields
