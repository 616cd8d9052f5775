"""
Payments app configuration.

This app provides the payment transaction and payout distribution engine:
- Payment intents, confirmation and refunds through gateway adapters
- Manual (proof of payment) verification
- Escrow payout holds and their release
- Gateway webhook processing
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    def ready(self):
        from payments.engine import PaymentEngine, set_engine

        set_engine(PaymentEngine.from_settings())
