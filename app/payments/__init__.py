"""
Payments app: payment transactions and payout distribution.

This app handles:
- Payment intents, confirmation and refunds through gateway adapters
- Manual payments verified from uploaded proof
- Escrow payout holds and their release to recipients
- Idempotent gateway webhook processing

Related apps:
    - authentication: User model for payers, recipients and reviewers
    - notifications: Payment event notifications

Usage:
    from payments.engine import get_engine

    result = get_engine().orchestrator.create_payment_intent(user, intent_input)
    get_engine().orchestrator.confirm_payment(user, result.transaction.id)
"""
