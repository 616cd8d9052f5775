"""
Workers for async payment processing.

This module contains Celery tasks for background payment operations:
- PayoutExecutor: Releases due payout holds to recipients and recovers
  payouts stuck in PROCESSING

Usage:
    from payments.workers import execute_payout, release_due_payouts

    release_due_payouts.delay()
    execute_payout.delay(str(payout_id))
"""

from payments.workers.payout_executor import (
    PayoutExecutor,
    backoff_delay,
    execute_payout,
    recover_stuck_payouts,
    release_due_payouts,
)

__all__ = [
    "PayoutExecutor",
    "backoff_delay",
    "execute_payout",
    "recover_stuck_payouts",
    "release_due_payouts",
]
