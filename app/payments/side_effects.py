"""
Post-commit side-effect queue.

Orchestrator operations register best-effort work (notifications, payout
distribution, reference linkage) while they hold row locks, then run the
queue once the atomic block has committed. A failing side effect is logged
and never fails the payment operation that queued it.

Usage:
    effects = SideEffectQueue(operation="confirm_payment")

    with transaction.atomic():
        ...
        effects.add("notify_success", lambda: notifier.notify(user_id, note))

    effects.run()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class SideEffectQueue:
    """Named callables executed in insertion order after the durable write."""

    def __init__(self, operation: str = "", **context: Any):
        self.operation = operation
        self.context = context
        self._effects: list[tuple[str, Callable[[], Any]]] = []

    def __len__(self) -> int:
        return len(self._effects)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._effects]

    def add(self, name: str, func: Callable[[], Any]) -> None:
        self._effects.append((name, func))

    def run(self) -> list[str]:
        """
        Execute and drain the queue.

        Returns:
            Names of side effects that raised
        """
        failed: list[str] = []
        effects, self._effects = self._effects, []

        for name, func in effects:
            try:
                func()
            except Exception:
                failed.append(name)
                logger.error(
                    f"Side effect '{name}' failed",
                    extra={"operation": self.operation, "side_effect": name, **self.context},
                    exc_info=True,
                )

        return failed
