"""
Tests for SideEffectQueue.
"""

from payments.side_effects import SideEffectQueue


class TestSideEffectQueue:
    """Tests for post-commit side effects."""

    def test_runs_in_order(self):
        """Should run effects in insertion order."""
        calls = []
        effects = SideEffectQueue(operation="confirm_payment")
        effects.add("first", lambda: calls.append("first"))
        effects.add("second", lambda: calls.append("second"))

        failed = effects.run()

        assert calls == ["first", "second"]
        assert failed == []

    def test_failure_does_not_stop_the_queue(self):
        """Should log a failing effect and continue with the rest."""
        calls = []

        def explode():
            raise RuntimeError("notification backend down")

        effects = SideEffectQueue(operation="confirm_payment", transaction_id="t-1")
        effects.add("notify", explode)
        effects.add("distribute", lambda: calls.append("distribute"))

        failed = effects.run()

        assert failed == ["notify"]
        assert calls == ["distribute"]

    def test_queue_drains(self):
        """Should not run the same effects twice."""
        calls = []
        effects = SideEffectQueue()
        effects.add("once", lambda: calls.append(1))

        effects.run()
        effects.run()

        assert calls == [1]
        assert len(effects) == 0

    def test_names(self):
        """Should list queued effect names."""
        effects = SideEffectQueue()
        effects.add("a", lambda: None)
        effects.add("b", lambda: None)

        assert effects.names == ["a", "b"]
