"""Tests for the runtime state tracker."""

from toolbrake import RuntimeTracker, TrustLevel
from toolbrake.core.state import CALL_OVERHEAD_COST


def test_initial_state():
    tracker = RuntimeTracker()
    state = tracker.state
    assert state.call_count == 0
    assert state.cost_accrued == 0.0
    assert state.trust_level == TrustLevel.SANDBOX
    assert not state.blocked
    assert state.block_reason is None
    assert state.history == []


def test_record_call_increments_count_and_cost():
    tracker = RuntimeTracker()
    tracker.record_call()
    tracker.record_call()
    assert tracker.state.call_count == 2
    assert tracker.state.cost_accrued == 2 * CALL_OVERHEAD_COST


def test_snapshot_is_isolated():
    tracker = RuntimeTracker()
    tracker.log_action("WARN", "RateLimitPolicy")
    snap = tracker.snapshot()
    snap.call_count = 99
    snap.history.clear()
    assert tracker.state.call_count == 0
    assert len(tracker.state.history) == 1


def test_set_blocked_and_trust():
    tracker = RuntimeTracker(TrustLevel.TRUSTED)
    tracker.set_blocked("too many calls")
    tracker.update_trust(TrustLevel.SANDBOX)
    assert tracker.state.blocked
    assert tracker.state.block_reason == "too many calls"
    assert tracker.state.trust_level == TrustLevel.SANDBOX


def test_log_action_records_history():
    tracker = RuntimeTracker()
    tracker.log_action("BLOCK", "AllowedToolsPolicy")
    entry = tracker.state.history[0]
    assert entry.action == "BLOCK"
    assert entry.policy == "AllowedToolsPolicy"
    assert entry.timestamp.endswith("+00:00")


def test_reset_keeps_trust_level():
    tracker = RuntimeTracker(TrustLevel.LIMITED)
    tracker.record_call()
    tracker.set_blocked("x")
    tracker.log_action("BLOCK", "p")
    tracker.reset()
    assert tracker.state.call_count == 0
    assert not tracker.state.blocked
    assert tracker.state.history == []
    assert tracker.state.trust_level == TrustLevel.LIMITED
