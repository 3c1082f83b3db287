"""Tests for the human-in-the-loop ApprovalPolicy."""

import pytest

from toolbrake import ApprovalPolicy, SessionState, ToolInvocation
from toolbrake.core.verdict import ViolationAction
from toolbrake.policies.approval import ApprovalStatus


def make_invocation(tool: str = "send_email", **arguments) -> ToolInvocation:
    return ToolInvocation(tool_name=tool, arguments=arguments or {"to": "a@b.c"}, request_id=3)


@pytest.mark.asyncio
async def test_ungated_tool_passes():
    policy = ApprovalPolicy(["send_email"])
    assert await policy.evaluate(make_invocation("read_file"), SessionState()) is None


@pytest.mark.asyncio
async def test_first_call_requests_approval():
    policy = ApprovalPolicy(["send_email"])
    verdict = await policy.evaluate(make_invocation(), SessionState())
    assert verdict.action == ViolationAction.REQUEST_APPROVAL
    assert len(policy.pending()) == 1
    assert policy.pending()[0].key == verdict.details["approval_key"]


@pytest.mark.asyncio
async def test_repeat_while_pending_is_blocked():
    policy = ApprovalPolicy(["send_email"])
    await policy.evaluate(make_invocation(), SessionState())
    verdict = await policy.evaluate(make_invocation(), SessionState())
    assert verdict.action == ViolationAction.BLOCK
    assert "pending" in verdict.reason


@pytest.mark.asyncio
async def test_approval_is_single_use():
    policy = ApprovalPolicy(["send_email"])
    verdict = await policy.evaluate(make_invocation(), SessionState())
    key = verdict.details["approval_key"]

    assert policy.approve(key)
    assert policy.is_approved(key)
    assert await policy.evaluate(make_invocation(), SessionState()) is None
    assert not policy.is_approved(key)

    again = await policy.evaluate(make_invocation(), SessionState())
    assert again.action == ViolationAction.REQUEST_APPROVAL


@pytest.mark.asyncio
async def test_argument_order_does_not_matter():
    policy = ApprovalPolicy(["send_email"])
    first = await policy.evaluate(make_invocation(to="x", subject="y"), SessionState())
    policy.approve(first.details["approval_key"])
    reordered = ToolInvocation(tool_name="send_email", arguments={"subject": "y", "to": "x"})
    assert await policy.evaluate(reordered, SessionState()) is None


@pytest.mark.asyncio
async def test_deny_drops_request():
    policy = ApprovalPolicy(["send_email"])
    verdict = await policy.evaluate(make_invocation(), SessionState())
    key = verdict.details["approval_key"]
    assert policy.deny(key)
    assert policy.pending() == []
    assert [d.status for d in policy.decisions()] == [ApprovalStatus.DENIED]
    assert not policy.approve(key)


@pytest.mark.asyncio
async def test_decision_history_is_bounded():
    policy = ApprovalPolicy(["send_email"], max_decisions=3)
    for i in range(5):
        verdict = await policy.evaluate(make_invocation(to=f"user{i}@example.com"), SessionState())
        policy.deny(verdict.details["approval_key"])
    decisions = policy.decisions()
    assert len(decisions) == 3
    assert [d.arguments["to"] for d in decisions] == [
        "user2@example.com",
        "user3@example.com",
        "user4@example.com",
    ]
