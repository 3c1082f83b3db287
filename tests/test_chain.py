"""Tests for the PolicyChain."""

import pytest

from toolbrake import PolicyChain, Policy, SessionState, ToolInvocation
from toolbrake.core.verdict import ViolationAction


class AllowPolicy(Policy):
    def __init__(self, name: str = "allow"):
        super().__init__(name=name)
        self.calls = 0

    async def evaluate(self, invocation, state):
        self.calls += 1
        return None


class WarnPolicy(Policy):
    def __init__(self):
        super().__init__(name="warner")

    async def evaluate(self, invocation, state):
        return self.warn("Careful")


class BlockPolicy(Policy):
    def __init__(self):
        super().__init__(name="blocker")

    async def evaluate(self, invocation, state):
        return self.block("Always blocked")


class SandboxPolicy(Policy):
    def __init__(self):
        super().__init__(name="sandboxer")

    async def evaluate(self, invocation, state):
        return self.sandbox("Downgrade trust")


class ErrorPolicy(Policy):
    def __init__(self):
        super().__init__(name="crasher")

    async def evaluate(self, invocation, state):
        raise RuntimeError("Policy crashed!")


def make_call(tool: str = "calculator") -> ToolInvocation:
    return ToolInvocation(tool_name=tool, arguments={}, request_id=1)


@pytest.mark.asyncio
async def test_empty_chain_allows():
    result = await PolicyChain().evaluate(make_call(), SessionState())
    assert result.is_allowed
    assert result.final is None
    assert result.action == "allow"


@pytest.mark.asyncio
async def test_warn_does_not_stop_chain():
    tail = AllowPolicy("tail")
    chain = PolicyChain([WarnPolicy(), tail])
    result = await chain.evaluate(make_call(), SessionState())
    assert result.is_allowed
    assert tail.calls == 1
    assert [v.action for v in result.warnings] == [ViolationAction.WARN]
    assert result.action == "warn"


@pytest.mark.asyncio
async def test_block_stops_chain():
    tail = AllowPolicy("tail")
    chain = PolicyChain([WarnPolicy(), BlockPolicy(), tail])
    result = await chain.evaluate(make_call(), SessionState())
    assert result.is_rejected
    assert result.final.policy_name == "blocker"
    assert len(result.verdicts) == 2
    assert tail.calls == 0


@pytest.mark.asyncio
async def test_sandbox_stops_chain_but_call_is_forwarded():
    tail = BlockPolicy()
    chain = PolicyChain([SandboxPolicy(), tail])
    result = await chain.evaluate(make_call(), SessionState())
    assert result.final.action == ViolationAction.SANDBOX
    assert result.is_allowed
    assert not result.is_kill


@pytest.mark.asyncio
async def test_error_policy_fail_safe_block():
    chain = PolicyChain([ErrorPolicy()])
    result = await chain.evaluate(make_call(), SessionState())
    assert result.is_rejected
    assert "fail-safe" in result.final.reason.lower()


@pytest.mark.asyncio
async def test_disabled_policy_skipped():
    policy = BlockPolicy()
    policy.enabled = False
    result = await PolicyChain([policy]).evaluate(make_call(), SessionState())
    assert result.is_allowed


@pytest.mark.asyncio
async def test_remove_and_get_policy():
    chain = PolicyChain().add_policy(BlockPolicy()).add_policy(AllowPolicy())
    assert chain.get_policy("blocker") is not None
    chain.remove_policy("blocker")
    assert chain.get_policy("blocker") is None
    result = await chain.evaluate(make_call(), SessionState())
    assert result.is_allowed


@pytest.mark.asyncio
async def test_listener_runs_and_errors_are_swallowed():
    seen = []

    def broken(invocation, result):
        raise ValueError("listener bug")

    chain = PolicyChain([BlockPolicy()])
    chain.add_listener(broken)
    chain.add_listener(lambda inv, res: seen.append((inv.tool_name, res.action)))
    await chain.evaluate(make_call("send_email"), SessionState())
    assert seen == [("send_email", "block")]


@pytest.mark.asyncio
async def test_result_str():
    result = await PolicyChain([BlockPolicy()]).evaluate(make_call(), SessionState())
    assert "[blocker] block: Always blocked" in str(result)


def test_chain_repr():
    chain = PolicyChain([AllowPolicy(), BlockPolicy()])
    r = repr(chain)
    assert "allow" in r
    assert "blocker" in r
