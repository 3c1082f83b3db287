"""Policy chain — evaluates a tool call against every policy, in configured order."""

from __future__ import annotations

import logging
from collections.abc import Callable

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.policy import Policy
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict, ViolationAction

logger = logging.getLogger("toolbrake")


class ChainResult:
    """Aggregated outcome of one pass through the chain.

    Attributes:
        verdicts: Every verdict produced, in evaluation order.
        final: The verdict that stopped the chain, or None if it ran to the end.
    """

    def __init__(self, verdicts: list[Verdict]) -> None:
        self.verdicts = verdicts
        self.final: Verdict | None = None
        if verdicts and verdicts[-1].is_terminal:
            self.final = verdicts[-1]

    @property
    def warnings(self) -> list[Verdict]:
        return [v for v in self.verdicts if v.action == ViolationAction.WARN]

    @property
    def is_allowed(self) -> bool:
        """True if the call should be forwarded to the backend."""
        return self.final is None or not self.final.is_rejection

    @property
    def is_rejected(self) -> bool:
        return not self.is_allowed

    @property
    def is_kill(self) -> bool:
        return self.final is not None and self.final.action == ViolationAction.KILL

    @property
    def action(self) -> str:
        """Aggregate action name: ``allow`` or the final/strongest verdict's action."""
        if self.final is not None:
            return self.final.action.value
        if self.verdicts:
            return ViolationAction.WARN.value
        return "allow"

    def __str__(self) -> str:
        lines = [f"ChainResult: {self.action}"]
        for v in self.verdicts:
            lines.append(f"  {v}")
        return "\n".join(lines)


class PolicyChain:
    """Ordered list of policies evaluated one after another for each tool call.

    Warn verdicts are collected and evaluation continues. The first block, kill,
    sandbox or request_approval verdict ends the pass.

    Usage:
        chain = PolicyChain()
        chain.add_policy(MaxToolCallsPolicy(50))
        chain.add_policy(AllowedToolsPolicy(["read_file", "calculator"]))

        result = await chain.evaluate(invocation, tracker.snapshot())
        if result.is_rejected:
            print(result.final)
    """

    def __init__(self, policies: list[Policy] | None = None) -> None:
        self._policies: list[Policy] = []
        self._listeners: list[Callable[[ToolInvocation, ChainResult], None]] = []
        for policy in policies or []:
            self.add_policy(policy)

    def add_policy(self, policy: Policy) -> PolicyChain:
        """Append a policy. Returns self for chaining."""
        self._policies.append(policy)
        logger.info("Registered policy: %s", policy.name)
        return self

    def remove_policy(self, name: str) -> PolicyChain:
        """Remove a policy by name. Returns self for chaining."""
        self._policies = [p for p in self._policies if p.name != name]
        return self

    def get_policy(self, name: str) -> Policy | None:
        for p in self._policies:
            if p.name == name:
                return p
        return None

    @property
    def policies(self) -> list[Policy]:
        return list(self._policies)

    def add_listener(self, listener: Callable[[ToolInvocation, ChainResult], None]) -> PolicyChain:
        """Add a hook that runs after each evaluation. For metrics, dashboards, etc."""
        self._listeners.append(listener)
        return self

    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> ChainResult:
        """Run the invocation through every enabled policy in order."""
        verdicts: list[Verdict] = []

        for policy in self._policies:
            if not policy.enabled:
                continue
            try:
                verdict = await policy.evaluate(invocation, state)
            except Exception as e:
                logger.error("Policy %s raised exception: %s", policy.name, e)
                # Fail-safe: a crashing policy blocks the call
                verdict = policy.block(f"Policy error (fail-safe block): {e}")

            if verdict is None:
                continue
            verdicts.append(verdict)
            if verdict.is_terminal:
                break

        result = ChainResult(verdicts)
        logger.debug(
            "Evaluated %s: %s (policies=%d)",
            invocation.tool_name,
            result.action,
            len(self._policies),
        )

        for listener in self._listeners:
            try:
                listener(invocation, result)
            except Exception as e:
                logger.error("Chain listener error: %s", e)

        return result

    def __len__(self) -> int:
        return len(self._policies)

    def __repr__(self) -> str:
        names = [p.name for p in self._policies]
        return f"PolicyChain(policies={names})"
