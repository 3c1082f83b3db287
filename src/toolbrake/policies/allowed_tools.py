"""Allowed Tools — restrict the agent to an explicit set of tool names."""

from __future__ import annotations

from collections.abc import Iterable

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.policy import Policy
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict


class AllowedToolsPolicy(Policy):
    """Block any tool that is denied, or missing from the allow list. Names match exactly.

    `allowed_tools=None` allows every tool not in `denied_tools`; the deny
    list always wins.

    Usage:
        policy = AllowedToolsPolicy(["read_file", "web_search"])
        policy = AllowedToolsPolicy(None, denied_tools=["run_shell"])
    """

    def __init__(
        self,
        allowed_tools: Iterable[str] | None,
        *,
        denied_tools: Iterable[str] = (),
    ) -> None:
        super().__init__(name="AllowedToolsPolicy")
        self._ordered: list[str] | None = None
        self.allowed_tools: frozenset[str] | None = None
        if allowed_tools is not None:
            self._ordered = list(dict.fromkeys(allowed_tools))
            self.allowed_tools = frozenset(self._ordered)
        self.denied_tools = frozenset(denied_tools)

    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> Verdict | None:
        tool = invocation.tool_name
        if tool in self.denied_tools:
            return self.block(f"Tool '{tool}' is in the denied list.", details={"tool": tool})
        if self.allowed_tools is not None and tool not in self.allowed_tools:
            return self.block(
                f"Tool '{tool}' is not in the allowed list: [{', '.join(self._ordered or [])}].",
                details={"tool": tool},
            )
        return None
