"""Session limits — cap the number of tool calls and the wall-clock runtime."""

from __future__ import annotations

import time
from collections.abc import Callable

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.policy import Policy
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict


class MaxToolCallsPolicy(Policy):
    """Block every call once the session has made `max_calls` tool calls.

    Usage:
        policy = MaxToolCallsPolicy(50)
    """

    def __init__(self, max_calls: int) -> None:
        super().__init__(name="MaxToolCallsPolicy")
        self.max_calls = max_calls

    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> Verdict | None:
        if state.call_count >= self.max_calls:
            return self.block(
                f"Maximum tool calls limit ({self.max_calls}) has been reached.",
                details={"call_count": state.call_count, "max_calls": self.max_calls},
            )
        return None


class MaxRuntimePolicy(Policy):
    """Kill the session once it has been running longer than `max_seconds`.

    The clock starts when the policy is constructed, i.e. at proxy start.
    """

    def __init__(self, max_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(name="MaxRuntimePolicy")
        self.max_seconds = max_seconds
        self._clock = clock
        self._started = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> Verdict | None:
        elapsed = self.elapsed
        if elapsed > self.max_seconds:
            return self.kill(
                f"Maximum runtime exceeded ({elapsed:.1f}s > {self.max_seconds:g}s).",
                details={"elapsed_seconds": elapsed, "max_seconds": self.max_seconds},
            )
        return None
