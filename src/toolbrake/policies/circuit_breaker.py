"""Circuit Breaker — temporarily disable a tool after repeated failures.

Tracks failures per tool. When a tool reaches `failure_threshold` failures its
circuit opens and every call to it is blocked. Once `reset_timeout_seconds`
have passed, the next call finds the circuit half-open: the failure count is
reset, the circuit closes and the call goes through. The transition is checked
lazily at evaluation time, never by a timer.

Failures and successes are reported by whoever observes backend outcomes via
`record_failure` / `record_success`.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable

from pydantic import BaseModel

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.policy import Policy
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict

logger = logging.getLogger("toolbrake")


class CircuitStatus(BaseModel):
    """Point-in-time view of one tool's circuit."""

    failures: int
    is_open: bool
    reset_in: float | None = None


class CircuitBreakerPolicy(Policy):
    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name="CircuitBreakerPolicy")
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock
        self._failures: dict[str, int] = {}
        self._opened_at: dict[str, float] = {}

    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> Verdict | None:
        tool = invocation.tool_name
        opened_at = self._opened_at.get(tool)
        if opened_at is None:
            return None

        elapsed = self._clock() - opened_at
        if elapsed < self.reset_timeout_seconds:
            retry_in = math.ceil(self.reset_timeout_seconds - elapsed)
            return self.block(
                f"Circuit OPEN for '{tool}'. Tool disabled after {self.failure_threshold} "
                f"failures. Retry in {retry_in}s.",
                details={"tool": tool, "retry_in_seconds": retry_in},
            )

        # Half-open: let this call through with a clean slate
        del self._opened_at[tool]
        self._failures[tool] = 0
        logger.info("Circuit for %s reset after %.1fs", tool, elapsed)
        return None

    def record_failure(self, tool_name: str) -> None:
        count = self._failures.get(tool_name, 0) + 1
        self._failures[tool_name] = count
        if count >= self.failure_threshold:
            self._opened_at[tool_name] = self._clock()
            logger.warning("Circuit OPEN for %s after %d failures", tool_name, count)

    def record_success(self, tool_name: str) -> None:
        self._failures[tool_name] = 0
        self._opened_at.pop(tool_name, None)

    def status(self, tool_name: str) -> CircuitStatus:
        opened_at = self._opened_at.get(tool_name)
        reset_in = None
        if opened_at is not None:
            reset_in = max(0.0, self.reset_timeout_seconds - (self._clock() - opened_at))
        return CircuitStatus(
            failures=self._failures.get(tool_name, 0),
            is_open=opened_at is not None,
            reset_in=reset_in,
        )
