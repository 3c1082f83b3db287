"""Rate Limit — stop runaway agent loops with a sliding call window."""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.policy import Policy
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict

WARN_FRACTION = 0.8
BASE_BACKOFF_MS = 1000
MAX_BACKOFF_MS = 30000


class RateLimitPolicy(Policy):
    """Allow at most `calls_per_window` calls in any trailing `window_seconds`.

    Warns once the window holds 80% of the limit (the call still counts) and
    blocks at the limit with an exponential backoff hint. Blocked calls are
    not added to the window.

    Usage:
        policy = RateLimitPolicy(30, window_seconds=60)
    """

    def __init__(
        self,
        calls_per_window: int,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name="RateLimitPolicy")
        self.calls_per_window = calls_per_window
        self.window_seconds = window_seconds
        self.warning_threshold = math.floor(calls_per_window * WARN_FRACTION)
        self._clock = clock
        self._calls: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    def backoff_ms(self, current_rate: int) -> int:
        overage = current_rate - self.calls_per_window
        return min(math.floor(BASE_BACKOFF_MS * 2**overage), MAX_BACKOFF_MS)

    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> Verdict | None:
        now = self._clock()
        self._prune(now)
        current = len(self._calls)
        details: dict[str, Any] = {"current": current, "limit": self.calls_per_window}

        if current >= self.calls_per_window:
            wait_ms = self.backoff_ms(current)
            return self.block(
                f"Rate limit exceeded ({current}/{self.calls_per_window}). Retry after {wait_ms}ms.",
                details={**details, "retry_after_ms": wait_ms},
            )

        self._calls.append(now)
        if current >= self.warning_threshold:
            return self.warn(
                f"Approaching rate limit ({current + 1}/{self.calls_per_window}).",
                details=details,
            )
        return None

    def current_rate(self) -> dict[str, float]:
        """Calls currently inside the window, with the configured limit."""
        self._prune(self._clock())
        return {
            "current": len(self._calls),
            "limit": self.calls_per_window,
            "window_seconds": self.window_seconds,
        }
