"""Outcome observer — feeds backend results back into stateful policies.

The proxy forwards backend output untouched. When outcome tracking is
enabled it also shows each line to this observer, which pairs responses with
the tool calls it saw forwarded and reports success or failure to the circuit
breaker and budget policies.
"""

from __future__ import annotations

import logging
from typing import Any

from toolbrake.core.invocation import ToolInvocation
from toolbrake.policies.budget import BudgetPolicy
from toolbrake.policies.circuit_breaker import CircuitBreakerPolicy
from toolbrake.proxy.messages import parse_message

logger = logging.getLogger("toolbrake.proxy")


def is_failure(response: dict[str, Any]) -> bool:
    """A JSON-RPC error, or a tool result flagged with ``isError``."""
    if "error" in response:
        return True
    result = response.get("result")
    return isinstance(result, dict) and result.get("isError") is True


class OutcomeObserver:
    def __init__(
        self,
        *,
        circuit_breaker: CircuitBreakerPolicy | None = None,
        budget: BudgetPolicy | None = None,
    ) -> None:
        self.circuit_breaker = circuit_breaker
        self.budget = budget
        if budget is not None:
            budget.track_outcomes = True
        self._in_flight: dict[str | int, str] = {}

    @property
    def in_flight(self) -> dict[str | int, str]:
        return dict(self._in_flight)

    def forwarded(self, invocation: ToolInvocation) -> None:
        """Remember a tool call that was sent to the backend."""
        if invocation.request_id is not None:
            self._in_flight[invocation.request_id] = invocation.tool_name

    def observe(self, line: bytes) -> None:
        """Inspect one backend output line. Never alters it."""
        if not self._in_flight:
            return
        response = parse_message(line)
        if response is None or "method" in response:
            return
        request_id = response.get("id")
        if not isinstance(request_id, (str, int)):
            return
        tool_name = self._in_flight.pop(request_id, None)
        if tool_name is None:
            return

        if is_failure(response):
            logger.debug("Backend reported failure for %s", tool_name)
            if self.circuit_breaker is not None:
                self.circuit_breaker.record_failure(tool_name)
            if self.budget is not None:
                self.budget.record_failure(tool_name)
        else:
            if self.circuit_breaker is not None:
                self.circuit_breaker.record_success(tool_name)
            if self.budget is not None:
                self.budget.record_success(tool_name)
