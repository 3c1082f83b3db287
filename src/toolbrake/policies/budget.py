"""Budget — prevent cost explosions by tracking estimated spend per tool call."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.policy import Policy
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict

logger = logging.getLogger("toolbrake")

WARN_FRACTION = 0.8
# Spend is kept to nano-dollar precision so repeated small charges add up exactly.
_PRECISION = 9
# Per-tool cap on estimates awaiting an outcome; responses that never arrive age out.
MAX_UNRECONCILED = 1000


class SpendLedger:
    """Running spend plus, when outcomes are tracked, the estimates still waiting for one."""

    def __init__(self, *, track_outcomes: bool = False) -> None:
        self._spend: float = 0.0
        self._unreconciled: dict[str, deque[float]] = {}
        self._track_outcomes = track_outcomes

    @property
    def track_outcomes(self) -> bool:
        return self._track_outcomes

    @track_outcomes.setter
    def track_outcomes(self, value: bool) -> None:
        self._track_outcomes = value
        if not value:
            self._unreconciled.clear()

    @property
    def spend(self) -> float:
        return self._spend

    @property
    def unreconciled(self) -> int:
        """Number of charged calls still waiting for a backend outcome."""
        return sum(len(pending) for pending in self._unreconciled.values())

    def projected(self, cost: float) -> float:
        return round(self._spend + cost, _PRECISION)

    def charge(self, tool_name: str, cost: float) -> None:
        self._spend = self.projected(cost)
        if self._track_outcomes:
            self._unreconciled.setdefault(tool_name, deque(maxlen=MAX_UNRECONCILED)).append(cost)

    def settle(self, tool_name: str) -> float | None:
        """Pop the oldest unreconciled estimate for a tool, if any."""
        pending = self._unreconciled.get(tool_name)
        if not pending:
            return None
        return pending.popleft()

    def adjust(self, delta: float) -> None:
        self._spend = max(0.0, round(self._spend + delta, _PRECISION))

    def reset(self) -> None:
        self._spend = 0.0
        self._unreconciled.clear()


class BudgetPolicy(Policy):
    """Block calls that would push estimated spend past `max_budget`.

    Each call is charged its tool's cost override or `default_cost_per_call`.
    A call that would exceed the budget is blocked and not charged. A charged
    call that brings spend to 80% or more of the budget produces a warning.

    With `track_outcomes` set (an `OutcomeObserver` does this), each charge is
    also kept until the backend's response settles it, so failed calls can be
    refunded and actual costs reconciled.

    Usage:
        policy = BudgetPolicy(
            1.0,
            tool_costs={"web_search": 0.05, "gpt4_call": 0.03},
            default_cost_per_call=0.01,
        )
    """

    def __init__(
        self,
        max_budget: float,
        tool_costs: Mapping[str, float] | Iterable[Mapping[str, Any]] | None = None,
        default_cost_per_call: float = 0.01,
        *,
        track_outcomes: bool = False,
    ) -> None:
        super().__init__(name="BudgetPolicy")
        self.max_budget = max_budget
        self.default_cost = default_cost_per_call
        self.tool_costs = _normalize_costs(tool_costs)
        self.ledger = SpendLedger(track_outcomes=track_outcomes)

    def cost_of(self, tool_name: str) -> float:
        if tool_name in self.tool_costs:
            return self.tool_costs[tool_name]
        return self.default_cost

    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> Verdict | None:
        tool = invocation.tool_name
        cost = self.cost_of(tool)
        projected = self.ledger.projected(cost)
        details: dict[str, Any] = {
            "cost": cost,
            "spend": self.ledger.spend,
            "projected": projected,
            "max_budget": self.max_budget,
        }

        if projected > self.max_budget:
            return self.block(
                f"Budget exceeded. Spent: ${self.ledger.spend:.4f}, Limit: ${self.max_budget:.2f}. "
                f"Tool '{tool}' would add ${cost:.4f}.",
                details=details,
            )

        self.ledger.charge(tool, cost)

        if self.ledger.spend >= round(self.max_budget * WARN_FRACTION, _PRECISION):
            return self.warn(
                f"Budget at {self.percent_used:.1f}%. Spent: ${self.ledger.spend:.4f} "
                f"of ${self.max_budget:.2f}.",
                details=details,
            )
        return None

    @property
    def track_outcomes(self) -> bool:
        return self.ledger.track_outcomes

    @track_outcomes.setter
    def track_outcomes(self, value: bool) -> None:
        self.ledger.track_outcomes = value

    @property
    def spend(self) -> float:
        return self.ledger.spend

    @property
    def remaining(self) -> float:
        return max(0.0, self.max_budget - self.ledger.spend)

    @property
    def percent_used(self) -> float:
        if self.max_budget <= 0:
            return 100.0
        return self.ledger.spend / self.max_budget * 100

    def record_success(self, tool_name: str, actual_cost: float | None = None) -> None:
        """Settle the oldest estimate for a tool, replacing it with the actual cost if known."""
        estimate = self.ledger.settle(tool_name)
        if estimate is not None and actual_cost is not None:
            self.ledger.adjust(actual_cost - estimate)

    def record_failure(self, tool_name: str) -> None:
        """Refund the oldest estimate for a tool; failed calls are not billed."""
        estimate = self.ledger.settle(tool_name)
        if estimate is not None:
            self.ledger.adjust(-estimate)
            logger.debug("Refunded $%.4f for failed %s call", estimate, tool_name)

    def reset(self) -> None:
        self.ledger.reset()


def _normalize_costs(
    tool_costs: Mapping[str, float] | Iterable[Mapping[str, Any]] | None,
) -> dict[str, float]:
    # Accepts {"tool": cost} or [{"tool": ..., "cost_per_call": ...}]
    if tool_costs is None:
        return {}
    if isinstance(tool_costs, Mapping):
        return {str(k): float(v) for k, v in tool_costs.items()}
    return {str(tc["tool"]): float(tc["cost_per_call"]) for tc in tool_costs}
