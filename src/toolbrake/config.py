"""YAML configuration loader — define the policy chain in a config file."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from toolbrake.core.chain import PolicyChain
from toolbrake.core.state import RuntimeTracker, TrustLevel
from toolbrake.core.verdict import ViolationAction
from toolbrake.events.logger import EventLogger, JsonFileSink, LoggingSink, WebhookSink
from toolbrake.policies.allowed_tools import AllowedToolsPolicy
from toolbrake.policies.approval import ApprovalPolicy
from toolbrake.policies.budget import BudgetPolicy
from toolbrake.policies.circuit_breaker import CircuitBreakerPolicy
from toolbrake.policies.granular import GranularAccessPolicy, GranularRule
from toolbrake.policies.limits import MaxRuntimePolicy, MaxToolCallsPolicy
from toolbrake.policies.rate_limit import RateLimitPolicy
from toolbrake.proxy.interceptor import DEFAULT_MAX_TOOL_CALLS, BrakeProxy
from toolbrake.proxy.outcomes import OutcomeObserver

_STRICT = {"extra": "forbid"}


class AgentConfig(BaseModel):
    name: str = "unknown-agent"
    trust_level: TrustLevel = TrustLevel.SANDBOX

    model_config = _STRICT


class GlobalConfig(BaseModel):
    """Session-wide settings.

    Attributes:
        on_violation: Action for granular rules that do not set their own.
        observe_outcomes: Feed backend results to the circuit breaker and budget.
        max_retries: Accepted for compatibility with older config files; unused.
    """

    on_violation: ViolationAction = ViolationAction.BLOCK
    observe_outcomes: bool = False
    max_retries: int = Field(default=3, ge=0)

    model_config = _STRICT


class LimitsConfig(BaseModel):
    max_tool_calls: int | None = Field(default=None, ge=0)
    max_runtime_seconds: float | None = Field(default=None, ge=0)
    max_cost_usd: float | None = Field(default=None, gt=0)

    model_config = _STRICT


class RateLimitConfig(BaseModel):
    calls_per_window: int = Field(gt=0)
    window_seconds: float = Field(default=60.0, gt=0)

    model_config = _STRICT


class ToolCost(BaseModel):
    tool: str
    cost_per_call: float = Field(ge=0)

    model_config = _STRICT


class BudgetConfig(BaseModel):
    max_cost: float = Field(gt=0)
    default_cost_per_call: float = Field(default=0.01, ge=0)
    tool_costs: list[ToolCost] = Field(default_factory=list)

    model_config = _STRICT


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=3, gt=0)
    reset_timeout_seconds: float = Field(default=60.0, ge=0)

    model_config = _STRICT


class SecurityConfig(BaseModel):
    allowed_tools: list[str] | None = None
    denied_tools: list[str] = Field(default_factory=list)
    granular_rules: list[GranularRule] = Field(default_factory=list)
    require_approval: list[str] = Field(default_factory=list)

    model_config = _STRICT


class PoliciesConfig(BaseModel):
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    rate_limit: RateLimitConfig | None = None
    budget: BudgetConfig | None = None
    circuit_breaker: CircuitBreakerConfig | None = None
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    model_config = {"extra": "forbid", "populate_by_name": True}


class NotificationsConfig(BaseModel):
    """Where policy events go besides the log."""

    webhook_url: str | None = None
    event_log: str | None = None

    model_config = _STRICT


class BrakeConfig(BaseModel):
    version: str = "3.0"
    agent: AgentConfig = Field(default_factory=AgentConfig)
    policies: PoliciesConfig = Field(default_factory=PoliciesConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)

    model_config = _STRICT


def load_config(path: str | Path) -> BrakeConfig:
    """Load a configuration from a YAML (or JSON) file.

    Example YAML:
        agent:
          name: research-agent
          trust_level: limited

        policies:
          global:
            on_violation: block
          limits:
            max_tool_calls: 50
            max_runtime_seconds: 600
          rate_limit:
            calls_per_window: 30
            window_seconds: 60
          budget:
            max_cost: 1.0
            default_cost_per_call: 0.01
            tool_costs:
              - tool: web_search
                cost_per_call: 0.05
          circuit_breaker:
            failure_threshold: 3
            reset_timeout_seconds: 60
          security:
            allowed_tools: [read_file, web_search, send_email]
            denied_tools: [run_shell]
            granular_rules:
              - tool: read_file
                deny_if:
                  path: ".*passwd.*"
            require_approval: [send_email]

        notifications:
          event_log: logs/toolbrake-events.jsonl
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config file: expected a mapping, got {type(data).__name__}")

    return load_config_from_dict(data)


def load_config_from_dict(data: dict[str, Any]) -> BrakeConfig:
    """Validate a configuration dictionary (same schema as YAML)."""
    return BrakeConfig.model_validate(data)


def build_chain(config: BrakeConfig) -> PolicyChain:
    """Instantiate the configured policies in their fixed evaluation order."""
    policies = config.policies
    limits = policies.limits
    security = policies.security
    chain = PolicyChain()

    if limits.max_tool_calls is not None:
        chain.add_policy(MaxToolCallsPolicy(limits.max_tool_calls))
    if limits.max_runtime_seconds is not None:
        chain.add_policy(MaxRuntimePolicy(limits.max_runtime_seconds))
    if security.allowed_tools is not None or security.denied_tools:
        chain.add_policy(
            AllowedToolsPolicy(security.allowed_tools, denied_tools=security.denied_tools)
        )
    if security.granular_rules:
        chain.add_policy(
            GranularAccessPolicy(
                security.granular_rules,
                default_action=policies.global_.on_violation,
            )
        )
    if policies.circuit_breaker is not None:
        cb = policies.circuit_breaker
        chain.add_policy(CircuitBreakerPolicy(cb.failure_threshold, cb.reset_timeout_seconds))
    if policies.rate_limit is not None:
        rl = policies.rate_limit
        chain.add_policy(RateLimitPolicy(rl.calls_per_window, rl.window_seconds))
    if security.require_approval:
        chain.add_policy(ApprovalPolicy(security.require_approval))

    budget = policies.budget
    if budget is None and limits.max_cost_usd is not None:
        budget = BudgetConfig(max_cost=limits.max_cost_usd)
    if budget is not None:
        chain.add_policy(
            BudgetPolicy(
                budget.max_cost,
                {tc.tool: tc.cost_per_call for tc in budget.tool_costs},
                budget.default_cost_per_call,
            )
        )

    return chain


def build_events(config: BrakeConfig) -> EventLogger:
    events = EventLogger().add_sink(LoggingSink())
    notifications = config.notifications
    if notifications.event_log:
        events.add_sink(JsonFileSink(notifications.event_log))
    if notifications.webhook_url:
        events.add_sink(WebhookSink(notifications.webhook_url))
    return events


def build_outcomes(config: BrakeConfig, chain: PolicyChain) -> OutcomeObserver | None:
    if not config.policies.global_.observe_outcomes:
        return None
    circuit_breaker = chain.get_policy("CircuitBreakerPolicy")
    budget = chain.get_policy("BudgetPolicy")
    return OutcomeObserver(
        circuit_breaker=circuit_breaker if isinstance(circuit_breaker, CircuitBreakerPolicy) else None,
        budget=budget if isinstance(budget, BudgetPolicy) else None,
    )


def build_proxy(config: BrakeConfig, command: str, args: Sequence[str] = ()) -> BrakeProxy:
    """Wire a proxy for `command` from a validated configuration.

    With no policies configured the proxy still caps the session at
    `DEFAULT_MAX_TOOL_CALLS` calls.
    """
    chain = build_chain(config)
    if not chain.policies:
        chain.add_policy(MaxToolCallsPolicy(DEFAULT_MAX_TOOL_CALLS))
    return BrakeProxy(
        command,
        args,
        chain,
        tracker=RuntimeTracker(config.agent.trust_level),
        events=build_events(config),
        outcomes=build_outcomes(config, chain),
        agent_name=config.agent.name,
    )
