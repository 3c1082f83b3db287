"""
ToolBrake — a policy-enforcing stdio proxy between AI agents and their tools.

Intercepts every tool call an agent sends to its backend and decides, before
the backend sees it, whether to allow it, warn, hold it for human approval,
block it, or end the session.
"""

from toolbrake.core.chain import ChainResult, PolicyChain
from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.policy import Policy
from toolbrake.core.state import RuntimeTracker, SessionState, TrustLevel
from toolbrake.core.verdict import Verdict, ViolationAction
from toolbrake.errors import BackendStartError, KillSwitchTriggered, ToolBrakeError
from toolbrake.events.logger import EventLogger, EventType, PolicyEvent
from toolbrake.policies.allowed_tools import AllowedToolsPolicy
from toolbrake.policies.approval import ApprovalPolicy, ApprovalRequest
from toolbrake.policies.budget import BudgetPolicy
from toolbrake.policies.circuit_breaker import CircuitBreakerPolicy
from toolbrake.policies.granular import GranularAccessPolicy, GranularRule
from toolbrake.policies.limits import MaxRuntimePolicy, MaxToolCallsPolicy
from toolbrake.policies.rate_limit import RateLimitPolicy
from toolbrake.proxy.interceptor import BrakeProxy

__version__ = "0.3.0"

__all__ = [
    # Core
    "PolicyChain",
    "ChainResult",
    "Policy",
    "Verdict",
    "ViolationAction",
    "ToolInvocation",
    "RuntimeTracker",
    "SessionState",
    "TrustLevel",
    # Policies
    "MaxToolCallsPolicy",
    "MaxRuntimePolicy",
    "AllowedToolsPolicy",
    "GranularAccessPolicy",
    "GranularRule",
    "RateLimitPolicy",
    "CircuitBreakerPolicy",
    "BudgetPolicy",
    "ApprovalPolicy",
    "ApprovalRequest",
    # Proxy
    "BrakeProxy",
    # Events
    "EventLogger",
    "EventType",
    "PolicyEvent",
    # Errors
    "ToolBrakeError",
    "BackendStartError",
    "KillSwitchTriggered",
]
