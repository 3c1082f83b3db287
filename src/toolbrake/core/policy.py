"""Base policy interface — all policy evaluators implement this."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict, ViolationAction


class Policy(ABC):
    """Abstract base class for all policies.

    Subclass this to create custom policies. You must implement `evaluate`,
    returning ``None`` to allow the call or a `Verdict` to object to it.

    Example:
        class NoShellPolicy(Policy):
            def __init__(self):
                super().__init__(name="NoShellPolicy")

            async def evaluate(self, invocation, state):
                if invocation.tool_name == "run_shell":
                    return self.block("Shell access is disabled")
                return None
    """

    def __init__(self, name: str, *, enabled: bool = True) -> None:
        self._name = name
        self._enabled = enabled

    @property
    def name(self) -> str:
        return self._name

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value

    @abstractmethod
    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> Verdict | None:
        """Evaluate a tool call against a read-only snapshot of the session.

        Ordinary rule mismatches are reported through the return value, never raised.
        """
        ...

    # ── Helper factories for building verdicts ───────────────────────

    def verdict(
        self, action: ViolationAction, reason: str, *, details: dict[str, Any] | None = None
    ) -> Verdict:
        return Verdict(
            policy_name=self._name,
            action=action,
            reason=reason,
            details=details or {},
        )

    def warn(self, reason: str, *, details: dict[str, Any] | None = None) -> Verdict:
        return self.verdict(ViolationAction.WARN, reason, details=details)

    def block(self, reason: str, *, details: dict[str, Any] | None = None) -> Verdict:
        return self.verdict(ViolationAction.BLOCK, reason, details=details)

    def kill(self, reason: str, *, details: dict[str, Any] | None = None) -> Verdict:
        return self.verdict(ViolationAction.KILL, reason, details=details)

    def sandbox(self, reason: str, *, details: dict[str, Any] | None = None) -> Verdict:
        return self.verdict(ViolationAction.SANDBOX, reason, details=details)

    def request_approval(self, reason: str, *, details: dict[str, Any] | None = None) -> Verdict:
        return self.verdict(ViolationAction.REQUEST_APPROVAL, reason, details=details)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self._name!r}, enabled={self._enabled})"
