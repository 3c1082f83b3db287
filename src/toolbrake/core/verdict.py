"""Verdicts returned by policies after evaluating a tool call."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ViolationAction(str, Enum):
    """What a policy wants done with a call. Allow is expressed as no verdict."""

    WARN = "warn"
    BLOCK = "block"
    KILL = "kill"
    SANDBOX = "sandbox"
    REQUEST_APPROVAL = "request_approval"


_TERMINAL = frozenset(
    {
        ViolationAction.BLOCK,
        ViolationAction.KILL,
        ViolationAction.SANDBOX,
        ViolationAction.REQUEST_APPROVAL,
    }
)
_REJECTING = frozenset(
    {ViolationAction.BLOCK, ViolationAction.KILL, ViolationAction.REQUEST_APPROVAL}
)


class Verdict(BaseModel):
    """Result of a policy that objected to a tool call.

    Attributes:
        policy_name: Name of the policy that produced this verdict.
        action: The action the policy asks for.
        reason: Human-readable explanation.
        details: Structured data about why the verdict was reached.
    """

    policy_name: str
    action: ViolationAction
    reason: str = ""
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def is_terminal(self) -> bool:
        """True if no further policies run after this verdict."""
        return self.action in _TERMINAL

    @property
    def is_rejection(self) -> bool:
        """True if the call must not reach the backend."""
        return self.action in _REJECTING

    def __str__(self) -> str:
        return f"[{self.policy_name}] {self.action.value}: {self.reason}"
