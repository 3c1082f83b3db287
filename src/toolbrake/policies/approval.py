"""Human-in-the-Loop approval — hold high-risk tool calls until a person signs off.

The first call to a gated tool with a given set of arguments is rejected with a
``request_approval`` verdict and recorded as pending. Repeating the identical
call while it is pending is blocked. Once an operator approves the request, the
next identical call goes through exactly once; after that the tool needs
approval again. Denying simply drops the pending request.

Requests are keyed by `ToolInvocation.fingerprint`, so argument order does not
matter.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.policy import Policy
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict

logger = logging.getLogger("toolbrake.hil")


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class ApprovalRequest(BaseModel):
    """A tool call waiting for (or granted) human approval."""

    key: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: float = Field(default_factory=time.time)


class ApprovalPolicy(Policy):
    """Require human approval for the listed tools.

    Usage:
        policy = ApprovalPolicy(["send_email", "delete_file"])
        ...
        for request in policy.pending():
            policy.approve(request.key)
    """

    def __init__(
        self, tools_requiring_approval: Iterable[str], *, max_decisions: int = 1000
    ) -> None:
        super().__init__(name="ApprovalPolicy")
        self.tools_requiring_approval = frozenset(tools_requiring_approval)
        self._pending: dict[str, ApprovalRequest] = {}
        self._approved: dict[str, ApprovalRequest] = {}
        self._decisions: list[ApprovalRequest] = []
        self._max_decisions = max_decisions

    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> Verdict | None:
        tool = invocation.tool_name
        if tool not in self.tools_requiring_approval:
            return None

        key = invocation.fingerprint

        if key in self._approved:
            # Approval is single-use
            del self._approved[key]
            logger.info("Consumed approval for %s", key)
            return None

        if key in self._pending:
            return self.block(
                f"Awaiting approval for '{tool}'. Request pending.",
                details={"approval_key": key},
            )

        self._pending[key] = ApprovalRequest(
            key=key,
            tool_name=tool,
            arguments=dict(invocation.arguments),
        )
        return self.request_approval(
            f"Tool '{tool}' requires human approval. Approve or deny via the operator console.",
            details={"approval_key": key},
        )

    def approve(self, key: str) -> bool:
        """Approve a pending request. Returns False if nothing is pending under `key`."""
        request = self._pending.pop(key, None)
        if request is None:
            return False
        approved = request.model_copy(update={"status": ApprovalStatus.APPROVED})
        self._approved[key] = approved
        self._record(approved)
        logger.info("Approved: %s", key)
        return True

    def deny(self, key: str) -> bool:
        """Drop a pending request. Returns False if nothing is pending under `key`."""
        request = self._pending.pop(key, None)
        if request is None:
            return False
        self._record(request.model_copy(update={"status": ApprovalStatus.DENIED}))
        logger.info("Denied: %s", key)
        return True

    def _record(self, decision: ApprovalRequest) -> None:
        self._decisions.append(decision)
        if len(self._decisions) > self._max_decisions:
            self._decisions = self._decisions[-self._max_decisions:]

    def pending(self) -> list[ApprovalRequest]:
        return list(self._pending.values())

    def decisions(self) -> list[ApprovalRequest]:
        """Approved and denied requests, oldest first (the most recent `max_decisions`)."""
        return list(self._decisions)

    def is_approved(self, key: str) -> bool:
        return key in self._approved
