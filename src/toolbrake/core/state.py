"""Runtime state tracker — the mutable session state shared by one proxy."""

from __future__ import annotations

import datetime
from enum import Enum

from pydantic import BaseModel, Field

# Rough overhead estimate charged to every tool call (logging, transport).
CALL_OVERHEAD_COST = 0.001


class TrustLevel(str, Enum):
    """Coarse session-wide privilege tier."""

    SANDBOX = "sandbox"
    LIMITED = "limited"
    TRUSTED = "trusted"
    PRIVILEGED = "privileged"


class HistoryEntry(BaseModel):
    """A policy action taken during the session."""

    timestamp: str
    action: str
    policy: str


class SessionState(BaseModel):
    """Counters and flags for the single agent session behind a proxy.

    Attributes:
        call_count: Tool calls attempted so far, including rejected ones.
        cost_accrued: Running overhead estimate for those calls.
        trust_level: Current trust tier; sandbox verdicts downgrade it.
        blocked: Whether any call has been blocked or killed.
        block_reason: Reason of the most recent block.
        history: Ordered log of non-allow policy actions.
    """

    call_count: int = 0
    cost_accrued: float = 0.0
    trust_level: TrustLevel = TrustLevel.SANDBOX
    blocked: bool = False
    block_reason: str | None = None
    history: list[HistoryEntry] = Field(default_factory=list)


class RuntimeTracker:
    """Sole owner of the session state. Policies only ever see snapshots."""

    def __init__(self, initial_trust: TrustLevel = TrustLevel.SANDBOX) -> None:
        self._state = SessionState(trust_level=initial_trust)

    @property
    def state(self) -> SessionState:
        return self._state

    def snapshot(self) -> SessionState:
        """Return a deep copy that policies may read without affecting the session."""
        return self._state.model_copy(deep=True)

    def record_call(self) -> None:
        self._state.call_count += 1
        self._state.cost_accrued += CALL_OVERHEAD_COST

    def set_blocked(self, reason: str) -> None:
        self._state.blocked = True
        self._state.block_reason = reason

    def update_trust(self, level: TrustLevel) -> None:
        self._state.trust_level = level

    def log_action(self, action: str, policy: str) -> None:
        self._state.history.append(
            HistoryEntry(
                timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
                action=action,
                policy=policy,
            )
        )

    def reset(self) -> None:
        """Start a fresh session, keeping the current trust level."""
        self._state = SessionState(trust_level=self._state.trust_level)

    def __repr__(self) -> str:
        s = self._state
        return (
            f"RuntimeTracker(calls={s.call_count}, trust={s.trust_level.value}, "
            f"blocked={s.blocked})"
        )
