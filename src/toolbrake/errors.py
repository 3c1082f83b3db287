"""Exceptions raised by the proxy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from toolbrake.core.verdict import Verdict


class ToolBrakeError(Exception):
    """Base class for ToolBrake errors."""


class BackendStartError(ToolBrakeError):
    """Raised when the backend command is missing or cannot be spawned."""


class KillSwitchTriggered(ToolBrakeError):  # noqa: N818
    """Raised after a kill verdict has been reported upstream; ends the session."""

    def __init__(self, verdict: Verdict) -> None:
        self.verdict = verdict
        super().__init__(str(verdict))
