"""Tool invocation — the tool call carried by an intercepted JSON-RPC request."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field


class ToolInvocation(BaseModel):
    """Immutable view of a tool call to be evaluated by policies.

    Attributes:
        tool_name: Name of the tool the agent asked the backend to run.
        arguments: Arguments passed to the tool.
        request_id: JSON-RPC id of the request, echoed in any rejection.
    """

    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    request_id: str | int | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> ToolInvocation:
        """Build an invocation from a ``tools/call`` request."""
        params = message.get("params")
        if not isinstance(params, dict):
            params = {}
        arguments = params.get("arguments")
        return cls(
            tool_name=str(params.get("name") or ""),
            arguments=arguments if isinstance(arguments, dict) else {},
            request_id=message.get("id"),
        )

    @property
    def fingerprint(self) -> str:
        """Stable key for this tool + arguments pair, independent of key order."""
        serialized = json.dumps(self.arguments, sort_keys=True, separators=(",", ":"), default=str)
        return f"{self.tool_name}:{serialized}"
