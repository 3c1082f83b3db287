"""JSON-RPC 2.0 helpers for the line-delimited stdio transport."""

from __future__ import annotations

import json
from typing import Any

from toolbrake.core.verdict import Verdict

TOOL_CALL_METHODS = frozenset({"tools/call", "call_tool"})
POLICY_ERROR_CODE = -32000
REJECTION_TAG = "[ToolBrake]"


def parse_message(line: bytes) -> dict[str, Any] | None:
    """Parse one line as a JSON object. Returns None for anything else."""
    try:
        message = json.loads(line)
    except (UnicodeDecodeError, ValueError):
        return None
    return message if isinstance(message, dict) else None


def is_tool_call(message: dict[str, Any]) -> bool:
    return message.get("method") in TOOL_CALL_METHODS


def rejection_response(request_id: str | int | None, verdict: Verdict) -> dict[str, Any]:
    """Error response sent upstream in place of a rejected call."""
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {
            "code": POLICY_ERROR_CODE,
            "message": f"{REJECTION_TAG} {verdict.action.value.upper()}: {verdict.reason}",
            "data": {
                "policy": verdict.policy_name,
                "action": verdict.action.value,
            },
        },
    }


def encode(message: dict[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8") + b"\n"
