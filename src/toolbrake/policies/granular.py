"""Granular Access — a semantic firewall over tool call arguments.

Each rule targets one tool and constrains its argument values with regular
expressions:

- ``deny_if``: if every listed argument matches its pattern, the call is rejected.
- ``allow_if``: unless every listed argument matches its pattern, the call is rejected.

Deny is checked before allow, so a denied value can never be rescued by an
allow pattern. An argument that is absent never matches. Several rules may
target the same tool; they run in listed order and the first one to trigger wins.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, field_validator, model_validator

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.policy import Policy
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict, ViolationAction


class GranularRule(BaseModel):
    """One argument-level rule for a tool.

    Attributes:
        tool: Exact tool name the rule applies to.
        allow_if: Argument name -> regex that must match for the call to pass.
        deny_if: Argument name -> regex that rejects the call when matched.
        action: Action on trigger. None means the global default (block).
    """

    tool: str
    allow_if: dict[str, str] | None = None
    deny_if: dict[str, str] | None = None
    action: ViolationAction | None = None

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _unwrap_arguments(cls, data: Any) -> Any:
        # Config files may nest patterns as ``deny_if: {arguments: {...}}``
        if isinstance(data, dict):
            data = dict(data)
            for key in ("allow_if", "deny_if"):
                value = data.get(key)
                if isinstance(value, dict) and set(value) == {"arguments"}:
                    data[key] = value["arguments"]
        return data

    @field_validator("allow_if", "deny_if")
    @classmethod
    def _check_patterns(cls, patterns: dict[str, str] | None) -> dict[str, str] | None:
        if patterns:
            for arg_name, pattern in patterns.items():
                try:
                    re.compile(pattern)
                except re.error as e:
                    raise ValueError(f"Invalid regex for argument '{arg_name}': {pattern!r} ({e})") from e
        return patterns


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


class _CompiledRule:
    __slots__ = ("rule", "allow", "deny")

    def __init__(self, rule: GranularRule) -> None:
        self.rule = rule
        self.allow = {k: re.compile(p) for k, p in (rule.allow_if or {}).items()}
        self.deny = {k: re.compile(p) for k, p in (rule.deny_if or {}).items()}


class GranularAccessPolicy(Policy):
    """Validate tool arguments against per-tool regex rules.

    Usage:
        policy = GranularAccessPolicy([
            GranularRule(tool="read_file", allow_if={"path": r"^/tmp/"}),
            GranularRule(tool="read_file", deny_if={"path": r".*passwd.*"}),
        ])
    """

    def __init__(
        self,
        rules: Iterable[GranularRule | dict[str, Any]],
        *,
        default_action: ViolationAction = ViolationAction.BLOCK,
    ) -> None:
        super().__init__(name="GranularAccessPolicy")
        self.default_action = default_action
        self._rules: dict[str, list[_CompiledRule]] = {}
        for rule in rules:
            if not isinstance(rule, GranularRule):
                rule = GranularRule.model_validate(rule)
            self._rules.setdefault(rule.tool, []).append(_CompiledRule(rule))

    @property
    def rules(self) -> list[GranularRule]:
        return [c.rule for compiled in self._rules.values() for c in compiled]

    @staticmethod
    def _matches_all(arguments: dict[str, Any], patterns: dict[str, re.Pattern[str]]) -> bool:
        for arg_name, pattern in patterns.items():
            if arg_name not in arguments:
                return False
            if not pattern.search(_as_text(arguments[arg_name])):
                return False
        return True

    async def evaluate(self, invocation: ToolInvocation, state: SessionState) -> Verdict | None:
        tool = invocation.tool_name
        args = invocation.arguments

        for compiled in self._rules.get(tool, []):
            action = compiled.rule.action or self.default_action

            if compiled.deny and self._matches_all(args, compiled.deny):
                return self.verdict(
                    action,
                    f"Tool '{tool}' arguments match DENY pattern. Blocked by Semantic Firewall.",
                    details={"tool": tool, "patterns": dict(compiled.rule.deny_if or {})},
                )

            if compiled.allow and not self._matches_all(args, compiled.allow):
                return self.verdict(
                    action,
                    f"Tool '{tool}' arguments do not match ALLOW pattern. Blocked by Semantic Firewall.",
                    details={"tool": tool, "patterns": dict(compiled.rule.allow_if or {})},
                )

        return None
