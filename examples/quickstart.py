"""ToolBrake — Quick Start Example

Runs a handful of tool calls through a policy chain in-process, without a
backend, to show what the proxy would forward and what it would reject:
1. Unknown tools
2. Sensitive file paths
3. Calls that need human approval
4. Runaway loops and overspending
"""

import asyncio
import logging

from toolbrake import (
    AllowedToolsPolicy,
    ApprovalPolicy,
    BudgetPolicy,
    GranularAccessPolicy,
    GranularRule,
    MaxToolCallsPolicy,
    PolicyChain,
    RateLimitPolicy,
    RuntimeTracker,
    ToolInvocation,
)


async def main() -> None:
    logging.basicConfig(level=logging.WARNING)

    # ── 1. Build the chain ───────────────────────────────────────
    approvals = ApprovalPolicy(["send_email"])
    chain = PolicyChain([
        MaxToolCallsPolicy(20),
        AllowedToolsPolicy(["read_file", "web_search", "send_email"]),
        GranularAccessPolicy([
            GranularRule(tool="read_file", deny_if={"path": ".*passwd.*"}),
        ]),
        RateLimitPolicy(5, window_seconds=60),
        approvals,
        BudgetPolicy(0.10, {"web_search": 0.03}),
    ])
    tracker = RuntimeTracker()

    # ── 2. Evaluate some tool calls ──────────────────────────────
    calls = [
        ToolInvocation(tool_name="read_file", arguments={"path": "/tmp/notes.txt"}),
        ToolInvocation(tool_name="read_file", arguments={"path": "/etc/passwd"}),
        ToolInvocation(tool_name="run_shell", arguments={"cmd": "rm -rf /"}),
        ToolInvocation(tool_name="send_email", arguments={"to": "boss@example.com"}),
        ToolInvocation(tool_name="web_search", arguments={"q": "agent safety"}),
        ToolInvocation(tool_name="web_search", arguments={"q": "agent safety"}),
        ToolInvocation(tool_name="web_search", arguments={"q": "agent safety"}),
    ]

    for invocation in calls:
        tracker.record_call()
        result = await chain.evaluate(invocation, tracker.snapshot())
        outcome = "FORWARD" if result.is_allowed else "REJECT"
        reason = result.final.reason if result.final else ""
        print(f"{invocation.tool_name:<12} {outcome:<8} {result.action:<17} {reason}")

    # ── 3. Approve the pending email and retry ───────────────────
    for request in approvals.pending():
        print(f"\nApproving {request.key}")
        approvals.approve(request.key)

    retry = ToolInvocation(tool_name="send_email", arguments={"to": "boss@example.com"})
    tracker.record_call()
    result = await chain.evaluate(retry, tracker.snapshot())
    print(f"send_email retry: {result.action}")


if __name__ == "__main__":
    asyncio.run(main())
