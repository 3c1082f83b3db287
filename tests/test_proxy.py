"""Tests for the stdio proxy."""

import asyncio
import io
import json
import sys

import pytest

from toolbrake import (
    AllowedToolsPolicy,
    ApprovalPolicy,
    BackendStartError,
    BrakeProxy,
    EventLogger,
    MaxRuntimePolicy,
    MaxToolCallsPolicy,
    Policy,
    PolicyChain,
    RuntimeTracker,
    TrustLevel,
)
from toolbrake.core.verdict import ViolationAction
from toolbrake.proxy.interceptor import StdoutWriter, read_line

ECHO_BACKEND = """
import sys
while True:
    line = sys.stdin.readline()
    if not line:
        break
    sys.stdout.write("echo:" + line)
    sys.stdout.flush()
sys.exit(int(sys.argv[1]) if len(sys.argv) > 1 else 0)
"""


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class SearchWarningPolicy(Policy):
    def __init__(self):
        super().__init__(name="SearchWarningPolicy")

    async def evaluate(self, invocation, state):
        if invocation.tool_name == "web_search":
            return self.warn("Search results are not verified")
        return None


class SandboxPolicy(Policy):
    def __init__(self):
        super().__init__(name="SandboxPolicy")

    async def evaluate(self, invocation, state):
        return self.sandbox("Untrusted tool")


def tool_call(request_id, name: str = "calculator", **arguments) -> bytes:
    message = {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments},
    }
    return json.dumps(message).encode() + b"\n"


def make_proxy(chain, out, *, args=(), tracker=None):
    return BrakeProxy(
        sys.executable,
        ["-c", ECHO_BACKEND, *args],
        chain,
        tracker=tracker,
        events=EventLogger(),
        write=out.append,
    )


def make_upstream(*lines: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for line in lines:
        reader.feed_data(line)
    reader.feed_eof()
    return reader


@pytest.mark.asyncio
async def test_adjudicate_block_writes_rejection():
    out = []
    proxy = make_proxy(PolicyChain([AllowedToolsPolicy(["read_file"])]), out)
    await proxy.handle_line(tool_call(7, "delete_file", path="/"))

    assert len(out) == 1
    response = json.loads(out[0])
    assert response["id"] == 7
    assert response["error"]["code"] == -32000
    assert response["error"]["message"].startswith("[ToolBrake] BLOCK: Tool 'delete_file'")
    assert response["error"]["data"]["policy"] == "AllowedToolsPolicy"

    state = proxy.state
    assert state.call_count == 1
    assert state.blocked
    assert [h.action for h in state.history] == ["BLOCK"]
    assert len(proxy.events.entries) == 1


@pytest.mark.asyncio
async def test_sandbox_downgrades_trust_and_allows():
    out = []
    proxy = make_proxy(
        PolicyChain([SandboxPolicy()]), out, tracker=RuntimeTracker(TrustLevel.TRUSTED)
    )
    result = await proxy.adjudicate(json.loads(tool_call(1)))
    assert result.is_allowed
    assert result.final.action == ViolationAction.SANDBOX
    assert proxy.state.trust_level == TrustLevel.SANDBOX
    assert not proxy.state.blocked
    assert out == []


@pytest.mark.asyncio
async def test_blank_lines_are_dropped():
    out = []
    proxy = make_proxy(PolicyChain(), out)
    await proxy.handle_line(b"   \n")
    assert out == []


@pytest.mark.asyncio
async def test_forward_without_backend_raises():
    proxy = make_proxy(PolicyChain(), [])
    with pytest.raises(RuntimeError):
        await proxy.handle_line(b'{"jsonrpc":"2.0","id":1,"method":"tools/list"}\n')


@pytest.mark.asyncio
async def test_run_relays_and_filters():
    out = []
    proxy = make_proxy(PolicyChain([MaxToolCallsPolicy(2)]), out)
    upstream = make_upstream(
        b'{"jsonrpc":"2.0","id":0,"method":"initialize"}\n',
        tool_call(1),
        b"plain text line\n",
        tool_call(2),
        tool_call(3),
    )

    code = await proxy.run(upstream)

    assert code == 0
    lines = [chunk.decode() for chunk in out]
    echoed = [line for line in lines if line.startswith("echo:")]
    rejected = [json.loads(line) for line in lines if not line.startswith("echo:")]
    assert len(echoed) == 3
    assert any("initialize" in line for line in echoed)
    assert any("plain text line" in line for line in echoed)
    assert [r["id"] for r in rejected] == [2, 3]
    assert proxy.state.call_count == 3


@pytest.mark.asyncio
async def test_run_propagates_exit_code():
    proxy = make_proxy(PolicyChain(), [], args=["3"])
    assert await proxy.run(make_upstream()) == 3


@pytest.mark.asyncio
async def test_kill_terminates_backend():
    clock = FakeClock()
    runtime = MaxRuntimePolicy(1, clock=clock)
    clock.now = 5
    out = []
    proxy = make_proxy(PolicyChain([runtime]), out)
    reader = asyncio.StreamReader()
    reader.feed_data(tool_call(11))

    code = await proxy.run(reader)

    assert code == 1
    response = json.loads(out[-1])
    assert response["id"] == 11
    assert response["error"]["message"].startswith("[ToolBrake] KILL:")
    assert proxy.process.returncode is not None


@pytest.mark.asyncio
async def test_missing_backend_command():
    proxy = BrakeProxy("/nonexistent/toolbrake-backend", events=EventLogger(), write=lambda b: None)
    with pytest.raises(BackendStartError):
        await proxy.start()


@pytest.mark.asyncio
async def test_empty_backend_command():
    proxy = BrakeProxy("", events=EventLogger(), write=lambda b: None)
    with pytest.raises(BackendStartError):
        await proxy.start()


def test_default_chain_caps_calls():
    proxy = BrakeProxy("python", write=lambda b: None)
    assert [p.name for p in proxy.chain.policies] == ["MaxToolCallsPolicy"]


def test_stdout_writer_flushes():
    stream = io.BytesIO()
    StdoutWriter(stream)(b"hello\n")
    assert stream.getvalue() == b"hello\n"


@pytest.mark.asyncio
async def test_request_approval_rejects_and_warn_forwards():
    out = []
    chain = PolicyChain([SearchWarningPolicy(), ApprovalPolicy(["send_email"])])
    proxy = make_proxy(chain, out)
    upstream = make_upstream(
        tool_call(1, "send_email", to="ops@example.com"),
        tool_call(2, "web_search", q="status page"),
    )

    assert await proxy.run(upstream) == 0

    lines = [chunk.decode() for chunk in out]
    echoed_ids = [json.loads(line[len("echo:"):])["id"] for line in lines if line.startswith("echo:")]
    rejected = [json.loads(line) for line in lines if not line.startswith("echo:")]
    assert echoed_ids == [2]
    assert len(rejected) == 1
    assert rejected[0]["id"] == 1
    assert rejected[0]["error"]["message"].startswith("[ToolBrake] REQUEST_APPROVAL:")
    assert rejected[0]["error"]["data"]["action"] == "request_approval"

    state = proxy.state
    assert not state.blocked
    assert [h.action for h in state.history] == ["REQUEST_APPROVAL", "WARN"]
    assert [h.policy for h in state.history] == ["ApprovalPolicy", "SearchWarningPolicy"]


@pytest.mark.asyncio
async def test_oversized_upstream_line_is_relayed_unexamined():
    out = []
    proxy = make_proxy(PolicyChain([MaxToolCallsPolicy(5)]), out)
    upstream = asyncio.StreamReader(limit=1024)
    upstream.feed_data(b"x" * 4096 + b"\n")
    upstream.feed_data(b'{"jsonrpc":"2.0","id":1,"method":"ping"}\n')
    upstream.feed_eof()

    assert await proxy.run(upstream) == 0

    lines = [chunk.decode() for chunk in out]
    assert "echo:" + "x" * 4096 + "\n" in lines
    assert any('"method":"ping"' in line for line in lines)
    assert proxy.state.call_count == 0


@pytest.mark.asyncio
async def test_read_line_splits_oversized_lines():
    reader = asyncio.StreamReader(limit=16)
    reader.feed_data(b"a" * 40 + b"\nok\n" + b"tail")
    reader.feed_eof()

    assert await read_line(reader) == (b"a" * 40, True)
    assert await read_line(reader) == (b"\n", False)
    assert await read_line(reader) == (b"ok\n", False)
    assert await read_line(reader) == (b"tail", False)
    assert await read_line(reader) == (b"", False)
