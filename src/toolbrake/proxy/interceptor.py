"""Interception layer — a stdio proxy between an agent and its tool backend.

The proxy spawns the backend command with piped stdin/stdout (stderr is
inherited) and runs two pumps:

- upstream -> backend: line-buffered. Each line that parses as a tool call is
  adjudicated by the policy chain before it is forwarded; everything else,
  including lines that are not JSON at all or longer than the read limit,
  is forwarded as is.
- backend -> upstream: forwarded verbatim, line by line, so a synthesized
  rejection never lands in the middle of a backend message.

Messages are adjudicated one at a time in arrival order. A kill verdict ends the
session: the rejection is written, the backend is terminated and `run()`
returns a non-zero exit code.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable, Sequence
from typing import Any, BinaryIO

from toolbrake.core.chain import ChainResult, PolicyChain
from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.state import RuntimeTracker, SessionState, TrustLevel
from toolbrake.core.verdict import Verdict, ViolationAction
from toolbrake.errors import BackendStartError, KillSwitchTriggered
from toolbrake.events.logger import EventLogger, LoggingSink, PolicyEvent
from toolbrake.policies.limits import MaxToolCallsPolicy
from toolbrake.proxy.messages import encode, is_tool_call, parse_message, rejection_response
from toolbrake.proxy.outcomes import OutcomeObserver

logger = logging.getLogger("toolbrake.proxy")

Writer = Callable[[bytes], None]

KILL_EXIT_CODE = 1
DEFAULT_MAX_TOOL_CALLS = 10
# Largest single message accepted on either pipe.
LINE_LIMIT = 16 * 1024 * 1024
_TERMINATE_TIMEOUT = 5.0
_DRAIN_TIMEOUT = 1.0


class StdoutWriter:
    """Writes and flushes bytes to the proxy's own stdout."""

    def __init__(self, stream: BinaryIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout.buffer

    def __call__(self, data: bytes) -> None:
        self._stream.write(data)
        self._stream.flush()


async def read_line(reader: asyncio.StreamReader) -> tuple[bytes, bool]:
    """Read the next line, or a piece of it if it exceeds the reader's limit.

    Returns ``(chunk, oversized)``. An over-long line is returned in pieces
    flagged ``oversized=True`` until its remainder fits in the buffer; the
    final piece (ending in ``\\n``) comes back unflagged. ``b""`` means EOF.
    """
    try:
        return await reader.readuntil(b"\n"), False
    except asyncio.IncompleteReadError as e:
        return e.partial, False
    except asyncio.LimitOverrunError as e:
        return await reader.read(max(e.consumed, 1)), True


async def open_stdin_reader(limit: int = LINE_LIMIT) -> asyncio.StreamReader:
    """Wrap the process stdin in an asyncio stream."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=limit)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


class BrakeProxy:
    """Policy-enforcing proxy around one backend process.

    Usage:
        chain = PolicyChain([MaxToolCallsPolicy(50), AllowedToolsPolicy(["read_file"])])
        proxy = BrakeProxy("python", ["tools_server.py"], chain)
        exit_code = asyncio.run(proxy.run())
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        chain: PolicyChain | None = None,
        *,
        tracker: RuntimeTracker | None = None,
        events: EventLogger | None = None,
        outcomes: OutcomeObserver | None = None,
        write: Writer | None = None,
        agent_name: str | None = None,
    ) -> None:
        self.command = command
        self.args = list(args)
        if chain is None:
            chain = PolicyChain([MaxToolCallsPolicy(DEFAULT_MAX_TOOL_CALLS)])
        self.chain = chain
        self.tracker = tracker or RuntimeTracker()
        if events is None:
            events = EventLogger().add_sink(LoggingSink())
        self.events = events
        self.outcomes = outcomes
        self.agent_name = agent_name
        self._write: Writer = write or StdoutWriter()
        self._process: asyncio.subprocess.Process | None = None

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        return self._process

    @property
    def state(self) -> SessionState:
        return self.tracker.state

    async def start(self) -> None:
        """Spawn the backend with piped stdin/stdout and inherited stderr."""
        if not self.command:
            raise BackendStartError("No backend command given")
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,
                limit=LINE_LIMIT,
            )
        except OSError as e:
            raise BackendStartError(f"Failed to start backend '{self.command}': {e}") from e
        logger.info(
            "Started backend pid=%s: %s",
            self._process.pid,
            " ".join([self.command, *self.args]),
        )

    async def run(self, upstream: asyncio.StreamReader | None = None) -> int:
        """Relay traffic until the backend exits. Returns the exit code to use."""
        if self._process is None:
            await self.start()
        assert self._process is not None
        if upstream is None:
            upstream = await open_stdin_reader()

        upstream_task = asyncio.create_task(self._pump_upstream(upstream))
        backend_task = asyncio.create_task(self._pump_backend())
        exit_task = asyncio.create_task(self._process.wait())
        pending: set[asyncio.Task[Any]] = {upstream_task, backend_task, exit_task}

        try:
            while exit_task in pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                if upstream_task in done:
                    # Re-raises KillSwitchTriggered
                    upstream_task.result()
            if backend_task in pending:
                await asyncio.wait({backend_task}, timeout=_DRAIN_TIMEOUT)
        except KillSwitchTriggered as e:
            logger.error("KILL action triggered by %s. Exiting proxy.", e.verdict.policy_name)
            await self.terminate()
            return KILL_EXIT_CODE
        except Exception:
            await self.terminate()
            raise
        finally:
            for task in (upstream_task, backend_task, exit_task):
                if not task.done():
                    task.cancel()
            self.events.flush()

        code = self._process.returncode
        logger.info("Backend exited with code %s", code)
        return code if code is not None and code >= 0 else 0

    async def terminate(self) -> None:
        """Stop the backend, escalating to SIGKILL if it does not exit in time."""
        process = self._process
        if process is None or process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=_TERMINATE_TIMEOUT)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()

    async def _pump_upstream(self, upstream: asyncio.StreamReader) -> None:
        in_oversized = False
        while True:
            chunk, oversized = await read_line(upstream)
            if not chunk:
                break
            if oversized or in_oversized:
                if not in_oversized:
                    logger.warning("Upstream line exceeds the read limit; relaying it unexamined")
                # Malformed input: relayed raw, never adjudicated
                await self._forward(chunk)
                in_oversized = not chunk.endswith(b"\n")
                continue
            await self.handle_line(chunk)

        logger.debug("Upstream closed; closing backend stdin")
        if self._process is not None and self._process.stdin is not None:
            self._process.stdin.close()

    async def _pump_backend(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        in_oversized = False
        while True:
            chunk, oversized = await read_line(stdout)
            if not chunk:
                break
            self._write(chunk)
            if self.outcomes is not None and not (oversized or in_oversized):
                self.outcomes.observe(chunk)
            in_oversized = oversized or (in_oversized and not chunk.endswith(b"\n"))

    async def handle_line(self, line: bytes) -> None:
        """Adjudicate and forward (or reject) one upstream line."""
        if not line.strip():
            return
        if not line.endswith(b"\n"):
            line += b"\n"

        message = parse_message(line)
        if message is None or not is_tool_call(message):
            await self._forward(line)
            return

        result = await self.adjudicate(message)
        if result.is_allowed:
            if self.outcomes is not None:
                self.outcomes.forwarded(ToolInvocation.from_message(message))
            await self._forward(line)

    async def adjudicate(self, message: dict[str, Any]) -> ChainResult:
        """Run a tool-call message through the chain and apply the outcome.

        Writes a rejection upstream for block, kill and request_approval, and
        raises `KillSwitchTriggered` after writing it for kill.
        """
        invocation = ToolInvocation.from_message(message)
        self.tracker.record_call()
        snapshot = self.tracker.snapshot()

        result = await self.chain.evaluate(invocation, snapshot)
        for verdict in result.verdicts:
            self._apply(invocation, verdict)

        if result.is_rejected:
            assert result.final is not None
            self._write(encode(rejection_response(invocation.request_id, result.final)))
            if result.is_kill:
                raise KillSwitchTriggered(result.final)
        return result

    def _apply(self, invocation: ToolInvocation, verdict: Verdict) -> None:
        action = verdict.action
        if action == ViolationAction.SANDBOX:
            self.tracker.update_trust(TrustLevel.SANDBOX)
        elif action in (ViolationAction.BLOCK, ViolationAction.KILL):
            self.tracker.set_blocked(verdict.reason)
        self.tracker.log_action(action.value.upper(), verdict.policy_name)
        self.events.emit(
            PolicyEvent.from_verdict(
                invocation, verdict, self.tracker.state, agent_name=self.agent_name
            )
        )

    async def _forward(self, line: bytes) -> None:
        if self._process is None or self._process.stdin is None:
            raise RuntimeError("Backend is not running")
        stdin = self._process.stdin
        if stdin.is_closing():
            logger.debug("Backend stdin closed; dropping line")
            return
        try:
            stdin.write(line)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning("Backend stdin unavailable: %s", e)

    def __repr__(self) -> str:
        return f"BrakeProxy(command={self.command!r}, chain={self.chain!r})"
