"""Event logger — structured record of every policy intervention.

Each warn, block, kill, sandbox or approval request produces one `PolicyEvent`
that is kept in memory and dispatched to any number of sinks (log, JSON lines
file, callback, webhook).
"""

from __future__ import annotations

import concurrent.futures
import datetime
import logging
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

import requests
from pydantic import BaseModel, Field

from toolbrake.core.invocation import ToolInvocation
from toolbrake.core.state import SessionState
from toolbrake.core.verdict import Verdict, ViolationAction

logger = logging.getLogger("toolbrake.events")


class EventType(str, Enum):
    POLICY_VIOLATION = "POLICY_VIOLATION"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    AGENT_BLOCKED = "AGENT_BLOCKED"
    ALERT = "ALERT"
    TRUST_DOWNGRADED = "TRUST_DOWNGRADED"


_EVENT_FOR_ACTION = {
    ViolationAction.WARN: EventType.ALERT,
    ViolationAction.BLOCK: EventType.POLICY_VIOLATION,
    ViolationAction.KILL: EventType.AGENT_BLOCKED,
    ViolationAction.SANDBOX: EventType.TRUST_DOWNGRADED,
    ViolationAction.REQUEST_APPROVAL: EventType.APPROVAL_REQUIRED,
}


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class PolicyEvent(BaseModel):
    """A single policy intervention."""

    timestamp: str = Field(default_factory=_now)
    event: EventType
    tool: str
    policy: str
    action: str
    reason: str
    request_id: str | int | None = None
    agent_name: str | None = None
    call_count: int = 0
    cost_accrued: float = 0.0
    trust_level: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_verdict(
        cls,
        invocation: ToolInvocation,
        verdict: Verdict,
        state: SessionState,
        *,
        agent_name: str | None = None,
    ) -> PolicyEvent:
        return cls(
            event=_EVENT_FOR_ACTION[verdict.action],
            tool=invocation.tool_name,
            policy=verdict.policy_name,
            action=verdict.action.value,
            reason=verdict.reason,
            request_id=invocation.request_id,
            agent_name=agent_name,
            call_count=state.call_count,
            cost_accrued=state.cost_accrued,
            trust_level=state.trust_level.value,
            details=dict(verdict.details),
        )


class EventSink:
    """Base class for event destinations."""

    def write(self, event: PolicyEvent) -> None:
        raise NotImplementedError

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass


class LoggingSink(EventSink):
    """Writes events to Python's logging system."""

    def __init__(self, logger_name: str = "toolbrake.events") -> None:
        self._logger = logging.getLogger(logger_name)

    def write(self, event: PolicyEvent) -> None:
        level = logging.INFO if event.event == EventType.TRUST_DOWNGRADED else logging.WARNING
        if event.event == EventType.AGENT_BLOCKED:
            level = logging.ERROR
        self._logger.log(
            level,
            "%s %s -> %s [%s] %s (calls=%d)",
            event.event.value,
            event.tool,
            event.action.upper(),
            event.policy,
            event.reason,
            event.call_count,
        )


class JsonFileSink(EventSink):
    """Writes events as JSON lines to a file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file: TextIO | None = None

    def _ensure_open(self) -> TextIO:
        if self._file is None or self._file.closed:
            self._file = open(self._path, "a", encoding="utf-8")
        return self._file

    def write(self, event: PolicyEvent) -> None:
        f = self._ensure_open()
        f.write(event.model_dump_json() + "\n")
        f.flush()

    def flush(self) -> None:
        if self._file and not self._file.closed:
            self._file.flush()

    def close(self) -> None:
        if self._file and not self._file.closed:
            self._file.close()


class CallbackSink(EventSink):
    """Sends events to a callback function (for queues, dashboards, etc.)."""

    def __init__(self, callback: Any) -> None:
        self._callback = callback

    def write(self, event: PolicyEvent) -> None:
        self._callback(event)


class WebhookSink(EventSink):
    """POSTs each event as JSON to an HTTP endpoint.

    Only the listed event types are sent; by default everything except warnings.
    Delivery happens on a single background worker, in emit order, so a slow
    endpoint never holds up the proxy. Failed deliveries are logged.
    """

    def __init__(
        self,
        url: str,
        *,
        events: set[EventType] | None = None,
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.events = events or {
            EventType.POLICY_VIOLATION,
            EventType.APPROVAL_REQUIRED,
            EventType.AGENT_BLOCKED,
        }
        self.timeout = timeout
        self._session = session or requests.Session()
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="toolbrake-webhook"
        )

    def write(self, event: PolicyEvent) -> None:
        if event.event not in self.events:
            return
        future = self._pool.submit(self._post, event.model_dump_json())
        future.add_done_callback(self._delivered)

    def _post(self, payload: str) -> None:
        response = self._session.post(
            self.url,
            data=payload,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()

    def _delivered(self, future: concurrent.futures.Future[None]) -> None:
        error = future.exception()
        if error is not None:
            logger.error("Webhook delivery to %s failed: %s", self.url, error)

    def flush(self) -> None:
        """Wait (up to `timeout`) for deliveries already queued."""
        # The single worker runs in order: once the marker is done, so is everything before it
        marker = self._pool.submit(lambda: None)
        try:
            marker.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("Webhook deliveries to %s still pending after %.1fs", self.url, self.timeout)

    def close(self) -> None:
        self._pool.shutdown(wait=True)
        self._session.close()


class EventLogger:
    """Central event logger that dispatches events to multiple sinks.

    Usage:
        events = EventLogger()
        events.add_sink(LoggingSink())
        events.add_sink(JsonFileSink("toolbrake-events.jsonl"))
        events.emit(PolicyEvent.from_verdict(invocation, verdict, state))
    """

    def __init__(self, *, max_memory_events: int = 10000) -> None:
        self._sinks: list[EventSink] = []
        self._events: list[PolicyEvent] = []
        self._max_memory_events = max_memory_events

    def add_sink(self, sink: EventSink) -> EventLogger:
        """Add an event sink. Returns self for chaining."""
        self._sinks.append(sink)
        return self

    @property
    def sinks(self) -> list[EventSink]:
        return list(self._sinks)

    def emit(self, event: PolicyEvent) -> PolicyEvent:
        """Store an event and dispatch it to all sinks."""
        self._events.append(event)
        if len(self._events) > self._max_memory_events:
            self._events = self._events[-self._max_memory_events:]

        for sink in self._sinks:
            try:
                sink.write(event)
            except Exception as e:
                logger.error("Event sink %s error: %s", type(sink).__name__, e)

        return event

    @property
    def entries(self) -> list[PolicyEvent]:
        return list(self._events)

    def query(
        self,
        *,
        event: EventType | str | None = None,
        tool: str | None = None,
        policy: str | None = None,
        limit: int = 100,
    ) -> list[PolicyEvent]:
        """Query in-memory events with filters."""
        results = self._events
        if event:
            results = [e for e in results if e.event == event]
        if tool:
            results = [e for e in results if e.tool == tool]
        if policy:
            results = [e for e in results if e.policy == policy]
        return results[-limit:]

    def flush(self) -> None:
        for sink in self._sinks:
            try:
                sink.flush()
            except Exception as e:
                logger.error("Event sink flush error: %s", e)

    def close(self) -> None:
        for sink in self._sinks:
            try:
                sink.close()
            except Exception as e:
                logger.error("Event sink close error: %s", e)
