"""Observability for orchestration: lifecycle event channel, event log and logging setup."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Configure the package logger format and handlers."""
    root = logging.getLogger("llm_orchestra")
    if not root.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(logging.INFO if verbose else logging.WARNING)
    return root


class EventEmitter:
    """Explicit listener registry.

    Listeners run synchronously, in registration order, at the point the
    event is emitted. A failing listener is logged and does not stop the
    others or the emitter.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> Listener:
        self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def once(self, event: str, listener: Listener) -> Listener:
        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args)

        return self.on(event, wrapper)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception(f"Listener for '{event}' failed")
        return bool(listeners)


@dataclass
class AgentEvent:
    """A single event in a session's execution."""

    timestamp: datetime
    event_type: str  # "llm_request", "tool_call", "error", "step", "notify", "trace"
    data: Dict[str, Any]
    agent_id: Optional[str] = None
    duration_ms: Optional[float] = None
    tokens_used: Optional[int] = None
    cost_usd: Optional[float] = None


class SessionObserver:
    """
    Event log for a session.

    Collects events and mirrors them to the logger for debugging and monitoring.
    Only the newest ``max_events`` are kept; stats cover the kept events.
    """

    def __init__(self, session_id: Optional[str] = None, max_events: Optional[int] = 1000):
        self.events: List[AgentEvent] = []
        self.session_id = session_id
        self.max_events = max_events
        self.logger = logging.getLogger("llm_orchestra.session")

    def _prefix(self, agent_id: Optional[str]) -> str:
        return f"[{agent_id}] " if agent_id else ""

    def _record(self, event: AgentEvent) -> AgentEvent:
        self.events.append(event)
        if self.max_events and len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]
        return event

    def log_llm_request(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        cost: float,
        duration_ms: float,
        agent_id: Optional[str] = None,
    ) -> None:
        """
        Log a model invocation.

        Args:
            model: Model id
            prompt_tokens: Tokens sent
            completion_tokens: Tokens received
            cost: Cost in USD
            duration_ms: Request duration in milliseconds
        """
        self._record(
            AgentEvent(
                timestamp=datetime.now(),
                event_type="llm_request",
                data={
                    "model": model,
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": completion_tokens,
                },
                agent_id=agent_id,
                duration_ms=duration_ms,
                tokens_used=prompt_tokens + completion_tokens,
                cost_usd=cost,
            )
        )
        self.logger.info(
            f"{self._prefix(agent_id)}LLM: {model} | {prompt_tokens}+{completion_tokens} tokens"
            f" | ${cost:.4f} | {duration_ms:.2f}ms"
        )

    def log_tool_call(
        self,
        tool_name: str,
        call_id: str,
        success: bool,
        duration_ms: float,
        agent_id: Optional[str] = None,
    ) -> None:
        self._record(
            AgentEvent(
                timestamp=datetime.now(),
                event_type="tool_call",
                data={"tool": tool_name, "call_id": call_id, "success": success},
                agent_id=agent_id,
                duration_ms=duration_ms,
            )
        )
        status = "ok" if success else "failed"
        self.logger.info(f"{self._prefix(agent_id)}Tool: {tool_name} {status} ({duration_ms:.2f}ms)")

    def log_step(self, step: int, agent_id: Optional[str] = None) -> None:
        self._record(
            AgentEvent(timestamp=datetime.now(), event_type="step", data={"step": step}, agent_id=agent_id)
        )
        self.logger.debug(f"{self._prefix(agent_id)}Step {step} completed")

    def log_error(
        self,
        error_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        agent_id: Optional[str] = None,
    ) -> None:
        """
        Log an error event.

        Args:
            error_type: Type of error (e.g., "tool_execution", "llm_api", "agent_run")
            message: Error message
            context: Additional context about the error
        """
        self._record(
            AgentEvent(
                timestamp=datetime.now(),
                event_type="error",
                data={"error_type": error_type, "message": message, "context": context or {}},
                agent_id=agent_id,
            )
        )
        self.logger.error(f"{self._prefix(agent_id)}Error ({error_type}): {message}")

    def log_message(self, channel: str, payload: List[Any], agent_id: Optional[str] = None) -> None:
        """Record a notify/trace message forwarded by an agent."""
        self._record(
            AgentEvent(
                timestamp=datetime.now(),
                event_type=channel,
                data={"payload": payload},
                agent_id=agent_id,
            )
        )
        self.logger.debug(f"{self._prefix(agent_id)}{channel}: {payload}")

    def get_session_stats(self) -> Dict[str, Any]:
        """
        Get aggregated statistics for the session.

        Returns:
            Dictionary with session statistics
        """
        llm_requests = [e for e in self.events if e.event_type == "llm_request"]
        tool_calls = [e for e in self.events if e.event_type == "tool_call"]
        errors = [e for e in self.events if e.event_type == "error"]
        failed_tools = sum(1 for e in tool_calls if not e.data.get("success", True))

        return {
            "event_count": len(self.events),
            "llm_requests": len(llm_requests),
            "tool_calls": len(tool_calls),
            "failed_tool_calls": failed_tools,
            "errors": len(errors),
            "total_tokens": sum(e.tokens_used or 0 for e in self.events),
            "total_cost_usd": sum(e.cost_usd or 0 for e in self.events),
            "total_duration_ms": sum(e.duration_ms or 0 for e in self.events),
        }

    def clear(self) -> None:
        """Clear all recorded events."""
        self.events.clear()
