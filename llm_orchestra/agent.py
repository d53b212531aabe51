"""Agent step-loop engine."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
    TypeVar,
    Union,
)

from .common import Timing, generate_id
from .errors import InvalidResponse, InvalidState, OwnershipError, ToolNotFound, ValidationError
from .models import ModelMetadata, resolve_model_metadata
from .observability import EventEmitter
from .providers.types import GenerationConfig, Message, ToolCall
from .thread import Thread
from .tool import Tool, tool_error

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

OptionsT = TypeVar("OptionsT", bound="AgentOptions")
StateT = TypeVar("StateT")
ResultT = TypeVar("ResultT")


class AgentState(Enum):
    NOT_STARTED = "not_started"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    STOPPING = "stopping"
    DONE = "done"


@dataclass
class AgentOptions:
    """Options accepted by every agent.

    ``None`` means "not given": the agent class attribute of the same name
    supplies the value.
    """

    model: Optional[Union[str, ModelMetadata]] = None
    topic: Optional[str] = None
    tools: Optional[List[Tool]] = None
    system_prompt: Optional[str] = None
    eat_tool_results: Optional[bool] = None
    expects_json: Optional[bool] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    reasoning_effort: Optional[str] = None


def coerce_options(options_type: Type[OptionsT], options: Any) -> OptionsT:
    """Build an options instance from ``None``, a mapping or an instance."""
    if options is None:
        return options_type()
    if isinstance(options, options_type):
        return options
    if isinstance(options, Mapping):
        known = {f.name for f in dataclasses.fields(options_type)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValidationError(f"Unknown options for {options_type.__name__}: {', '.join(unknown)}")
        return options_type(**options)
    raise ValidationError(f"Options must be a mapping or {options_type.__name__}, got {type(options).__name__}")


class Agent(ABC, Generic[OptionsT, StateT, ResultT]):
    """
    Generic step-loop state machine.

    Concrete agents implement three hooks:
    - initialize(options): build the initial state
    - step(state): do one unit of work and return the next state
    - finalize(state): turn the last state into the result

    ``run()`` drives them: heartbeat and step repeat while the agent is
    active and its session has not been aborted. Agents own threads and
    transfer them explicitly with ``adopt`` / ``abandon``.

    Events emitted on ``self.events``: start, heartbeat, step, stopping,
    stop, error. ``heartbeat`` always precedes the ``step`` of the same
    iteration.
    """

    options_type: Type[AgentOptions] = AgentOptions

    model: Optional[Union[str, ModelMetadata]] = None
    topic: Optional[str] = None
    tools: Sequence[Tool] = ()
    system_prompt: str = ""
    eat_tool_results: bool = False
    expects_json: bool = False
    temperature: float = 0.0
    max_tokens: int = 4096
    reasoning_effort: Optional[str] = None

    def __init__(self, session: "Session", options: Any = None, parent_id: Optional[str] = None):
        self.id = generate_id(type(self).__name__)
        self.session = session
        self.parent_id = parent_id
        self.options: OptionsT = coerce_options(self.options_type, options)  # type: ignore[assignment]
        for name in (f.name for f in dataclasses.fields(AgentOptions)):
            value = getattr(self.options, name, None)
            if value is not None:
                setattr(self, name, value)
        self.tools = list(self.tools)

        self.state = AgentState.NOT_STARTED
        self.active = False
        self.events = EventEmitter()
        self.timing: Optional[Timing] = None
        self.steps = 0
        self.last_heartbeat: Optional[float] = None
        self.result: Optional[ResultT] = None
        self.error: Optional[BaseException] = None
        self._threads: Dict[str, Thread] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, state={self.state.value})"

    # --- Lifecycle hooks ---

    @abstractmethod
    async def initialize(self, options: OptionsT) -> StateT:
        """Build the initial state from the options."""

    @abstractmethod
    async def step(self, state: StateT) -> StateT:
        """Do one unit of work. Call ``stop()`` to end the loop."""

    @abstractmethod
    async def finalize(self, state: StateT) -> ResultT:
        """Turn the final state into the agent's result."""

    # --- Run loop ---

    async def run(self) -> ResultT:
        """Drive initialize, the step loop and finalize, then conclude.

        Raises:
            InvalidState: If the agent has already been run
        """
        if self.state != AgentState.NOT_STARTED:
            raise InvalidState(f"{self.id} has already been run")

        async with self.session.agent_slot(self):
            self.state = AgentState.INITIALIZING
            self.timing = Timing()
            logger.info(f"[{self.id}] Starting{f' ({self.topic})' if self.topic else ''}")
            try:
                state = await self.initialize(self.options)
                self.active = True
                self.state = AgentState.ACTIVE
                self.events.emit("start", self)

                while self.active and not self.session.aborted:
                    self.heartbeat()
                    state = await self.step(state)
                    self.steps += 1
                    self.events.emit("step", self, self.steps)

                if self.active:
                    logger.info(f"[{self.id}] Session aborted, stopping after {self.steps} steps")
                self.active = False
                self.state = AgentState.STOPPING
                self.events.emit("stopping", self)
                self.result = await self.finalize(state)
            except asyncio.CancelledError:
                self.active = False
                logger.warning(f"[{self.id}] Cancelled after {self.steps} steps")
                self.conclude()
                raise
            except Exception as e:
                self.active = False
                self.error = e
                logger.error(f"[{self.id}] Failed after {self.steps} steps: {e}")
                self.session.record_failure(self, e)
                self.events.emit("error", self, e)
                self.conclude()
                raise

            self.conclude()
            logger.info(f"[{self.id}] Finished after {self.steps} steps")
            return self.result  # type: ignore[return-value]

    def stop(self) -> None:
        """Request the loop to end after the current step.

        Raises:
            InvalidState: If the agent is not active
        """
        if not self.active:
            raise InvalidState(f"{self.id} is not active")
        self.active = False

    def heartbeat(self) -> None:
        """Liveness signal for the session watchdog."""
        self.last_heartbeat = time.monotonic()
        self.events.emit("heartbeat", self)

    def conclude(self) -> None:
        """Release every owned thread and detach from the session.

        Raises:
            InvalidState: If the agent is still active
        """
        if self.active:
            raise InvalidState(f"Cannot conclude {self.id} while it is active")
        if self.state == AgentState.DONE:
            return
        for thread in list(self._threads.values()):
            thread.conclude()
        self._threads.clear()
        self.state = AgentState.DONE
        if self.timing is not None:
            self.timing.finish()
        self.events.emit("stop", self)
        self.session.release(self)

    # --- Thread ownership ---

    @property
    def threads(self) -> List[Thread]:
        return list(self._threads.values())

    def create_thread(self) -> Thread:
        return self.adopt(Thread())

    def adopt(self, thread: Thread) -> Thread:
        if thread.concluded:
            raise InvalidState(f"Cannot adopt concluded {thread.id}")
        if thread.owner_id is not None:
            raise OwnershipError(f"{thread.id} is already owned by {thread.owner_id}")
        thread.owner_id = self.id
        self._threads[thread.id] = thread
        return thread

    def abandon(self, thread: Thread) -> None:
        """Give up a thread. Abandoned threads are dropped."""
        if self._threads.get(thread.id) is not thread:
            raise OwnershipError(f"{self.id} does not own {thread.id}")
        thread.check_owner(self.id)
        del self._threads[thread.id]
        thread.conclude()

    def reply(self, thread: Thread, text: str) -> Thread:
        """Continue a complete thread with a user message, as a new owned thread."""
        thread.check_owner(self.id)
        followup = thread.followup(text)
        self.abandon(thread)
        return self.adopt(followup)

    # --- Model and tools ---

    def model_metadata(self) -> ModelMetadata:
        if self.model is None:
            raise InvalidState(f"{self.id} has no model configured")
        return resolve_model_metadata(self.model)

    def generation_config(self) -> GenerationConfig:
        return GenerationConfig(
            system_prompt=self.system_prompt or "",
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            json_mode=self.expects_json,
            reasoning_effort=self.reasoning_effort,
        )

    def build_messages(self, thread: Thread) -> List[Message]:
        return thread.to_messages()

    def find_tool(self, name: str) -> Tool:
        for candidate in self.tools:
            if candidate.name == name:
                return candidate
        raise ToolNotFound(f"Unknown tool: {name}")

    async def advance(self, thread: Thread) -> Thread:
        """
        Ask the model for the next assistant turn on ``thread``.

        Plain text is appended in place and the same thread is returned.
        Tool calls are resolved on a new thread, which replaces ``thread``
        and is advanced again for the follow-up reply. With
        ``eat_tool_results`` every tool exchange of the turn, including
        those made by follow-ups, is then rolled up onto the pre-call
        history as one note.

        Raises:
            OwnershipError: The agent does not own the thread
            InvalidState: The thread cannot be sent
            InvalidResponse: The reply has neither text nor tool calls
        """
        thread.check_owner(self.id)
        if not thread.is_sendable:
            raise InvalidState(f"{thread.id} cannot be advanced (complete, empty or has pending calls)")
        model = self.model_metadata()

        snapshot = thread.fork() if self.eat_tool_results else None
        calls: List[ToolCall] = []
        reply = await self._advance(thread, model, calls)
        if snapshot is None or not calls:
            return reply

        rolled = self.adopt(Thread.rollup(snapshot, self.tool_note(calls)))
        rolled.append_assistant_message(reply.assistant_response, agent_id=self.id)
        self.abandon(reply)
        return rolled

    async def _advance(self, thread: Thread, model: ModelMetadata, calls: List[ToolCall]) -> Thread:
        # Resolved calls accumulate in ``calls`` across follow-ups.
        with thread.advancing():
            result = await self.session.invoke_model(
                self,
                model,
                self.build_messages(thread),
                tools=[t.describe() for t in self.tools] or None,
                config=self.generation_config(),
            )

            if not result.tool_calls:
                if result.content is None:
                    raise InvalidResponse(f"{model.id} returned neither text nor tool calls")
                thread.append_assistant_message(result.content, agent_id=self.id)
                return thread

            thread.append_assistant_tool_calls(result.tool_calls, agent_id=self.id)
            calls.extend(result.tool_calls)
            branch = await self.handle_tool_calls(thread)

        self.abandon(thread)
        self.adopt(branch)
        return await self._advance(branch, model, calls)

    def tool_note(self, calls: Sequence[ToolCall]) -> str:
        """Synthetic note replacing a rolled-up tool exchange."""
        summary = json.dumps([{"name": c.name, "arguments": c.arguments} for c in calls], ensure_ascii=False)
        return (
            f"You called these tools: {summary}. Their results were removed from the "
            f"conversation; your answer that follows already accounts for them."
        )

    async def handle_tool_calls(self, thread: Thread) -> Thread:
        """
        Resolve every pending call on ``thread`` in issue order.

        A failing tool never stops the batch: its error becomes a tool-error
        result. Returns a new, unowned thread holding the resolved batch.
        """
        thread.check_owner(self.id)
        calls = thread.pending_calls
        if not calls:
            raise InvalidState(f"{thread.id} has no pending tool calls")

        try:
            for call in calls:
                thread.append_tool_result(call.id, await self.invoke_tool(call), agent_id=self.id)
        finally:
            for call in thread.pending_calls:
                thread.append_tool_result(call.id, tool_error("tool call was interrupted"), agent_id=self.id)
        return thread.fork()

    async def invoke_tool(self, call: ToolCall) -> str:
        """Run one tool call and return the text sent back to the model."""
        start = time.monotonic()
        success = False
        try:
            found = self.find_tool(call.name)
            args = json.loads(call.arguments or "{}")
            value = await found.invoke(self, args)
            content = found.serialize(value)
            success = True
        except Exception as e:
            logger.warning(f"[{self.id}] Tool {call.name} ({call.id}) failed: {e}")
            content = tool_error(str(e))
        self.session.observer.log_tool_call(
            call.name, call.id, success, (time.monotonic() - start) * 1000, agent_id=self.id
        )
        return content

    # --- Session delegation ---

    def spawn_agent(self, ctor: Type["Agent"], options: Any = None) -> "Agent":
        """Create a child agent in the same session. The caller runs it.

        While this agent runs, the child shares its concurrent-agent slot.
        """
        return self.session.spawn_agent(ctor, options, parent_id=self.id)

    def notify(self, *payload: Any) -> None:
        self.session.notify(self, "notify", list(payload))

    def trace(self, *payload: Any) -> None:
        self.session.notify(self, "trace", list(payload))
