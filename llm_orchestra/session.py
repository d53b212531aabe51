"""Session coordinator: agents, ledger, model routing and cooperative abort."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
    Type,
)

from .common import Timing, generate_id
from .errors import BudgetExceeded, SessionAborted
from .ledger import Ledger, LedgerEntry, TokenCount
from .models import ModelMetadata
from .observability import EventEmitter, SessionObserver
from .providers.router import ProviderRouter
from .providers.types import GenerationConfig, InvocationResult, Message, ToolSchema

if TYPE_CHECKING:
    from .agent import Agent

logger = logging.getLogger(__name__)

BudgetHandler = Callable[[float, float, List[Message], "Session"], Awaitable[float]]

RELAYED_EVENTS = ("start", "step", "stopping", "stop", "error")


@dataclass
class SessionReport:
    cost: float
    elapsed: float
    ended: bool
    exchanges: int
    tokens_per_model: Dict[str, TokenCount] = field(default_factory=dict)
    tokens_per_agent: Dict[str, TokenCount] = field(default_factory=dict)
    ledger: Tuple[LedgerEntry, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cost": self.cost,
            "elapsed": self.elapsed,
            "ended": self.ended,
            "exchanges": self.exchanges,
            "tokensPerModel": {k: v.to_dict() for k, v in self.tokens_per_model.items()},
            "tokensPerAgent": {k: v.to_dict() for k, v in self.tokens_per_agent.items()},
            "ledger": [entry.to_dict() for entry in self.ledger],
        }


class Session:
    """
    Root coordinator for one top-level spawn request.

    Owns the live agents, the append-only ledger and the abort flag, and
    routes every model call through the shared ProviderRouter.

    Events: agent-start, agent-step, agent-stopping, agent-stop, agent-error,
    heartbeat, ledger-entry, notify, trace.
    """

    def __init__(
        self,
        router: ProviderRouter,
        budget: Optional[float] = None,
        budget_handler: Optional[BudgetHandler] = None,
        max_concurrent_agents: Optional[int] = None,
    ):
        self.id = generate_id("Session")
        self.router = router
        self.ledger = Ledger()
        self.events = EventEmitter()
        self.observer = SessionObserver(self.id)
        self.timing = Timing()
        self.aborted = False
        self.budget = budget
        self.budget_handler = budget_handler
        self.failures: Dict[str, str] = {}
        self.last_heartbeat = time.monotonic()
        self._budget_lock = asyncio.Lock()
        self._agent_limit = asyncio.Semaphore(max_concurrent_agents) if max_concurrent_agents else None
        self._agents: Dict[str, "Agent"] = {}
        self._slot_holders: Set[str] = set()
        self._detach: Dict[str, List[Tuple[str, Callable[..., Any]]]] = {}
        self.ledger.on_entry(lambda entry: self.events.emit("ledger-entry", entry))

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, agents={len(self._agents)}, aborted={self.aborted})"

    # --- Agents ---

    def spawn_agent(self, ctor: Type["Agent"], options: Any = None, parent_id: Optional[str] = None) -> "Agent":
        """Construct an agent owned by this session. The caller runs it.

        Raises:
            SessionAborted: If the session has been aborted
        """
        if self.aborted:
            raise SessionAborted(f"{self.id} is aborted")
        agent = ctor(self, options, parent_id=parent_id)
        self._agents[agent.id] = agent
        self._attach(agent)
        logger.info(f"[{self.id}] Spawned {agent.id}{f' (parent {parent_id})' if parent_id else ''}")
        return agent

    def _attach(self, agent: "Agent") -> None:
        listeners: List[Tuple[str, Callable[..., Any]]] = []
        for event in RELAYED_EVENTS:
            def relay(*args: Any, _name: str = f"agent-{event}") -> None:
                self.events.emit(_name, *args)

            listeners.append((event, agent.events.on(event, relay)))
        listeners.append(("heartbeat", agent.events.on("heartbeat", self._on_heartbeat)))
        listeners.append(("step", agent.events.on("step", self._on_step)))
        self._detach[agent.id] = listeners

    def _on_heartbeat(self, agent: "Agent") -> None:
        self.last_heartbeat = time.monotonic()
        self.events.emit("heartbeat", agent)

    def _on_step(self, agent: "Agent", step: int) -> None:
        self.observer.log_step(step, agent_id=agent.id)

    def release(self, agent: "Agent") -> None:
        """Forget a concluded agent and detach its listeners."""
        self._agents.pop(agent.id, None)
        for event, listener in self._detach.pop(agent.id, []):
            agent.events.off(event, listener)

    def agent_by_id(self, agent_id: str) -> Optional["Agent"]:
        return self._agents.get(agent_id)

    @property
    def agent_count(self) -> int:
        return len(self._agents)

    @contextlib.asynccontextmanager
    async def agent_slot(self, agent: "Agent") -> AsyncIterator[None]:
        """Hold one of the session's concurrent-agent slots, if capped.

        A child spawned by a running agent shares its parent's slot, so a
        parent awaiting its child never waits on itself.
        """
        shared = self._agent_limit is None or agent.parent_id in self._slot_holders
        async with contextlib.nullcontext() if shared else self._agent_limit:
            self._slot_holders.add(agent.id)
            try:
                yield
            finally:
                self._slot_holders.discard(agent.id)

    def record_failure(self, agent: "Agent", error: BaseException) -> None:
        self.failures[agent.id] = str(error)
        self.observer.log_error("agent_run", str(error), {"type": type(error).__name__}, agent_id=agent.id)

    # --- Model invocation ---

    async def invoke_model(
        self,
        agent: "Agent",
        model: ModelMetadata,
        messages: List[Message],
        tools: Optional[List[ToolSchema]] = None,
        config: Optional[GenerationConfig] = None,
    ) -> InvocationResult:
        """
        Route one model call and record exactly one ledger entry for it.

        Raises:
            BudgetExceeded: The session budget is spent
            MissingCredentials, ProviderError: From the router
        """
        await self._check_budget(messages)

        start = time.monotonic()
        try:
            result = await self.router.dispatch(model, messages, tools, config)
        except Exception as e:
            self.observer.log_error("llm_api", str(e), {"model": model.id}, agent_id=agent.id)
            raise
        duration_ms = (time.monotonic() - start) * 1000

        entry = self.ledger.record(agent.id, model, result.usage, duration_ms)
        self.observer.log_llm_request(
            model.id,
            entry.prompt_tokens,
            entry.completion_tokens,
            entry.cost,
            duration_ms,
            agent_id=agent.id,
        )
        return result

    async def _check_budget(self, messages: List[Message]) -> None:
        if self.budget is None or self.ledger.total_cost() < self.budget:
            return
        if self.budget_handler is None:
            raise BudgetExceeded(f"Spent ${self.ledger.total_cost():.4f} of ${self.budget:.4f} budget")

        # Single flight: callers arriving while the handler runs wait and re-check.
        if self._budget_lock.locked():
            async with self._budget_lock:
                pass
        else:
            async with self._budget_lock:
                cost = self.ledger.total_cost()
                logger.info(f"[{self.id}] Budget ${self.budget:.4f} reached (spent ${cost:.4f}), asking handler")
                self.budget = await self.budget_handler(cost, self.budget, messages, self)

        if self.ledger.total_cost() >= self.budget:
            raise BudgetExceeded(f"Spent ${self.ledger.total_cost():.4f} of ${self.budget:.4f} budget")

    # --- Cancellation and reporting ---

    def abort(self) -> None:
        """Ask every agent to stop at its next loop head. Never raises."""
        if self.aborted:
            return
        self.aborted = True
        self.timing.finish()
        logger.info(f"[{self.id}] Aborted with {len(self._agents)} live agents")

    def close(self) -> None:
        self.timing.finish()

    @property
    def ended(self) -> bool:
        return self.timing.has_ended

    def total_cost(self) -> float:
        return self.ledger.total_cost()

    def get_ledger(self) -> Ledger:
        return self.ledger

    def report(self) -> SessionReport:
        return SessionReport(
            cost=self.ledger.total_cost(),
            elapsed=self.timing.elapsed,
            ended=self.ended,
            exchanges=len(self.ledger),
            tokens_per_model=self.ledger.tokens_by_model(),
            tokens_per_agent=self.ledger.tokens_by_agent(),
            ledger=self.ledger.entries,
        )

    def notify(self, agent: "Agent", channel: str, payload: List[Any]) -> None:
        """Diagnostic pass-through from agents (``notify`` / ``trace``)."""
        self.observer.log_message(channel, payload, agent_id=agent.id)
        self.events.emit(channel, agent, payload)
