"""Spawn and status handling for externally initiated sessions."""

from __future__ import annotations

import asyncio
import logging
import time
import traceback
from typing import Any, List, Optional

from pydantic_core import to_jsonable_python

from .agents.registry import AgentRegistry
from .config import RuntimeConfig
from .contracts import SessionStatus, SessionSummary, SpawnRequest, SpawnResponse, StatusResponse
from .errors import AgentTimeout
from .providers.router import ProviderRouter
from .session import BudgetHandler, Session

logger = logging.getLogger(__name__)


class Runtime:
    """
    Entry point for spawn requests.

    Each spawn gets its own Session; every session shares the same router.
    The request timeout bounds the silence between heartbeats, not the
    total run time.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        router: Optional[ProviderRouter] = None,
        config: Optional[RuntimeConfig] = None,
        budget_handler: Optional[BudgetHandler] = None,
        max_sessions: int = 100,
    ):
        self.registry = registry
        self.config = config or RuntimeConfig()
        self.router = router or ProviderRouter(self.config.providers, self.config.retry)
        self.budget_handler = budget_handler
        self.max_sessions = max_sessions
        self.sessions: List[Session] = []

    def create_session(self) -> Session:
        session = Session(
            self.router,
            budget=self.config.session.budget,
            budget_handler=self.budget_handler,
            max_concurrent_agents=self.config.session.max_concurrent_agents,
        )
        self.sessions.append(session)
        self._prune_sessions()
        return session

    def _prune_sessions(self) -> None:
        """Drop the oldest ended sessions beyond ``max_sessions``. Live sessions stay."""
        excess = len(self.sessions) - self.max_sessions
        if excess <= 0:
            return
        stale = [s for s in self.sessions if s.ended][:excess]
        for session in stale:
            self.sessions.remove(session)
        logger.debug(f"Pruned {len(stale)} ended sessions, {len(self.sessions)} kept")

    async def spawn(self, request: SpawnRequest) -> SpawnResponse:
        """
        Run one agent of the requested type to completion.

        Raises:
            UnknownAgentType: If the type is not registered
        """
        ctor = self.registry.get(request.type)
        session = self.create_session()
        logger.info(f"[{session.id}] Spawning {request.type}")

        try:
            agent = session.spawn_agent(ctor, request.options)
            result = await self._watch(session, asyncio.create_task(agent.run()), request.timeout)
        except Exception as e:
            session.abort()
            logger.error(f"[{session.id}] {request.type} failed: {e}")
            return SpawnResponse(
                success=False,
                error=str(e) or type(e).__name__,
                trace=traceback.format_exc(),
                session=SessionSummary.from_report(session.report()),
            )

        session.close()
        return SpawnResponse(
            success=True,
            result=to_jsonable_python(result, fallback=str),
            session=SessionSummary.from_report(session.report()),
        )

    async def _watch(self, session: Session, task: "asyncio.Task[Any]", timeout: Optional[float]) -> Any:
        """Await the agent task, cancelling it when heartbeats stop for ``timeout`` seconds."""
        try:
            if timeout is None:
                return await task

            remaining = timeout
            while True:
                done, _ = await asyncio.wait({task}, timeout=remaining)
                if task in done:
                    return task.result()
                silence = time.monotonic() - session.last_heartbeat
                if silence >= timeout:
                    break
                remaining = timeout - silence
        except asyncio.CancelledError:
            task.cancel()
            raise

        session.abort()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise AgentTimeout(f"No heartbeat from {session.id} for {silence:.1f}s (timeout {timeout}s)")

    def status(self) -> StatusResponse:
        return StatusResponse(
            sessions=[SessionStatus.from_session(s.id, s.report()) for s in self.sessions]
        )
