"""Interactive chat agent fed through an asyncio queue."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from ..agent import Agent, AgentOptions
from ..thread import Thread

_Turn = Optional[Tuple[str, "asyncio.Future[str]"]]


class ChatAgent(Agent[AgentOptions, Optional[Thread], List[Dict[str, Any]]]):
    """
    Multi-turn conversation driven from outside the agent.

    ``send_message`` hands a user turn to the running agent and waits for the
    reply; ``close`` ends the conversation. Each step waits for one turn, so
    the session only sees heartbeats while messages keep arriving.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._inbox: "asyncio.Queue[_Turn]" = asyncio.Queue()

    async def send_message(self, text: str) -> str:
        reply: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()
        await self._inbox.put((text, reply))
        return await reply

    def close(self) -> None:
        self._inbox.put_nowait(None)

    async def initialize(self, options: AgentOptions) -> Optional[Thread]:
        return None

    async def step(self, state: Optional[Thread]) -> Optional[Thread]:
        turn = await self._inbox.get()
        if turn is None:
            self.stop()
            return state

        text, reply = turn
        try:
            if state is None:
                thread = self.create_thread()
                thread.append_user_message(text, agent_id=self.id)
            else:
                thread = self.reply(state, text)
            thread = await self.advance(thread)
        except Exception as e:
            reply.set_exception(e)
            raise
        reply.set_result(thread.assistant_response)
        return thread

    async def finalize(self, state: Optional[Thread]) -> List[Dict[str, Any]]:
        """The conversation transcript."""
        if state is None:
            return []
        return [{"role": e.role.value, "content": e.content} for e in state if not e.tool_calls]
