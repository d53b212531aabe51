"""Agents that ask the model once and stop."""

from __future__ import annotations

import json
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ..agent import Agent, AgentOptions
from ..errors import InvalidResponse
from ..thread import Thread


class OneShotAgent(Agent[AgentOptions, Optional[Thread], Any]):
    """Send one prompt, take one answer, stop.

    Subclasses implement ``input()``; ``output(answer)`` maps the reply to
    the result and parses JSON when ``expects_json`` is set.
    """

    @abstractmethod
    def input(self) -> str:
        """The prompt sent to the model."""

    def output(self, answer: str) -> Any:
        if not self.expects_json:
            return answer
        try:
            return json.loads(answer)
        except json.JSONDecodeError as e:
            raise InvalidResponse(f"Expected a JSON reply: {e}") from e

    async def initialize(self, options: AgentOptions) -> Optional[Thread]:
        return None

    async def step(self, state: Optional[Thread]) -> Optional[Thread]:
        thread = self.create_thread()
        thread.append_user_message(self.input(), agent_id=self.id)
        thread = await self.advance(thread)
        self.stop()
        return thread

    async def finalize(self, state: Optional[Thread]) -> Any:
        if state is None:
            # Aborted before the first step.
            return None
        return self.output(state.assistant_response)


@dataclass
class PromptOptions(AgentOptions):
    prompt: str = ""


class PromptAgent(OneShotAgent):
    """One-shot agent whose prompt comes from its options."""

    options_type = PromptOptions

    def input(self) -> str:
        return self.options.prompt
