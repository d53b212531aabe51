"""JSON-mode agent that dispatches structured replies to reactions."""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from typing import Annotated, Any, List, Optional, Sequence, Type, Union

import pydantic
from pydantic import BaseModel, Field, TypeAdapter

from ..agent import Agent, AgentOptions
from ..errors import ValidationError
from ..thread import Thread

logger = logging.getLogger(__name__)


class ReactiveAgent(Agent[AgentOptions, Thread, List[BaseModel]]):
    """
    Agent whose replies are JSON objects handled by typed reactions.

    ``reaction_types`` lists pydantic models, each with a literal ``type``
    field used as the discriminator. A reply may hold one object or a list
    of them. ``react`` handles one parsed reaction and may return text for
    the next user turn; when no reaction asks to continue, the agent stops.

    A malformed or unmatched reply is answered with a corrective user
    message, up to ``max_corrections`` times in a row.
    """

    expects_json = True
    reaction_types: Sequence[Type[BaseModel]] = ()
    max_corrections = 3

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        if not self.reaction_types:
            raise TypeError(f"{type(self).__name__} declares no reaction_types")
        if len(self.reaction_types) == 1:
            item: Any = self.reaction_types[0]
        else:
            item = Annotated[Union[tuple(self.reaction_types)], Field(discriminator="type")]
        self._adapter = TypeAdapter(List[item])
        self.handled: List[BaseModel] = []
        self._corrections = 0

    @abstractmethod
    def input(self) -> str:
        """The opening user message."""

    @abstractmethod
    async def react(self, reaction: BaseModel) -> Optional[str]:
        """Handle one reaction; return text to continue the conversation."""

    def parse_reactions(self, text: str) -> List[BaseModel]:
        """Parse a reply into reactions.

        Raises:
            ValidationError: The reply is not JSON or matches no reaction type
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Reply is not valid JSON: {e}") from e
        if isinstance(data, dict):
            data = [data]
        try:
            return self._adapter.validate_python(data)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Reply matches no reaction: {e}", errors=e.errors()) from e

    def correction(self, error: ValidationError) -> str:
        schemas = [model.model_json_schema() for model in self.reaction_types]
        return (
            f"Your last reply could not be processed: {error}\n"
            f"Reply with a JSON object, or a list of objects, matching one of: {json.dumps(schemas)}"
        )

    async def initialize(self, options: AgentOptions) -> Thread:
        thread = self.create_thread()
        thread.append_user_message(self.input(), agent_id=self.id)
        return thread

    async def step(self, state: Thread) -> Thread:
        if state.is_sendable:
            return await self.advance(state)

        try:
            reactions = self.parse_reactions(state.assistant_response)
        except ValidationError as e:
            self._corrections += 1
            if self._corrections > self.max_corrections:
                raise
            logger.warning(f"[{self.id}] Correction {self._corrections}/{self.max_corrections}: {e}")
            return self.reply(state, self.correction(e))
        self._corrections = 0

        followups = []
        for reaction in reactions:
            self.handled.append(reaction)
            followup = await self.react(reaction)
            if followup:
                followups.append(followup)

        if not self.active:
            return state
        if not followups:
            self.stop()
            return state
        return self.reply(state, "\n\n".join(followups))

    async def finalize(self, state: Thread) -> List[BaseModel]:
        return list(self.handled)
