"""Tests for the built-in agent variants."""

import asyncio
from typing import Literal, Optional

import pytest
from pydantic import BaseModel

from llm_orchestra.agents import ChatAgent, OneShotAgent, PromptAgent, ReactiveAgent
from llm_orchestra.errors import InvalidResponse, ValidationError


class JsonAsker(OneShotAgent):
    model = "gpt-4o-mini"
    expects_json = True

    def input(self) -> str:
        return "Give me a JSON object"


class Say(BaseModel):
    type: Literal["say"]
    text: str


class Done(BaseModel):
    type: Literal["done"]


class Narrator(ReactiveAgent):
    model = "gpt-4o-mini"
    reaction_types = (Say, Done)
    max_corrections = 1

    def input(self) -> str:
        return "Narrate"

    async def react(self, reaction: BaseModel) -> Optional[str]:
        if isinstance(reaction, Say):
            return f"heard {reaction.text}"
        return None


class TestOneShot:
    """PromptAgent and JSON one-shot agents."""

    @pytest.mark.asyncio
    async def test_prompt_agent(self, session, stub_provider):
        stub_provider.queue_text("pong")
        agent = session.spawn_agent(PromptAgent, {"model": "gpt-4o-mini", "prompt": "ping"})
        assert await agent.run() == "pong"
        assert stub_provider.requests[0].messages[0].content == "ping"

    @pytest.mark.asyncio
    async def test_json_reply_parsed(self, session, stub_provider):
        stub_provider.queue_text('{"answer": 42}')
        agent = session.spawn_agent(JsonAsker)
        assert await agent.run() == {"answer": 42}
        assert stub_provider.requests[0].config.json_mode is True

    @pytest.mark.asyncio
    async def test_invalid_json_reply(self, session, stub_provider):
        stub_provider.queue_text("not json")
        agent = session.spawn_agent(JsonAsker)
        with pytest.raises(InvalidResponse):
            await agent.run()

    @pytest.mark.asyncio
    async def test_aborted_before_first_step(self, session, stub_provider):
        agent = session.spawn_agent(PromptAgent, {"model": "gpt-4o-mini", "prompt": "ping"})
        session.abort()
        assert await agent.run() is None
        assert stub_provider.requests == []


class TestChatAgent:
    """Queue-fed multi-turn conversation."""

    @pytest.mark.asyncio
    async def test_turns_share_history(self, session, stub_provider):
        stub_provider.queue_text("hello there").queue_text("I am fine")
        agent = session.spawn_agent(ChatAgent, {"model": "gpt-4o-mini"})
        task = asyncio.create_task(agent.run())

        assert await agent.send_message("hi") == "hello there"
        assert await agent.send_message("how are you?") == "I am fine"
        agent.close()
        transcript = await task

        assert [t["content"] for t in transcript] == ["hi", "hello there", "how are you?", "I am fine"]
        second = stub_provider.requests[1].messages
        assert [m.content for m in second] == ["hi", "hello there", "how are you?"]

    @pytest.mark.asyncio
    async def test_close_without_messages(self, session):
        agent = session.spawn_agent(ChatAgent, {"model": "gpt-4o-mini"})
        agent.close()
        assert await agent.run() == []

    @pytest.mark.asyncio
    async def test_failure_reaches_sender(self, session, stub_provider):
        from llm_orchestra.errors import ProviderError, ProviderHTTPError

        stub_provider.queue_error(ProviderHTTPError(401, "unauthorized"))
        agent = session.spawn_agent(ChatAgent, {"model": "gpt-4o-mini"})
        task = asyncio.create_task(agent.run())
        with pytest.raises(ProviderError):
            await agent.send_message("hi")
        with pytest.raises(ProviderError):
            await task


class TestReactiveAgent:
    """Structured replies dispatched to reactions."""

    @pytest.mark.asyncio
    async def test_reactions_until_nothing_to_continue(self, session, stub_provider):
        stub_provider.queue_text('[{"type": "say", "text": "one"}]')
        stub_provider.queue_text('{"type": "done"}')
        agent = session.spawn_agent(Narrator)

        handled = await agent.run()

        assert [r.type for r in handled] == ["say", "done"]
        assert stub_provider.requests[1].messages[-1].content == "heard one"
        assert stub_provider.requests[0].config.json_mode is True

    @pytest.mark.asyncio
    async def test_correction_after_bad_reply(self, session, stub_provider):
        stub_provider.queue_text('{"type": "shout"}')
        stub_provider.queue_text('{"type": "done"}')
        agent = session.spawn_agent(Narrator)

        handled = await agent.run()

        assert [r.type for r in handled] == ["done"]
        correction = stub_provider.requests[1].messages[-1].content
        assert correction.startswith("Your last reply could not be processed")

    @pytest.mark.asyncio
    async def test_too_many_corrections(self, session, stub_provider):
        stub_provider.queue_text("not json").queue_text("still not json")
        agent = session.spawn_agent(Narrator)
        with pytest.raises(ValidationError):
            await agent.run()
        assert len(stub_provider.requests) == 2

    def test_reaction_types_required(self, session):
        class Empty(ReactiveAgent):
            def input(self) -> str:
                return ""

            async def react(self, reaction):
                return None

        with pytest.raises(TypeError):
            session.spawn_agent(Empty)

    def test_single_reaction_type(self, session):
        class Sayer(Narrator):
            reaction_types = (Say,)

        agent = session.spawn_agent(Sayer)
        parsed = agent.parse_reactions('{"type": "say", "text": "x"}')
        assert parsed == [Say(type="say", text="x")]
