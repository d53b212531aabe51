"""Tests for spawn handling and the heartbeat watchdog."""

import asyncio

import pytest

from llm_orchestra.agent import Agent
from llm_orchestra.agents import create_default_registry
from llm_orchestra.config import RuntimeConfig, SessionSettings
from llm_orchestra.contracts import SpawnRequest
from llm_orchestra.errors import UnknownAgentType
from llm_orchestra.runtime import Runtime


class Sleeper(Agent):
    """Never heartbeats again after its first step begins."""

    async def initialize(self, options):
        return None

    async def step(self, state):
        await asyncio.sleep(10)
        return state

    async def finalize(self, state):
        return state


class Ticker(Agent):
    """Keeps heartbeating for a while, then stops."""

    async def initialize(self, options):
        return 0

    async def step(self, state):
        await asyncio.sleep(0.02)
        if state >= 5:
            self.stop()
        return state + 1

    async def finalize(self, state):
        return {"ticks": state}


@pytest.fixture
def runtime(router):
    registry = create_default_registry()
    registry.register("test", "sleeper", Sleeper)
    registry.register("test", "ticker", Ticker)
    return Runtime(registry, router=router)


class TestSpawn:
    @pytest.mark.asyncio
    async def test_echo_success(self, runtime, stub_provider):
        stub_provider.queue_text("done", prompt_tokens=12, completion_tokens=3)
        response = await runtime.spawn(
            SpawnRequest(type="builtin/prompt", options={"model": "gpt-4o-mini", "prompt": "Say done"})
        )
        assert response.success
        assert response.result == "done"
        assert response.session.ended
        assert response.session.tokens_per_model["gpt-4o-mini"] == {"prompt": 12, "completion": 3, "total": 15}

    @pytest.mark.asyncio
    async def test_unknown_type(self, runtime):
        with pytest.raises(UnknownAgentType):
            await runtime.spawn(SpawnRequest(type="test/missing"))
        assert runtime.sessions == []

    @pytest.mark.asyncio
    async def test_failure_reports_trace(self, runtime):
        response = await runtime.spawn(SpawnRequest(type="builtin/prompt", options={"colour": "red"}))
        assert not response.success
        assert "colour" in response.error
        assert "Traceback" in response.trace
        assert response.session.ended

    @pytest.mark.asyncio
    async def test_result_made_json_safe(self, runtime):
        response = await runtime.spawn(SpawnRequest(type="test/ticker"))
        assert response.result == {"ticks": 6}

    @pytest.mark.asyncio
    async def test_status_lists_sessions(self, runtime, stub_provider):
        stub_provider.queue_text("done")
        await runtime.spawn(SpawnRequest(type="builtin/prompt", options={"model": "gpt-4o-mini", "prompt": "x"}))
        status = runtime.status()
        assert len(status.sessions) == 1
        assert status.sessions[0].exchanges == 1
        assert status.sessions[0].id == runtime.sessions[0].id

    def test_session_settings_applied(self, router):
        config = RuntimeConfig(session=SessionSettings(budget=2.0, max_concurrent_agents=3))
        runtime = Runtime(create_default_registry(), router=router, config=config)
        session = runtime.create_session()
        assert session.budget == 2.0
        assert session.router is router

    def test_ended_sessions_pruned(self, router):
        runtime = Runtime(create_default_registry(), router=router, max_sessions=2)
        first = runtime.create_session()
        live = runtime.create_session()
        first.close()
        third = runtime.create_session()
        assert runtime.sessions == [live, third]

    def test_live_sessions_never_pruned(self, router):
        runtime = Runtime(create_default_registry(), router=router, max_sessions=1)
        sessions = [runtime.create_session() for _ in range(3)]
        assert runtime.sessions == sessions


class TestWatchdog:
    """The timeout bounds silence between heartbeats."""

    @pytest.mark.asyncio
    async def test_silent_agent_times_out(self, runtime):
        response = await runtime.spawn(SpawnRequest(type="test/sleeper", timeout=0.05))
        assert not response.success
        assert "No heartbeat" in response.error
        assert runtime.sessions[0].aborted

    @pytest.mark.asyncio
    async def test_heartbeats_extend_the_deadline(self, runtime):
        # Runs well past the timeout in total, but never goes quiet for that long.
        response = await runtime.spawn(SpawnRequest(type="test/ticker", timeout=0.08))
        assert response.success
        assert response.result == {"ticks": 6}
