"""Tests for the agent registry."""

import pytest

from llm_orchestra.agents import PromptAgent, create_default_registry
from llm_orchestra.agents.registry import AgentRegistry
from llm_orchestra.errors import UnknownAgentType


class TestAgentRegistry:
    def test_register_and_get(self):
        registry = AgentRegistry()
        registry.register("acme", "summarize", PromptAgent)
        assert registry.get("acme/summarize") is PromptAgent
        assert registry.has("acme", "summarize")
        assert len(registry) == 1

    def test_duplicate_rejected(self):
        registry = AgentRegistry()
        registry.register("acme", "summarize", PromptAgent)
        with pytest.raises(ValueError):
            registry.register("acme", "summarize", PromptAgent)

    def test_unknown_type(self):
        with pytest.raises(UnknownAgentType):
            AgentRegistry().get("acme/missing")

    def test_unregister(self):
        registry = AgentRegistry()
        registry.register("acme", "summarize", PromptAgent)
        registry.unregister("acme", "summarize")
        registry.unregister("acme", "summarize")
        assert not registry.has("acme", "summarize")

    def test_list_is_sorted(self):
        registry = AgentRegistry()
        registry.register("b", "x", PromptAgent)
        registry.register("a", "y", PromptAgent)
        assert registry.list() == ["a/y", "b/x"]


def test_default_registry_has_builtins():
    assert create_default_registry().list() == ["builtin/prompt"]
