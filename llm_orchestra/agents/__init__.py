"""Agent registry and built-in agent variants."""

from .chat import ChatAgent
from .one_shot import OneShotAgent, PromptAgent, PromptOptions
from .reactive import ReactiveAgent
from .registry import AgentRegistry


def create_default_registry() -> AgentRegistry:
    """Registry holding the concrete built-in agents."""
    registry = AgentRegistry()
    registry.register("builtin", "prompt", PromptAgent)
    return registry


__all__ = [
    "AgentRegistry",
    "ChatAgent",
    "OneShotAgent",
    "PromptAgent",
    "PromptOptions",
    "ReactiveAgent",
    "create_default_registry",
]
