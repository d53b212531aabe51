"""Agent registry: maps ``namespace/name`` to agent constructors."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Type

from ..errors import UnknownAgentType

if TYPE_CHECKING:
    from ..agent import Agent

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Central registry of spawnable agent types.

    Example:
        registry = AgentRegistry()
        registry.register("builtin", "prompt", PromptAgent)

        ctor = registry.get("builtin/prompt")
    """

    def __init__(self) -> None:
        self._constructors: Dict[str, Type[Agent]] = {}

    @staticmethod
    def key(namespace: str, name: str) -> str:
        return f"{namespace}/{name}"

    def register(self, namespace: str, name: str, constructor: Type["Agent"]) -> None:
        """Register an agent constructor.

        Raises:
            ValueError: If the name is already taken
        """
        key = self.key(namespace, name)
        if key in self._constructors:
            raise ValueError(f"Agent type '{key}' is already registered")
        self._constructors[key] = constructor
        logger.info(f"Registered agent type '{key}' -> {constructor.__name__}")

    def unregister(self, namespace: str, name: str) -> None:
        self._constructors.pop(self.key(namespace, name), None)

    def get(self, name: str) -> Type["Agent"]:
        """Look up a constructor by ``namespace/name``.

        Raises:
            UnknownAgentType: If nothing is registered under that name
        """
        try:
            return self._constructors[name]
        except KeyError:
            raise UnknownAgentType(f"Unknown agent type: {name}") from None

    def has(self, namespace: str, name: str) -> bool:
        return self.key(namespace, name) in self._constructors

    def list(self) -> List[str]:
        return sorted(self._constructors)

    def __len__(self) -> int:
        return len(self._constructors)
