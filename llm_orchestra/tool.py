"""Schema-validated tools callable by agents."""

from __future__ import annotations

import inspect
import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Union

import pydantic
from pydantic import TypeAdapter

from .errors import ValidationError
from .providers.types import ToolSchema

if TYPE_CHECKING:
    from .agent import Agent

TOOL_ERROR_MARKER = "TOOL ERROR:"

ToolFunc = Callable[["Agent", Any], Union[Any, Awaitable[Any]]]


def tool_error(message: str) -> str:
    """Format a tool-error result for the model."""
    return f"{TOOL_ERROR_MARKER} {message}"


class Tool(ABC):
    """Base class for all tools.

    Subclasses declare ``name``, ``description``, the argument type and the
    return type; both types are anything pydantic can build a validator for
    (a ``BaseModel``, a ``TypedDict``, a plain annotation). The argument type
    must describe a JSON object.
    """

    name: str
    description: str = ""
    args_type: Any = Dict[str, Any]
    returns_type: Any = Any

    def __init__(self) -> None:
        self._args_adapter = TypeAdapter(self.args_type)
        self._returns_adapter = TypeAdapter(self.returns_type)

    @abstractmethod
    async def execute(self, agent: "Agent", args: Any) -> Any:
        """Run the tool on validated arguments."""

    async def invoke(self, agent: "Agent", raw_args: Any) -> Any:
        """Validate ``raw_args``, execute, validate and return the result.

        Raises:
            ValidationError: Arguments or return value do not match the schema
        """
        try:
            if isinstance(raw_args, (str, bytes)):
                args = self._args_adapter.validate_json(raw_args)
            else:
                args = self._args_adapter.validate_python(raw_args)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid arguments for {self.name}: {e}", errors=e.errors()) from e

        result = await self.execute(agent, args)

        try:
            return self._returns_adapter.validate_python(result)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid return value from {self.name}: {e}", errors=e.errors()) from e

    def describe(self) -> ToolSchema:
        """Canonical schema descriptor used by provider request shaping."""
        parameters = self._args_adapter.json_schema()
        parameters.setdefault("type", "object")
        parameters.setdefault("properties", {})
        return ToolSchema(name=self.name, description=self.description, parameters=parameters)

    def output_schema(self) -> Dict[str, Any]:
        return self._returns_adapter.json_schema()

    def serialize(self, value: Any) -> str:
        """Render a validated result as the tool-result text sent to the model."""
        if isinstance(value, str):
            return value
        return json.dumps(self._returns_adapter.dump_python(value, mode="json"), ensure_ascii=False)


class FunctionTool(Tool):
    """Tool backed by a plain (sync or async) function ``func(agent, args)``."""

    def __init__(
        self,
        name: str,
        func: ToolFunc,
        description: str = "",
        args_type: Any = Dict[str, Any],
        returns_type: Any = Any,
    ) -> None:
        self.name = name
        self.description = description or (inspect.getdoc(func) or "")
        self.args_type = args_type
        self.returns_type = returns_type
        self.func = func
        super().__init__()

    async def execute(self, agent: "Agent", args: Any) -> Any:
        result = self.func(agent, args)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(
    args_type: Any,
    returns_type: Any = Any,
    name: Optional[str] = None,
    description: str = "",
) -> Callable[[ToolFunc], FunctionTool]:
    """Decorator turning a function into a FunctionTool."""

    def decorator(func: ToolFunc) -> FunctionTool:
        return FunctionTool(
            name=name or func.__name__,
            func=func,
            description=description,
            args_type=args_type,
            returns_type=returns_type,
        )

    return decorator
