"""Provider-agnostic message, tool-call and result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` is the serialized JSON object exactly as the model produced it.
    """

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class Message:
    """Provider-agnostic chat message."""

    role: str  # "system" | "user" | "assistant" | "tool"
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role="system", content=text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", content=text)

    @classmethod
    def assistant(cls, text: str) -> "Message":
        return cls(role="assistant", content=text)

    @classmethod
    def assistant_tool_calls(cls, calls: List[ToolCall]) -> "Message":
        return cls(role="assistant", tool_calls=list(calls))

    @classmethod
    def tool_result(cls, call_id: str, name: str, content: str) -> "Message":
        return cls(role="tool", content=content, tool_call_id=call_id, name=name)


@dataclass
class ToolSchema:
    """Tool schema in OpenAI-compatible JSON Schema format."""

    name: str
    description: str
    parameters: Dict[str, Any]


@dataclass
class GenerationConfig:
    """Common generation settings passed to providers."""

    model: str = ""
    system_prompt: str = ""
    max_tokens: int = 4096
    temperature: Optional[float] = 0.0
    json_mode: bool = False
    reasoning_effort: Optional[str] = None


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> Dict[str, int]:
        return {"promptTokens": self.prompt_tokens, "completionTokens": self.completion_tokens}


@dataclass
class InvocationResult:
    """Normalized response from a provider.

    Exactly one of ``content`` and ``tool_calls`` is meaningful for a well
    formed reply; a reply with neither is rejected by the agent.
    """

    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    raw: Any = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"usage": self.usage.to_dict()}
        if self.content is not None:
            payload["content"] = self.content
        if self.tool_calls:
            payload["toolCalls"] = [call.to_dict() for call in self.tool_calls]
        return payload
