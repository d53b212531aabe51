"""Provider protocol definition."""

from __future__ import annotations

from typing import List, Optional, Protocol

from .types import GenerationConfig, InvocationResult, Message, ToolSchema


class ChatProvider(Protocol):
    """Protocol for provider implementations.

    Implementations translate vendor failures into ``ProviderHTTPError`` or
    ``TransientError`` and never retry on their own.
    """

    async def generate(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> InvocationResult: ...
