"""Anthropic provider implementation.

Differences from the OpenAI wire format handled here:
- The system prompt is a separate ``system`` parameter, not a message.
- Strict user/assistant alternation is required, so consecutive same-role
  messages are merged.
- Tool results are ``tool_result`` blocks inside a ``user`` message.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import anthropic

from ..errors import InvalidResponse, ProviderHTTPError
from ..retry import TransientError
from .types import (
    GenerationConfig,
    InvocationResult,
    Message,
    ToolCall,
    ToolSchema,
    Usage,
)

logger = logging.getLogger(__name__)

JSON_MODE_INSTRUCTION = "Respond with a single valid JSON value and nothing else."


def _build_tools(tools: Optional[List[ToolSchema]]) -> Optional[List[Dict[str, Any]]]:
    if not tools:
        return None
    return [
        {"name": t.name, "description": t.description, "input_schema": t.parameters}
        for t in tools
    ]


def _ensure_alternation(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Merge consecutive same-role messages to satisfy Anthropic's alternation rule."""
    merged: List[Dict[str, Any]] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev["content"] = _as_blocks(prev.get("content", "")) + _as_blocks(msg.get("content", ""))
        else:
            merged.append(dict(msg))
    return merged


def _as_blocks(content: Any) -> List[Dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return list(content)


def _parse_input(arguments: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class AnthropicProvider:
    """Anthropic Claude provider using the Messages API."""

    def __init__(self, api_key: str, api_base: str = "", client: Optional[Any] = None) -> None:
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key, base_url=api_base or None, max_retries=0
        )

    async def generate(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> InvocationResult:
        system, wire_messages = self._to_anthropic_messages(messages, config.system_prompt)
        if config.json_mode:
            system = f"{system}\n\n{JSON_MODE_INSTRUCTION}".strip()

        kwargs: Dict[str, Any] = {
            "model": config.model,
            "messages": wire_messages,
            "max_tokens": config.max_tokens or 4096,
        }
        if system:
            kwargs["system"] = system
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        anthropic_tools = _build_tools(tools)
        if anthropic_tools:
            kwargs["tools"] = anthropic_tools

        try:
            raw = await self.client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            raise ProviderHTTPError(e.status_code, e.message) from e
        except anthropic.APIConnectionError as e:
            raise TransientError(f"Connection error: {e}") from e

        return self._parse_response(raw)

    def _to_anthropic_messages(
        self, messages: List[Message], system_prompt: str
    ) -> "tuple[str, List[Dict[str, Any]]]":
        system_parts = [system_prompt] if system_prompt else []
        result: List[Dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content or "")
            elif msg.role == "tool":
                result.append(
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "tool_result",
                                "tool_use_id": msg.tool_call_id,
                                "content": msg.content or "",
                            }
                        ],
                    }
                )
            elif msg.tool_calls:
                blocks: List[Dict[str, Any]] = _as_blocks(msg.content or "")
                blocks.extend(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": _parse_input(call.arguments),
                    }
                    for call in msg.tool_calls
                )
                result.append({"role": "assistant", "content": blocks})
            else:
                result.append({"role": msg.role, "content": msg.content or ""})

        return "\n\n".join(p for p in system_parts if p), _ensure_alternation(result)

    def _parse_response(self, raw: Any) -> InvocationResult:
        content_blocks = getattr(raw, "content", None)
        if content_blocks is None:
            raise InvalidResponse("Empty LLM response: no content")

        text_parts: List[str] = []
        tool_calls: List[ToolCall] = []
        for block in content_blocks:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.id,
                        name=block.name,
                        arguments=json.dumps(
                            block.input if isinstance(block.input, dict) else {}, ensure_ascii=False
                        ),
                    )
                )

        usage = Usage()
        if getattr(raw, "usage", None):
            usage = Usage(
                prompt_tokens=getattr(raw.usage, "input_tokens", 0) or 0,
                completion_tokens=getattr(raw.usage, "output_tokens", 0) or 0,
            )

        return InvocationResult(
            content="\n".join(text_parts) if text_parts else None,
            tool_calls=tool_calls,
            usage=usage,
            raw=raw,
        )
