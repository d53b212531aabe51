"""OpenAI and OpenAI-compatible provider implementation."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from ..errors import InvalidResponse, ProviderHTTPError
from ..models import DEFAULT_AZURE_API_VERSION
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


class OpenAICompatibleProvider:
    """Provider for OpenAI-compatible chat APIs (OpenAI, Azure OpenAI, DeepSeek, Kimi, GLM)."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "",
        client: Optional[Any] = None,
    ) -> None:
        self.api_base = api_base or ""
        # Retries belong to the router; the SDK must not retry on its own.
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=api_base or None, max_retries=0)

    @classmethod
    def azure(cls, api_key: str, endpoint: str = "", api_version: str = "") -> "OpenAICompatibleProvider":
        """Azure OpenAI deployment. The request model is the deployment name.

        With no endpoint the SDK reads ``AZURE_OPENAI_ENDPOINT``.
        """
        client = AsyncAzureOpenAI(
            api_key=api_key,
            azure_endpoint=endpoint or None,
            api_version=api_version or DEFAULT_AZURE_API_VERSION,
            max_retries=0,
        )
        return cls(api_key=api_key, api_base=endpoint, client=client)

    async def generate(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> InvocationResult:
        kwargs = self._build_chat_kwargs(
            messages=self._to_openai_messages(messages, config.system_prompt),
            tools=self._to_openai_tools(tools),
            config=config,
        )
        try:
            completion = await self.client.chat.completions.create(**kwargs)
        except openai.APIStatusError as e:
            raise ProviderHTTPError(e.status_code, e.message, getattr(e, "code", None)) from e
        except openai.APIConnectionError as e:
            raise TransientError(f"Connection error: {e}") from e

        return self._from_openai_completion(completion)

    def _build_chat_kwargs(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        config: GenerationConfig,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": config.model,
            "messages": messages,
        }
        effort = config.reasoning_effort
        if config.max_tokens and config.max_tokens > 0:
            # Reasoning models reject max_tokens.
            kwargs["max_completion_tokens" if effort else "max_tokens"] = config.max_tokens
        if effort:
            kwargs["reasoning_effort"] = effort
        if config.temperature is not None and effort in (None, "none"):
            kwargs["temperature"] = config.temperature
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if config.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        extra_body = self._build_extra_body(config.model)
        if extra_body:
            kwargs["extra_body"] = extra_body
        return kwargs

    def _build_extra_body(self, model: str) -> Optional[Dict[str, Any]]:
        # Moonshot Kimi K2: disable thinking mode for stable multi-turn tool calling.
        if "moonshot.cn" in self.api_base.lower() and (model or "").lower().startswith("kimi-k2"):
            return {"thinking": {"type": "disabled"}}
        return None

    def _to_openai_messages(self, messages: List[Message], system_prompt: str) -> List[Dict[str, Any]]:
        result: List[Dict[str, Any]] = []
        if system_prompt:
            result.append({"role": "system", "content": system_prompt})

        for msg in messages:
            if msg.role == "tool":
                result.append(
                    {
                        "role": "tool",
                        "tool_call_id": msg.tool_call_id,
                        "content": msg.content or "",
                    }
                )
                continue

            message: Dict[str, Any] = {"role": msg.role, "content": msg.content}
            if msg.tool_calls:
                message["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in msg.tool_calls
                ]
            elif message["content"] is None:
                message["content"] = ""
            result.append(message)

        return result

    def _to_openai_tools(self, tools: Optional[List[ToolSchema]]) -> Optional[List[Dict[str, Any]]]:
        if not tools:
            return None
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def _from_openai_completion(self, completion: Any) -> InvocationResult:
        if not getattr(completion, "choices", None):
            raise InvalidResponse("Empty LLM response: no choices")

        message = completion.choices[0].message
        tool_calls: List[ToolCall] = []
        for call in getattr(message, "tool_calls", None) or []:
            function = getattr(call, "function", None)
            if function is None:
                continue
            tool_calls.append(
                ToolCall(
                    id=getattr(call, "id", None) or f"call_{uuid.uuid4().hex[:12]}",
                    name=getattr(function, "name", "") or "",
                    arguments=self._normalize_arguments(getattr(function, "arguments", None)),
                )
            )

        usage_data = getattr(completion, "usage", None)
        usage = Usage(
            prompt_tokens=int(getattr(usage_data, "prompt_tokens", 0) or 0),
            completion_tokens=int(getattr(usage_data, "completion_tokens", 0) or 0),
        )

        return InvocationResult(
            content=self._normalize_message_content(getattr(message, "content", None)),
            tool_calls=tool_calls,
            usage=usage,
            raw=completion,
        )

    def _normalize_message_content(self, content: Any) -> Optional[str]:
        if content is None:
            return None
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(self._extract_text_from_content_item(item) for item in content)
        return str(content)

    def _extract_text_from_content_item(self, item: Any) -> str:
        if item is None:
            return ""
        if isinstance(item, str):
            return item
        if isinstance(item, dict):
            return str(item.get("text", "") or "")
        return str(getattr(item, "text", "") or "")

    def _normalize_arguments(self, arguments: Any) -> str:
        if not arguments:
            return "{}"
        if isinstance(arguments, dict):
            return json.dumps(arguments, ensure_ascii=False)
        return str(arguments)
