"""Gemini provider implementation."""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional, Tuple, cast

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

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


class GeminiProvider:
    """Google Gemini provider using google-genai SDK."""

    def __init__(self, api_key: str, client: Optional[Any] = None) -> None:
        self.client = client or genai.Client(api_key=api_key)

    async def generate(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> InvocationResult:
        contents = self._to_gemini_contents(messages)
        gemini_tools = self._to_gemini_tools(tools)

        try:
            response = await asyncio.to_thread(
                self.client.models.generate_content,
                model=config.model,
                contents=contents,
                config=types.GenerateContentConfig(
                    system_instruction=config.system_prompt if config.system_prompt else None,
                    tools=cast(Any, gemini_tools),
                    max_output_tokens=config.max_tokens,
                    temperature=config.temperature,
                    response_mime_type="application/json" if config.json_mode else None,
                ),
            )
        except genai_errors.APIError as e:
            raise ProviderHTTPError(int(e.code or 500), str(e.message or e), e.status) from e
        except httpx.TransportError as e:
            raise TransientError(f"Connection error: {e}") from e

        return self._from_gemini_response(response)

    def _from_gemini_response(self, response: Any) -> InvocationResult:
        if not response.candidates:
            raise InvalidResponse("Empty LLM response: no candidates")

        candidate = response.candidates[0]
        parts = candidate.content.parts if candidate.content else []
        tool_calls: List[ToolCall] = []
        text_parts: List[str] = []

        for part in parts or []:
            if part.function_call:
                call = part.function_call
                tool_calls.append(
                    ToolCall(
                        # Gemini only sometimes assigns call ids.
                        id=getattr(call, "id", None) or f"call_{uuid.uuid4().hex[:12]}",
                        name=call.name,
                        arguments=json.dumps(dict(call.args) if call.args else {}, ensure_ascii=False),
                    )
                )
            elif part.text:
                text_parts.append(part.text)

        usage_data = getattr(response, "usage_metadata", None)
        usage = Usage(
            prompt_tokens=int(getattr(usage_data, "prompt_token_count", 0) or 0),
            completion_tokens=int(getattr(usage_data, "candidates_token_count", 0) or 0),
        )

        return InvocationResult(
            content="".join(text_parts) if text_parts else None,
            tool_calls=tool_calls,
            usage=usage,
            raw=response,
        )

    def _to_gemini_contents(self, messages: List[Message]) -> List[types.Content]:
        contents: List[types.Content] = []
        for msg in messages:
            role = msg.role
            if role == "assistant":
                role = "model"
            elif role in ("tool", "system"):
                role = "user"

            parts: List[types.Part] = []
            if msg.role == "tool":
                parts.append(
                    types.Part.from_function_response(
                        name=msg.name or "",
                        response={"result": msg.content or ""},
                    )
                )
            else:
                if msg.content:
                    parts.append(types.Part.from_text(text=msg.content))
                for call in msg.tool_calls:
                    parts.append(
                        types.Part.from_function_call(
                            name=call.name,
                            args=_parse_arguments(call.arguments),
                        )
                    )

            # Function responses for one batch travel together in a single turn.
            if contents and contents[-1].role == role and msg.role == "tool":
                contents[-1].parts.extend(parts)
            else:
                contents.append(types.Content(role=role, parts=parts))
        return contents

    def _to_gemini_tools(self, tools: Optional[List[ToolSchema]]) -> Optional[List[types.Tool]]:
        if not tools:
            return None
        declarations = [self._to_gemini_declaration(tool) for tool in tools]
        return [types.Tool(function_declarations=declarations)]

    def _to_gemini_declaration(self, tool: ToolSchema) -> types.FunctionDeclaration:
        properties: Dict[str, types.Schema] = {}
        required = tool.parameters.get("required", [])
        defs = tool.parameters.get("$defs") or {}

        for prop_name, prop_def in tool.parameters.get("properties", {}).items():
            properties[prop_name] = self._to_gemini_schema(prop_def or {}, defs)

        return types.FunctionDeclaration(
            name=tool.name,
            description=tool.description,
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties=properties,
                required=required,
            ),
        )

    def _to_gemini_schema(self, schema_def: Dict[str, Any], defs: Optional[Dict[str, Any]] = None) -> types.Schema:
        defs = defs or {}
        schema_def, nullable = _unwrap_schema(schema_def, defs)
        type_name = str(schema_def.get("type", "string") or "string").lower()
        type_map = {
            "string": types.Type.STRING,
            "integer": types.Type.INTEGER,
            "number": types.Type.NUMBER,
            "boolean": types.Type.BOOLEAN,
            "object": types.Type.OBJECT,
            "array": types.Type.ARRAY,
        }
        gemini_type = type_map.get(type_name, types.Type.STRING)

        kwargs: Dict[str, Any] = {
            "type": gemini_type,
            "description": schema_def.get("description", schema_def.get("title", "")),
        }
        if nullable:
            kwargs["nullable"] = True

        enum_values = schema_def.get("enum")
        if isinstance(enum_values, list) and enum_values:
            kwargs["enum"] = [str(v) for v in enum_values]

        if gemini_type == types.Type.OBJECT:
            kwargs["properties"] = {
                name: self._to_gemini_schema(prop_def, defs)
                for name, prop_def in (schema_def.get("properties") or {}).items()
                if isinstance(prop_def, dict)
            }
            required = schema_def.get("required")
            if isinstance(required, list) and required:
                kwargs["required"] = required

        if gemini_type == types.Type.ARRAY:
            items = schema_def.get("items")
            if isinstance(items, dict):
                kwargs["items"] = self._to_gemini_schema(items, defs)

        return types.Schema(**kwargs)


def _unwrap_schema(schema_def: Dict[str, Any], defs: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """Resolve ``$ref``, single-member ``allOf`` and ``anyOf [T, null]`` into one plain schema.

    Keys set beside the wrapper (description, title) win over the target's.
    """
    nullable = False
    while True:
        outer = {k: v for k, v in schema_def.items() if k not in ("$ref", "allOf", "anyOf", "oneOf")}
        ref = schema_def.get("$ref")
        if isinstance(ref, str):
            target = defs.get(ref.rsplit("/", 1)[-1])
            if not isinstance(target, dict):
                return outer, nullable
            schema_def = {**target, **outer}
            continue

        all_of = schema_def.get("allOf")
        if isinstance(all_of, list) and len(all_of) == 1 and isinstance(all_of[0], dict):
            schema_def = {**all_of[0], **outer}
            continue

        any_of = schema_def.get("anyOf", schema_def.get("oneOf"))
        if isinstance(any_of, list) and any_of:
            members = [m for m in any_of if isinstance(m, dict) and m.get("type") != "null"]
            nullable = nullable or len(members) < len(any_of)
            if not members:
                return outer, nullable
            # Gemini has no unions; the first non-null member stands in.
            schema_def = {**members[0], **outer}
            continue

        return schema_def, nullable


def _parse_arguments(arguments: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
