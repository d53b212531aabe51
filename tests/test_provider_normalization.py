"""Provider normalization regression tests."""

import json
from types import SimpleNamespace
from typing import List, Optional

import anthropic
import httpx
import openai
import pytest
from google.genai import types
from pydantic import BaseModel

from llm_orchestra.errors import InvalidResponse, MissingCredentials, ProviderHTTPError
from llm_orchestra.models import ProviderMetadata
from llm_orchestra.providers import create_provider
from llm_orchestra.providers.anthropic import AnthropicProvider
from llm_orchestra.providers.gemini import GeminiProvider
from llm_orchestra.providers.openai_compat import OpenAICompatibleProvider
from llm_orchestra.providers.types import GenerationConfig, Message, ToolCall, ToolSchema
from llm_orchestra.retry import TransientError
from llm_orchestra.tool import FunctionTool

HISTORY = [
    Message.user("read the resume"),
    Message.assistant_tool_calls([ToolCall("call_1", "file_read", '{"path":"a.md"}'), ToolCall("call_2", "ls", "{}")]),
    Message.tool_result("call_1", "file_read", "contents"),
    Message.tool_result("call_2", "ls", "a.md"),
]

SCHEMA = ToolSchema(
    name="file_read",
    description="Read a file",
    parameters={"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
)


def _request() -> httpx.Request:
    return httpx.Request("POST", "https://api.example.com/v1/chat")


class TestOpenAICompatible:
    def test_completion_normalizes_list_content_and_tool_calls(self):
        provider = OpenAICompatibleProvider(api_key="test-key", api_base="https://api.moonshot.cn/v1")

        completion = SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(
                        content=[
                            {"type": "text", "text": "hello "},
                            {"type": "text", "text": "world"},
                        ],
                        tool_calls=[
                            SimpleNamespace(
                                id="call_1",
                                function=SimpleNamespace(name="file_read", arguments='{"path":"resume.md"}'),
                            )
                        ],
                    )
                )
            ],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=20, total_tokens=30),
        )

        result = provider._from_openai_completion(completion)

        assert result.content == "hello world"
        assert result.tool_calls == [ToolCall("call_1", "file_read", '{"path":"resume.md"}')]
        assert result.usage.prompt_tokens == 10
        assert result.usage.completion_tokens == 20

    def test_empty_choices_rejected(self):
        provider = OpenAICompatibleProvider(api_key="test-key")
        with pytest.raises(InvalidResponse):
            provider._from_openai_completion(SimpleNamespace(choices=[], usage=None))

    def test_request_shape(self):
        provider = OpenAICompatibleProvider(api_key="test-key", api_base="https://api.moonshot.cn/v1")
        config = GenerationConfig(model="kimi-k2-turbo", system_prompt="sys", json_mode=True)
        kwargs = provider._build_chat_kwargs(
            provider._to_openai_messages(HISTORY, config.system_prompt),
            provider._to_openai_tools([SCHEMA]),
            config,
        )

        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["extra_body"] == {"thinking": {"type": "disabled"}}
        assert kwargs["tool_choice"] == "auto"
        messages = kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "sys"}
        assert [m["role"] for m in messages[1:]] == ["user", "assistant", "tool", "tool"]
        assert messages[2]["tool_calls"][1]["function"] == {"name": "ls", "arguments": "{}"}
        assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": "contents"}

    def test_reasoning_request_drops_temperature(self):
        provider = OpenAICompatibleProvider(api_key="test-key")
        config = GenerationConfig(model="o3-mini", max_tokens=2000, temperature=0.2, reasoning_effort="medium")
        kwargs = provider._build_chat_kwargs([{"role": "user", "content": "hi"}], None, config)
        assert kwargs["reasoning_effort"] == "medium"
        assert kwargs["max_completion_tokens"] == 2000
        assert "temperature" not in kwargs
        assert "max_tokens" not in kwargs

    def test_reasoning_effort_none_keeps_temperature(self):
        provider = OpenAICompatibleProvider(api_key="test-key")
        config = GenerationConfig(model="gpt-5", temperature=0.2, reasoning_effort="none")
        kwargs = provider._build_chat_kwargs([{"role": "user", "content": "hi"}], None, config)
        assert kwargs["reasoning_effort"] == "none"
        assert kwargs["temperature"] == 0.2

    def test_azure_client(self):
        meta = ProviderMetadata("azure", "azure", "", "AZURE_OPENAI_API_KEY", api_version="2024-08-01-preview")
        provider = create_provider(meta, "az-key", "https://acme.openai.azure.com")
        assert isinstance(provider, OpenAICompatibleProvider)
        assert isinstance(provider.client, openai.AsyncAzureOpenAI)
        assert provider.api_base == "https://acme.openai.azure.com"

    def test_azure_requires_endpoint(self):
        meta = ProviderMetadata("azure", "azure", "", "AZURE_OPENAI_API_KEY")
        with pytest.raises(MissingCredentials):
            create_provider(meta, "az-key")

    @pytest.mark.asyncio
    async def test_status_error_translated(self):
        async def create(**kwargs):
            raise openai.APIStatusError(
                "quota", response=httpx.Response(429, request=_request()), body={"code": "insufficient_quota"}
            )

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        provider = OpenAICompatibleProvider(api_key="test-key", client=client)
        with pytest.raises(ProviderHTTPError) as exc_info:
            await provider.generate([Message.user("hi")], None, GenerationConfig(model="gpt-4o"))
        assert exc_info.value.status_code == 429
        assert exc_info.value.code == "insufficient_quota"

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        async def create(**kwargs):
            raise openai.APIConnectionError(request=_request())

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        provider = OpenAICompatibleProvider(api_key="test-key", client=client)
        with pytest.raises(TransientError):
            await provider.generate([Message.user("hi")], None, GenerationConfig(model="gpt-4o"))


class TestGemini:
    def _provider(self) -> GeminiProvider:
        return GeminiProvider(api_key="test-key", client=SimpleNamespace())

    def test_function_calls_get_ids(self):
        response = types.GenerateContentResponse(
            candidates=[
                types.Candidate(
                    content=types.Content(
                        role="model",
                        parts=[types.Part(function_call=types.FunctionCall(name="file_read", args={"path": "a.md"}))],
                    )
                )
            ],
            usage_metadata=types.GenerateContentResponseUsageMetadata(
                prompt_token_count=7, candidates_token_count=3
            ),
        )

        result = self._provider()._from_gemini_response(response)

        assert result.content is None
        assert len(result.tool_calls) == 1
        call = result.tool_calls[0]
        assert call.id.startswith("call_")
        assert json.loads(call.arguments) == {"path": "a.md"}
        assert (result.usage.prompt_tokens, result.usage.completion_tokens) == (7, 3)

    def test_text_reply(self):
        response = types.GenerateContentResponse(
            candidates=[types.Candidate(content=types.Content(role="model", parts=[types.Part(text="hi")]))]
        )
        result = self._provider()._from_gemini_response(response)
        assert result.content == "hi"
        assert result.tool_calls == []

    def test_no_candidates(self):
        with pytest.raises(InvalidResponse):
            self._provider()._from_gemini_response(types.GenerateContentResponse(candidates=[]))

    def test_tool_results_share_one_turn(self):
        contents = self._provider()._to_gemini_contents(HISTORY)
        assert [c.role for c in contents] == ["user", "model", "user"]
        responses = [p.function_response for p in contents[2].parts]
        assert [r.name for r in responses] == ["file_read", "ls"]
        assert responses[0].response == {"result": "contents"}

    def test_tool_declaration(self):
        tools = self._provider()._to_gemini_tools([SCHEMA])
        declaration = tools[0].function_declarations[0]
        assert declaration.name == "file_read"
        assert declaration.parameters.required == ["path"]
        assert declaration.parameters.properties["path"].type == types.Type.STRING

    def test_nested_and_optional_fields(self):
        class Inner(BaseModel):
            column: str
            value: int

        class Query(BaseModel):
            where: Inner
            limit: Optional[int] = None
            tags: List[Inner] = []

        schema = FunctionTool("query", lambda agent, args: [], args_type=Query).describe()
        declaration = self._provider()._to_gemini_declaration(schema)
        props = declaration.parameters.properties

        assert props["where"].type == types.Type.OBJECT
        assert props["where"].properties["value"].type == types.Type.INTEGER
        assert props["where"].required == ["column", "value"]
        assert props["limit"].type == types.Type.INTEGER
        assert props["limit"].nullable is True
        assert props["tags"].items.type == types.Type.OBJECT
        assert declaration.parameters.required == ["where"]


class TestAnthropic:
    def _provider(self, client=None) -> AnthropicProvider:
        return AnthropicProvider(api_key="test-key", client=client or SimpleNamespace())

    def test_messages_alternate_and_carry_tool_results(self):
        system, messages = self._provider()._to_anthropic_messages(
            [Message.system("extra")] + HISTORY, "base"
        )
        assert system == "base\n\nextra"
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        tool_use = messages[1]["content"]
        assert tool_use[0] == {"type": "tool_use", "id": "call_1", "name": "file_read", "input": {"path": "a.md"}}
        results = messages[2]["content"]
        assert [b["tool_use_id"] for b in results] == ["call_1", "call_2"]

    def test_parse_response(self):
        raw = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="let me look"),
                SimpleNamespace(type="tool_use", id="toolu_1", name="file_read", input={"path": "a.md"}),
            ],
            usage=SimpleNamespace(input_tokens=11, output_tokens=4),
        )
        result = self._provider()._parse_response(raw)
        assert result.content == "let me look"
        assert result.tool_calls == [ToolCall("toolu_1", "file_read", '{"path": "a.md"}')]
        assert result.usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_json_mode_and_request(self):
        captured = {}

        async def create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(content=[SimpleNamespace(type="text", text="{}")], usage=None)

        provider = self._provider(SimpleNamespace(messages=SimpleNamespace(create=create)))
        result = await provider.generate(
            [Message.user("hi")],
            [SCHEMA],
            GenerationConfig(model="claude-3-5-haiku-latest", system_prompt="sys", json_mode=True),
        )
        assert result.content == "{}"
        assert captured["system"].startswith("sys\n\n")
        assert captured["tools"][0]["input_schema"] == SCHEMA.parameters
        assert captured["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_status_error_translated(self):
        async def create(**kwargs):
            raise anthropic.APIStatusError(
                "overloaded", response=httpx.Response(529, request=_request()), body=None
            )

        provider = self._provider(SimpleNamespace(messages=SimpleNamespace(create=create)))
        with pytest.raises(ProviderHTTPError) as exc_info:
            await provider.generate([Message.user("hi")], None, GenerationConfig(model="claude"))
        assert exc_info.value.status_code == 529
