"""Global pytest fixtures for deterministic test environment."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, List, Optional, Union

import pytest

from llm_orchestra.providers.router import ProviderRouter
from llm_orchestra.providers.types import GenerationConfig, InvocationResult, Message, ToolCall, ToolSchema, Usage
from llm_orchestra.retry import RetryConfig
from llm_orchestra.session import Session


@pytest.fixture(autouse=True)
def _isolate_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear provider credentials that can leak into tests on developer machines."""
    for key in (
        "OPENAI_API_KEY",
        "GEMINI_API_KEY",
        "ANTHROPIC_API_KEY",
        "DEEPSEEK_API_KEY",
        "KIMI_API_KEY",
        "GLM_API_KEY",
        "AZURE_OPENAI_API_KEY",
        "AZURE_OPENAI_ENDPOINT",
    ):
        monkeypatch.delenv(key, raising=False)


class StubProvider:
    """Provider returning scripted results and recording every request."""

    def __init__(self) -> None:
        self.script: List[Union[InvocationResult, BaseException]] = []
        self.requests: List[SimpleNamespace] = []

    def queue_text(self, text: Optional[str], prompt_tokens: int = 10, completion_tokens: int = 5) -> "StubProvider":
        self.script.append(InvocationResult(content=text, usage=Usage(prompt_tokens, completion_tokens)))
        return self

    def queue_tool_calls(self, *calls: Any, prompt_tokens: int = 10, completion_tokens: int = 5) -> "StubProvider":
        """Queue a tool-calls reply; each call is an ``(id, name, arguments)`` tuple."""
        self.script.append(
            InvocationResult(
                tool_calls=[ToolCall(id=c[0], name=c[1], arguments=c[2] if len(c) > 2 else "{}") for c in calls],
                usage=Usage(prompt_tokens, completion_tokens),
            )
        )
        return self

    def queue_error(self, error: BaseException) -> "StubProvider":
        self.script.append(error)
        return self

    async def generate(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> InvocationResult:
        self.requests.append(SimpleNamespace(messages=list(messages), tools=tools, config=config))
        if not self.script:
            raise AssertionError("StubProvider script exhausted")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter_factor=0.0)


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def router(stub_provider: StubProvider, fast_retry: RetryConfig) -> ProviderRouter:
    router = ProviderRouter(retry_config=fast_retry)
    router.register("openai", stub_provider)
    return router


@pytest.fixture
def session(router: ProviderRouter) -> Session:
    return Session(router)
