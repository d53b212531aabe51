"""Provider factory and canonical provider types."""

from __future__ import annotations

import os

from ..config import resolve_api_key
from ..errors import MissingCredentials
from ..models import ProviderMetadata
from .anthropic import AnthropicProvider
from .base import ChatProvider
from .gemini import GeminiProvider
from .openai_compat import OpenAICompatibleProvider
from .router import ProviderRouter
from .types import GenerationConfig, InvocationResult, Message, ToolCall, ToolSchema, Usage


def create_provider(
    provider: ProviderMetadata, api_key: str, api_base: str = "", api_version: str = ""
) -> ChatProvider:
    """Build the vendor client for a provider from its client type."""
    if not api_key:
        raise MissingCredentials(f"No API key configured for provider '{provider.id}'")

    base = api_base or provider.url
    if provider.client_type == "google":
        return GeminiProvider(api_key=api_key)
    if provider.client_type == "anthropic":
        return AnthropicProvider(api_key=api_key, api_base=base)
    if provider.client_type == "azure":
        if not base and not os.environ.get("AZURE_OPENAI_ENDPOINT"):
            raise MissingCredentials(f"No endpoint configured for Azure provider '{provider.id}' (set api_base)")
        return OpenAICompatibleProvider.azure(api_key, base, api_version or provider.api_version)
    return OpenAICompatibleProvider(api_key=api_key, api_base=base)


__all__ = [
    "AnthropicProvider",
    "ChatProvider",
    "GeminiProvider",
    "GenerationConfig",
    "InvocationResult",
    "Message",
    "OpenAICompatibleProvider",
    "ProviderRouter",
    "ToolCall",
    "ToolSchema",
    "Usage",
    "create_provider",
    "resolve_api_key",
]
