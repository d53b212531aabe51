"""Provider and model metadata with price tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

from .errors import UnknownModel

logger = logging.getLogger(__name__)

CLIENT_TYPES = ("openai", "azure", "google", "anthropic")

REASONING_EFFORTS = ("none", "minimal", "low", "medium", "high")

DEFAULT_AZURE_API_VERSION = "2024-08-01-preview"


@dataclass(frozen=True)
class ProviderMetadata:
    """Where and how a provider is reached."""

    id: str
    client_type: str  # "openai" | "azure" | "google" | "anthropic"
    url: str = ""
    env_key: str = ""
    api_version: str = ""  # azure only


@dataclass(frozen=True)
class ModelCard:
    """Static description of a model checkpoint. Prices are USD per 1M tokens.

    ``rpm`` / ``tpm`` throttle requests and tokens per minute for this model
    in the router. Reasoning-capable models get ``reasoning_effort`` on every
    request, defaulting to ``default_reasoning_effort`` or "none".
    """

    checkpoint: str
    prompt: float
    completion: float
    rpm: Optional[int] = None
    tpm: Optional[int] = None
    supports_reasoning: bool = False
    default_reasoning_effort: Optional[str] = None


@dataclass(frozen=True)
class ModelMetadata:
    id: str
    provider: ProviderMetadata
    card: ModelCard

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Cost in USD of one invocation with the given token counts."""
        return (
            prompt_tokens / 1e6 * self.card.prompt
            + completion_tokens / 1e6 * self.card.completion
        )


PROVIDERS: Dict[str, ProviderMetadata] = {
    "openai": ProviderMetadata("openai", "openai", "https://api.openai.com/v1", "OPENAI_API_KEY"),
    "azure": ProviderMetadata("azure", "azure", "", "AZURE_OPENAI_API_KEY", api_version=DEFAULT_AZURE_API_VERSION),
    "google": ProviderMetadata("google", "google", "", "GEMINI_API_KEY"),
    "anthropic": ProviderMetadata("anthropic", "anthropic", "https://api.anthropic.com", "ANTHROPIC_API_KEY"),
    "deepseek": ProviderMetadata("deepseek", "openai", "https://api.deepseek.com", "DEEPSEEK_API_KEY"),
    "kimi": ProviderMetadata("kimi", "openai", "https://api.moonshot.cn/v1", "KIMI_API_KEY"),
    "glm": ProviderMetadata("glm", "openai", "https://open.bigmodel.cn/api/paas/v4", "GLM_API_KEY"),
}

_BUILTIN_MODELS = [
    ("gpt-4o", "openai", ModelCard("gpt-4o", 2.5, 10.0)),
    ("gpt-4o-mini", "openai", ModelCard("gpt-4o-mini", 0.15, 0.6)),
    ("o3-mini", "openai", ModelCard("o3-mini", 1.1, 4.4, supports_reasoning=True, default_reasoning_effort="medium")),
    ("gpt-5", "openai", ModelCard("gpt-5", 1.25, 10.0, supports_reasoning=True, default_reasoning_effort="medium")),
    ("gpt-5-mini", "openai", ModelCard("gpt-5-mini", 0.25, 2.0, supports_reasoning=True, default_reasoning_effort="medium")),
    ("gemini-2.5-flash", "google", ModelCard("gemini-2.5-flash", 0.30, 2.50)),
    ("gemini-2.0-flash", "google", ModelCard("gemini-2.0-flash", 0.1, 0.4)),
    ("claude-3-5-haiku", "anthropic", ModelCard("claude-3-5-haiku-latest", 0.8, 4.0)),
    ("claude-sonnet-4", "anthropic", ModelCard("claude-sonnet-4-20250514", 3.0, 15.0)),
    ("deepseek-chat", "deepseek", ModelCard("deepseek-chat", 0.27, 1.1)),
]

MODELS: Dict[str, ModelMetadata] = {
    model_id: ModelMetadata(model_id, PROVIDERS[provider_id], card)
    for model_id, provider_id, card in _BUILTIN_MODELS
}


def get_provider(provider_id: str) -> ProviderMetadata:
    try:
        return PROVIDERS[provider_id]
    except KeyError:
        raise UnknownModel(f"Unknown provider: {provider_id}") from None


def register_provider(provider: ProviderMetadata) -> None:
    if provider.client_type not in CLIENT_TYPES:
        raise ValueError(f"Unsupported client type: {provider.client_type}")
    PROVIDERS[provider.id] = provider
    logger.info(f"Registered provider: {provider.id} ({provider.client_type})")


def register_model(meta: ModelMetadata) -> None:
    """Make a custom model resolvable by id."""
    MODELS[meta.id] = meta
    logger.info(f"Registered model: {meta.id} -> {meta.provider.id}/{meta.card.checkpoint}")


def resolve_model_metadata(model: Union[str, ModelMetadata]) -> ModelMetadata:
    """Accept a ModelMetadata as-is or look up a built-in/registered model id."""
    if isinstance(model, ModelMetadata):
        return model
    meta = MODELS.get(model)
    if meta is None:
        raise UnknownModel(f"Unknown model: {model}")
    return meta
