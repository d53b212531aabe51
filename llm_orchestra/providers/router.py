"""Routes model invocations to per-provider clients with retry and concurrency caps."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import threading
from typing import Dict, List, Optional

from ..config import ProviderSettings, resolve_api_key
from ..errors import MissingCredentials, ProviderError
from ..models import ModelMetadata
from ..retry import PermanentError, RetriesExhausted, RetryConfig, retry_with_backoff
from .base import ChatProvider
from .ratelimit import RateLimiter, estimate_tokens
from .types import GenerationConfig, InvocationResult, Message, ToolSchema

logger = logging.getLogger(__name__)


class ProviderRouter:
    """
    Holds one client per provider id and dispatches normalized requests.

    Clients are created lazily on first use and shared by every session in
    the process. Each provider may carry a concurrency cap; unconfigured
    providers are unbounded.
    """

    def __init__(
        self,
        providers: Optional[Dict[str, ProviderSettings]] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.providers: Dict[str, ProviderSettings] = dict(providers or {})
        self.retry_config = retry_config or RetryConfig()
        self._clients: Dict[str, ChatProvider] = {}
        self._limits: Dict[str, asyncio.Semaphore] = {}
        self._rate_limits: Dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    def register(self, provider_id: str, client: ChatProvider, max_concurrency: Optional[int] = None) -> None:
        """Install a ready-made client for a provider, bypassing credential lookup."""
        with self._lock:
            self._clients[provider_id] = client
            if max_concurrency:
                self._limits[provider_id] = asyncio.Semaphore(max_concurrency)
        logger.info(f"Registered client for provider: {provider_id}")

    def has_client(self, provider_id: str) -> bool:
        return provider_id in self._clients

    def client_for(self, model: ModelMetadata) -> ChatProvider:
        """Return the shared client for the model's provider.

        Raises:
            MissingCredentials: If the provider has no client and no API key.
        """
        provider_id = model.provider.id
        with self._lock:
            client = self._clients.get(provider_id)
            if client is None:
                client = self._create_client(model)
                self._clients[provider_id] = client
            return client

    def _create_client(self, model: ModelMetadata) -> ChatProvider:
        from . import create_provider

        provider = model.provider
        settings = self.providers.get(provider.id, ProviderSettings())
        api_key = resolve_api_key(provider, settings.api_key)
        if not api_key:
            hint = f" (set {provider.env_key})" if provider.env_key else ""
            raise MissingCredentials(f"No API key configured for provider '{provider.id}'{hint}")

        if settings.max_concurrency and provider.id not in self._limits:
            self._limits[provider.id] = asyncio.Semaphore(settings.max_concurrency)
        logger.info(f"Creating {provider.client_type} client for provider: {provider.id}")
        return create_provider(provider, api_key, settings.api_base, settings.api_version)

    async def dispatch(
        self,
        model: ModelMetadata,
        messages: List[Message],
        tools: Optional[List[ToolSchema]] = None,
        config: Optional[GenerationConfig] = None,
    ) -> InvocationResult:
        """
        Send one request to the model's provider and return the normalized result.

        Transient failures (network errors, 429, 5xx) are retried with bounded
        exponential backoff; any other HTTP error fails on the first attempt.

        Raises:
            MissingCredentials: No key or client for the provider
            ProviderError: Retries exhausted or a non-retryable failure
        """
        client = self.client_for(model)
        request_config = self._request_config(model, config)
        provider_id = model.provider.id
        rate_limit = self.rate_limiter_for(model)
        reserved = estimate_tokens(messages) if rate_limit is not None else 0

        async def attempt() -> InvocationResult:
            if rate_limit is not None:
                await rate_limit.acquire(reserved)
            limit = self._limits.get(provider_id)
            async with limit if limit is not None else contextlib.nullcontext():
                result = await client.generate(messages, tools, request_config)
            if rate_limit is not None:
                rate_limit.settle(reserved, result.usage.total_tokens)
            return result

        try:
            return await retry_with_backoff(attempt, self.retry_config)
        except PermanentError as e:
            raise ProviderError(
                f"{provider_id} request failed: {e}",
                provider=provider_id,
                status_code=e.status_code,
                attempts=e.attempts,
            ) from e
        except RetriesExhausted as e:
            raise ProviderError(
                f"{provider_id} request failed after {e.attempts} attempts: {e}",
                provider=provider_id,
                status_code=e.status_code,
                attempts=e.attempts,
            ) from e

    def rate_limiter_for(self, model: ModelMetadata) -> Optional[RateLimiter]:
        """Shared limiter for a model whose card sets ``rpm`` or ``tpm``."""
        card = model.card
        if not card.rpm and not card.tpm:
            return None
        with self._lock:
            limiter = self._rate_limits.get(model.id)
            if limiter is None:
                limiter = RateLimiter(card.rpm, card.tpm)
                self._rate_limits[model.id] = limiter
            return limiter

    @staticmethod
    def _request_config(model: ModelMetadata, config: Optional[GenerationConfig]) -> GenerationConfig:
        config = config or GenerationConfig()
        card = model.card
        effort = None
        if card.supports_reasoning:
            effort = config.reasoning_effort or card.default_reasoning_effort or "none"
        return dataclasses.replace(config, model=card.checkpoint, reasoning_effort=effort)
