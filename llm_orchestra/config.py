"""Runtime configuration loading and validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .models import MODELS, PROVIDERS, REASONING_EFFORTS, ModelCard, ModelMetadata, ProviderMetadata, register_model
from .retry import RetryConfig

logger = logging.getLogger(__name__)


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ConfigError:
    """A single configuration issue."""
    field: str
    message: str
    severity: Severity


@dataclass
class ProviderSettings:
    api_key: str = ""
    api_base: str = ""
    max_concurrency: Optional[int] = None
    api_version: str = ""  # azure only


@dataclass
class SessionSettings:
    budget: Optional[float] = None
    max_concurrent_agents: Optional[int] = None


@dataclass
class RuntimeConfig:
    """Resolved runtime configuration."""
    providers: Dict[str, ProviderSettings] = field(default_factory=dict)
    retry: RetryConfig = field(default_factory=RetryConfig)
    session: SessionSettings = field(default_factory=SessionSettings)
    models: Dict[str, ModelMetadata] = field(default_factory=dict)


def resolve_api_key(provider: ProviderMetadata, api_key: str = "") -> str:
    """Resolve a key from config, expanding ``${VAR}``, falling back to the provider's env var.

    Returns an empty string when no key can be found.
    """
    api_key = api_key or ""
    if api_key and not api_key.startswith("${"):
        return api_key

    if api_key.startswith("${") and api_key.endswith("}"):
        resolved = os.environ.get(api_key[2:-1], "")
        if resolved:
            return resolved

    if provider.env_key:
        return os.environ.get(provider.env_key, "")
    return ""


def load_raw_config(config_path: str) -> Dict[str, Any]:
    """Load the raw configuration mapping from a YAML file."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must be a mapping: {path}")
    return data


def load_config(config_path: str) -> RuntimeConfig:
    """Load, validate and parse a YAML configuration file.

    Raises:
        ValueError: If validation reports any ERROR-level issue
    """
    raw = load_raw_config(config_path)
    issues = validate_config(raw)
    for issue in issues:
        if issue.severity == Severity.WARNING:
            logger.warning(f"Config {issue.field}: {issue.message}")
    if has_errors(issues):
        details = "; ".join(f"{i.field}: {i.message}" for i in issues if i.severity == Severity.ERROR)
        raise ValueError(f"Invalid configuration in {config_path}: {details}")
    return parse_config(raw)


def parse_config(raw: Dict[str, Any]) -> RuntimeConfig:
    """Build a RuntimeConfig from an already validated mapping.

    Custom models are registered so they resolve by id.
    """
    providers = {
        provider_id: ProviderSettings(
            api_key=resolve_api_key(PROVIDERS[provider_id], str(entry.get("api_key", "") or ""))
            if provider_id in PROVIDERS
            else str(entry.get("api_key", "") or ""),
            api_base=str(entry.get("api_base", "") or ""),
            max_concurrency=entry.get("max_concurrency"),
            api_version=str(entry.get("api_version", "") or ""),
        )
        for provider_id, entry in (raw.get("providers") or {}).items()
    }

    retry_raw = raw.get("retry") or {}
    defaults = RetryConfig()
    retry = RetryConfig(
        max_attempts=int(retry_raw.get("max_attempts", defaults.max_attempts)),
        base_delay=float(retry_raw.get("base_delay", defaults.base_delay)),
        max_delay=float(retry_raw.get("max_delay", defaults.max_delay)),
        exponential_base=float(retry_raw.get("exponential_base", defaults.exponential_base)),
        jitter_factor=float(retry_raw.get("jitter_factor", defaults.jitter_factor)),
    )

    session_raw = raw.get("session") or {}
    session = SessionSettings(
        budget=session_raw.get("budget"),
        max_concurrent_agents=session_raw.get("max_concurrent_agents"),
    )

    models: Dict[str, ModelMetadata] = {}
    for model_id, entry in (raw.get("models") or {}).items():
        meta = ModelMetadata(
            id=model_id,
            provider=PROVIDERS[entry["provider"]],
            card=ModelCard(
                checkpoint=entry.get("checkpoint", model_id),
                prompt=float(entry.get("prompt", 0.0)),
                completion=float(entry.get("completion", 0.0)),
                rpm=entry.get("rpm"),
                tpm=entry.get("tpm"),
                supports_reasoning=bool(entry.get("supports_reasoning", False)),
                default_reasoning_effort=entry.get("default_reasoning_effort"),
            ),
        )
        register_model(meta)
        models[model_id] = meta

    return RuntimeConfig(providers=providers, retry=retry, session=session, models=models)


def validate_config(raw_config: Dict[str, Any]) -> List[ConfigError]:
    """Validate raw configuration and return a list of issues.

    Args:
        raw_config: Raw config dict from YAML

    Returns:
        List of ConfigError (empty = valid)
    """
    errors: List[ConfigError] = []

    # --- Providers ---
    providers = raw_config.get("providers") or {}
    if not isinstance(providers, dict):
        errors.append(ConfigError("providers", "providers must be a mapping", Severity.ERROR))
        providers = {}
    for provider_id, entry in providers.items():
        name = f"providers.{provider_id}"
        if provider_id not in PROVIDERS:
            errors.append(ConfigError(name, f"Unknown provider: {provider_id}", Severity.ERROR))
            continue
        entry = entry or {}
        cap = entry.get("max_concurrency")
        if cap is not None and (not isinstance(cap, int) or isinstance(cap, bool) or cap <= 0):
            errors.append(ConfigError(
                f"{name}.max_concurrency",
                f"max_concurrency must be a positive integer, got {cap!r}",
                Severity.ERROR,
            ))
        meta = PROVIDERS[provider_id]
        if not resolve_api_key(meta, str(entry.get("api_key", "") or "")):
            errors.append(ConfigError(
                f"{name}.api_key",
                f"{meta.env_key or 'API key'} not set. Set the env var or add api_key to the config",
                Severity.WARNING,
            ))

    # --- Retry ---
    retry = raw_config.get("retry") or {}
    max_attempts = retry.get("max_attempts", 5)
    if not isinstance(max_attempts, int) or max_attempts < 1:
        errors.append(ConfigError(
            "retry.max_attempts",
            f"max_attempts must be a positive integer, got {max_attempts!r}",
            Severity.ERROR,
        ))
    for key in ("base_delay", "max_delay"):
        value = retry.get(key, 1.0)
        if not isinstance(value, (int, float)) or value < 0:
            errors.append(ConfigError(
                f"retry.{key}",
                f"{key} must be a non-negative number, got {value!r}",
                Severity.ERROR,
            ))

    # --- Session ---
    session = raw_config.get("session") or {}
    budget = session.get("budget")
    if budget is not None and (not isinstance(budget, (int, float)) or budget < 0):
        errors.append(ConfigError(
            "session.budget",
            f"budget must be a non-negative number, got {budget!r}",
            Severity.ERROR,
        ))
    max_agents = session.get("max_concurrent_agents")
    if max_agents is not None and (not isinstance(max_agents, int) or max_agents <= 0):
        errors.append(ConfigError(
            "session.max_concurrent_agents",
            f"max_concurrent_agents must be a positive integer, got {max_agents!r}",
            Severity.ERROR,
        ))

    # --- Models ---
    for model_id, entry in (raw_config.get("models") or {}).items():
        entry = entry or {}
        provider_id = entry.get("provider")
        if provider_id not in PROVIDERS:
            errors.append(ConfigError(
                f"models.{model_id}.provider",
                f"Model {model_id} points at unknown provider: {provider_id!r}",
                Severity.ERROR,
            ))
        for key in ("prompt", "completion"):
            price = entry.get(key, 0.0)
            if not isinstance(price, (int, float)) or price < 0:
                errors.append(ConfigError(
                    f"models.{model_id}.{key}",
                    f"{key} price must be a non-negative number, got {price!r}",
                    Severity.ERROR,
                ))
        for key in ("rpm", "tpm"):
            limit = entry.get(key)
            if limit is not None and (not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0):
                errors.append(ConfigError(
                    f"models.{model_id}.{key}",
                    f"{key} must be a positive integer, got {limit!r}",
                    Severity.ERROR,
                ))
        effort = entry.get("default_reasoning_effort")
        if effort is not None and effort not in REASONING_EFFORTS:
            errors.append(ConfigError(
                f"models.{model_id}.default_reasoning_effort",
                f"default_reasoning_effort must be one of {', '.join(REASONING_EFFORTS)}, got {effort!r}",
                Severity.ERROR,
            ))
        if model_id in MODELS:
            errors.append(ConfigError(
                f"models.{model_id}",
                f"Model {model_id} overrides a built-in model",
                Severity.WARNING,
            ))

    return errors


def has_errors(issues: List[ConfigError]) -> bool:
    """Check if any issues are errors (not just warnings)."""
    return any(e.severity == Severity.ERROR for e in issues)
