"""llm_orchestra - runtime core for multi-agent LLM orchestration."""

__version__ = "0.1.0"

from .agent import Agent, AgentOptions, AgentState
from .agents import AgentRegistry, ChatAgent, OneShotAgent, PromptAgent, ReactiveAgent
from .config import RuntimeConfig, load_config
from .errors import (
    AlreadyResolved,
    BudgetExceeded,
    InvalidResponse,
    InvalidState,
    MissingCredentials,
    OrchestraError,
    OwnershipError,
    ProviderError,
    SessionAborted,
    ToolNotFound,
    UnknownCallId,
    ValidationError,
)
from .ledger import Ledger, LedgerEntry, TokenCount
from .models import ModelCard, ModelMetadata, ProviderMetadata, register_model, resolve_model_metadata
from .observability import configure_logging
from .providers import ProviderRouter
from .providers.types import InvocationResult, Message, ToolCall, Usage
from .runtime import Runtime
from .session import Session
from .thread import Exchange, Role, Thread
from .tool import FunctionTool, Tool, tool

__all__ = [
    "Agent",
    "AgentOptions",
    "AgentRegistry",
    "AgentState",
    "AlreadyResolved",
    "BudgetExceeded",
    "ChatAgent",
    "Exchange",
    "FunctionTool",
    "InvalidResponse",
    "InvalidState",
    "InvocationResult",
    "Ledger",
    "LedgerEntry",
    "Message",
    "MissingCredentials",
    "ModelCard",
    "ModelMetadata",
    "OneShotAgent",
    "OrchestraError",
    "OwnershipError",
    "PromptAgent",
    "ProviderError",
    "ProviderMetadata",
    "ProviderRouter",
    "ReactiveAgent",
    "Role",
    "Runtime",
    "RuntimeConfig",
    "Session",
    "SessionAborted",
    "Thread",
    "TokenCount",
    "Tool",
    "ToolCall",
    "ToolNotFound",
    "UnknownCallId",
    "Usage",
    "ValidationError",
    "configure_logging",
    "load_config",
    "register_model",
    "resolve_model_metadata",
    "tool",
]
