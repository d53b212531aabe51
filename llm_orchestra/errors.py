"""Exception hierarchy for the orchestration runtime."""

from __future__ import annotations

from typing import Any, Dict, Optional


class OrchestraError(Exception):
    """Base class for every error raised by llm_orchestra."""


class InvalidState(OrchestraError):
    """An operation was attempted in a state that does not allow it."""


class OwnershipError(InvalidState):
    """A thread or agent was operated on by something that does not own it."""


class UnknownCallId(InvalidState):
    """A tool result references a call id that was never issued."""


class AlreadyResolved(InvalidState):
    """A tool result was appended twice for the same call id."""


class SessionAborted(InvalidState):
    """The session has been aborted and accepts no new agents."""


class ToolNotFound(OrchestraError):
    """The model asked for a tool the agent does not have."""


class ValidationError(OrchestraError):
    """Tool input or output failed schema validation."""

    def __init__(self, message: str, errors: Optional[list] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class InvalidResponse(OrchestraError):
    """A normalized model response carried neither text nor tool calls."""


class MissingCredentials(OrchestraError):
    """No API key or client is configured for a provider."""


class ProviderHTTPError(Exception):
    """Vendor API answered with an HTTP error status.

    Raised by provider clients, consumed by the router's retry policy.
    """

    def __init__(self, status_code: int, message: str, code: Optional[str] = None) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.code = code


class ProviderError(OrchestraError):
    """Terminal model invocation failure."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: Optional[int] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": str(self),
            "provider": self.provider,
            "status_code": self.status_code,
            "attempts": self.attempts,
        }


class BudgetExceeded(OrchestraError):
    """The session spent its budget."""


class UnknownModel(OrchestraError):
    """Model id is neither built in nor registered."""


class UnknownAgentType(OrchestraError):
    """No agent constructor is registered under the requested name."""


class AgentTimeout(OrchestraError):
    """An agent stopped sending heartbeats for longer than allowed."""
