"""Boundary request/response contracts."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .session import SessionReport


class _Contract(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SpawnRequest(_Contract):
    type: str = Field(min_length=1, description="Registered agent type, as namespace/name")
    options: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0, description="Max seconds between heartbeats")


class SessionSummary(_Contract):
    cost: float
    elapsed: float
    ended: bool
    tokens_per_model: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    tokens_per_agent: Dict[str, Dict[str, int]] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: SessionReport) -> "SessionSummary":
        return cls(
            cost=report.cost,
            elapsed=report.elapsed,
            ended=report.ended,
            tokens_per_model={k: v.to_dict() for k, v in report.tokens_per_model.items()},
            tokens_per_agent={k: v.to_dict() for k, v in report.tokens_per_agent.items()},
        )


class SessionStatus(SessionSummary):
    id: str
    exchanges: int

    @classmethod
    def from_session(cls, session_id: str, report: SessionReport) -> "SessionStatus":
        summary = SessionSummary.from_report(report)
        return cls(id=session_id, exchanges=report.exchanges, **summary.model_dump())


class SpawnResponse(_Contract):
    success: bool
    result: Any = None
    session: Optional[SessionSummary] = None
    error: Optional[str] = None
    trace: Optional[str] = None


class StatusResponse(_Contract):
    sessions: List[SessionStatus] = Field(default_factory=list)
