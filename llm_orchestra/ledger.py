"""Append-only token and cost accounting."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .models import ModelMetadata
from .providers.types import Usage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenCount:
    prompt: int = 0
    completion: int = 0

    @property
    def total(self) -> int:
        return self.prompt + self.completion

    def __add__(self, other: "TokenCount") -> "TokenCount":
        return TokenCount(self.prompt + other.prompt, self.completion + other.completion)

    def to_dict(self) -> Dict[str, int]:
        return {"prompt": self.prompt, "completion": self.completion, "total": self.total}


@dataclass(frozen=True)
class LedgerEntry:
    """One model invocation. Never mutated after it is recorded."""

    agent_id: str
    model_id: str
    prompt_tokens: int
    completion_tokens: int
    cost: float
    timestamp: float = field(default_factory=time.time)
    duration_ms: float = 0.0

    @property
    def tokens(self) -> TokenCount:
        return TokenCount(self.prompt_tokens, self.completion_tokens)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "agentId": self.agent_id,
            "modelId": self.model_id,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "cost": self.cost,
        }


class Ledger:
    """
    Append-only log of invocation costs.

    Appends are serialized by a lock so sibling agents never lose an entry.
    Every aggregate is a fold over a snapshot of the entries.
    """

    def __init__(self) -> None:
        self._entries: List[LedgerEntry] = []
        self._lock = threading.Lock()
        self._listeners: List[Callable[[LedgerEntry], Any]] = []

    def on_entry(self, listener: Callable[[LedgerEntry], Any]) -> None:
        self._listeners.append(listener)

    def record(
        self,
        agent_id: str,
        model: ModelMetadata,
        usage: Usage,
        duration_ms: float = 0.0,
    ) -> LedgerEntry:
        """Append one entry priced from the model's card."""
        entry = LedgerEntry(
            agent_id=agent_id,
            model_id=model.id,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            cost=model.cost(usage.prompt_tokens, usage.completion_tokens),
            duration_ms=duration_ms,
        )
        self.append(entry)
        return entry

    def append(self, entry: LedgerEntry) -> None:
        with self._lock:
            self._entries.append(entry)
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Ledger listener failed")

    @property
    def entries(self) -> Tuple[LedgerEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def total_cost(self) -> float:
        return sum(e.cost for e in self.entries)

    def total_tokens(self) -> TokenCount:
        total = TokenCount()
        for entry in self.entries:
            total = total + entry.tokens
        return total

    def _fold(self, key: Callable[[LedgerEntry], str], value: Callable[[LedgerEntry], Any], zero: Any) -> Dict[str, Any]:
        result: Dict[str, Any] = defaultdict(lambda: zero)
        for entry in self.entries:
            result[key(entry)] = result[key(entry)] + value(entry)
        return dict(result)

    def cost_by_model(self) -> Dict[str, float]:
        return self._fold(lambda e: e.model_id, lambda e: e.cost, 0.0)

    def cost_by_agent(self) -> Dict[str, float]:
        return self._fold(lambda e: e.agent_id, lambda e: e.cost, 0.0)

    def tokens_by_model(self) -> Dict[str, TokenCount]:
        return self._fold(lambda e: e.model_id, lambda e: e.tokens, TokenCount())

    def tokens_by_agent(self) -> Dict[str, TokenCount]:
        return self._fold(lambda e: e.agent_id, lambda e: e.tokens, TokenCount())

    def timespan(self) -> Optional[Tuple[float, float]]:
        """(first, last) entry timestamps, or None for an empty ledger."""
        entries = self.entries
        if not entries:
            return None
        return entries[0].timestamp, entries[-1].timestamp

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries]
