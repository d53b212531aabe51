"""Branchable conversation threads."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .common import generate_id
from .errors import AlreadyResolved, InvalidState, OwnershipError, UnknownCallId
from .providers.types import Message, ToolCall

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Exchange:
    """One role-tagged turn: free text, or a batch of tool calls."""

    role: Role
    content: Optional[str] = None
    tool_calls: Tuple[ToolCall, ...] = ()
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    synthetic: bool = False

    @property
    def is_tool_calls(self) -> bool:
        return self.role == Role.ASSISTANT and bool(self.tool_calls)

    def to_message(self) -> Message:
        return Message(
            role=self.role.value,
            content=self.content,
            tool_calls=list(self.tool_calls),
            tool_call_id=self.tool_call_id,
            name=self.name,
        )


class Thread:
    """
    An ordered, append-only branch of a conversation.

    Simple appends mutate the instance in place. Operations that change
    history (``rollup``, ``followup``, ``fork``, ``undo``, ``edit``) return a
    new, unowned instance; the owning agent must abandon the old thread and
    adopt the new one.

    Appends are for the owner only. Passing ``agent_id`` checks it; the
    agent engine always does, and unowned threads reject any ``agent_id``.

    Equality is structural: two threads are equal when their exchanges are.
    """

    def __init__(self, exchanges: Iterable[Exchange] = (), owner_id: Optional[str] = None):
        self.id = generate_id("Thread")
        self.owner_id = owner_id
        self.concluded = False
        self._exchanges: List[Exchange] = []
        self._issued: Dict[str, ToolCall] = {}
        self._resolved: Set[str] = set()
        self._busy = False
        for exchange in exchanges:
            self._replay(exchange)

    def _replay(self, exchange: Exchange) -> None:
        for call in exchange.tool_calls:
            self._issued[call.id] = call
        if exchange.role == Role.TOOL and exchange.tool_call_id:
            self._resolved.add(exchange.tool_call_id)
        self._exchanges.append(exchange)

    def __repr__(self) -> str:
        return f"Thread(id={self.id!r}, owner={self.owner_id!r}, exchanges={len(self._exchanges)})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Thread):
            return NotImplemented
        return self._exchanges == other._exchanges

    __hash__ = None  # type: ignore[assignment]

    def __len__(self) -> int:
        return len(self._exchanges)

    def __iter__(self) -> Iterator[Exchange]:
        return iter(list(self._exchanges))

    @property
    def exchanges(self) -> Tuple[Exchange, ...]:
        return tuple(self._exchanges)

    @property
    def last(self) -> Optional[Exchange]:
        return self._exchanges[-1] if self._exchanges else None

    @property
    def empty(self) -> bool:
        return not self._exchanges

    @property
    def pending_calls(self) -> List[ToolCall]:
        """Issued tool calls without a result, in issue order."""
        return [call for call_id, call in self._issued.items() if call_id not in self._resolved]

    @property
    def has_pending(self) -> bool:
        return len(self._resolved) < len(self._issued)

    @property
    def complete(self) -> bool:
        """True when the thread ends in plain assistant text."""
        last = self.last
        return last is not None and last.role == Role.ASSISTANT and not last.tool_calls

    @property
    def is_sendable(self) -> bool:
        """Whether the model may be asked for the next assistant turn."""
        return not self.empty and not self.complete and not self.has_pending and not self.concluded

    @property
    def assistant_response(self) -> str:
        if not self.complete:
            raise InvalidState(f"{self.id} has no final assistant response")
        return self._exchanges[-1].content or ""

    def to_messages(self) -> List[Message]:
        return [exchange.to_message() for exchange in self._exchanges]

    # --- Ownership ---

    def check_owner(self, agent_id: str) -> None:
        if self.owner_id != agent_id:
            raise OwnershipError(f"{self.id} is owned by {self.owner_id}, not {agent_id}")

    @contextlib.contextmanager
    def advancing(self) -> Iterator["Thread"]:
        """Mark the thread busy for the duration of one advance."""
        if self._busy:
            raise InvalidState(f"{self.id} is already being advanced")
        self._busy = True
        try:
            yield self
        finally:
            self._busy = False

    def conclude(self) -> None:
        self.concluded = True
        self.owner_id = None

    # --- In-place appends ---

    def _check_appendable(self, agent_id: Optional[str] = None) -> None:
        if agent_id is not None:
            self.check_owner(agent_id)
        if self.concluded:
            raise InvalidState(f"{self.id} is concluded")
        if self.has_pending:
            pending = ", ".join(call.id for call in self.pending_calls)
            raise InvalidState(f"{self.id} has unresolved tool calls: {pending}")
        if self.complete:
            raise InvalidState(f"{self.id} is complete; use followup() or rollup() to continue")

    def append_system_message(self, text: str, agent_id: Optional[str] = None) -> "Thread":
        self._check_appendable(agent_id)
        self._exchanges.append(Exchange(Role.SYSTEM, text))
        return self

    def append_user_message(self, text: str, agent_id: Optional[str] = None) -> "Thread":
        self._check_appendable(agent_id)
        self._exchanges.append(Exchange(Role.USER, text))
        return self

    def append_assistant_message(self, text: str, agent_id: Optional[str] = None) -> "Thread":
        self._check_appendable(agent_id)
        self._exchanges.append(Exchange(Role.ASSISTANT, text))
        return self

    def append_assistant_tool_calls(self, calls: Iterable[ToolCall], agent_id: Optional[str] = None) -> "Thread":
        """Append a tool-calls turn and record every call id as pending."""
        batch = tuple(calls)
        if not batch:
            raise InvalidState("A tool-calls batch must contain at least one call")
        self._check_appendable(agent_id)
        ids = [call.id for call in batch]
        if len(set(ids)) != len(ids) or any(call_id in self._issued for call_id in ids):
            raise InvalidState(f"Duplicate tool call ids in batch: {ids}")
        self._replay(Exchange(Role.ASSISTANT, tool_calls=batch))
        return self

    def append_tool_result(self, call_id: str, content: str, agent_id: Optional[str] = None) -> "Thread":
        """Resolve one pending call.

        Raises:
            OwnershipError: ``agent_id`` is given and does not own the thread
            UnknownCallId: The id was never issued on this thread
            AlreadyResolved: The id already has a result
        """
        if agent_id is not None:
            self.check_owner(agent_id)
        if self.concluded:
            raise InvalidState(f"{self.id} is concluded")
        call = self._issued.get(call_id)
        if call is None:
            raise UnknownCallId(f"{self.id}: no tool call with id {call_id!r}")
        if call_id in self._resolved:
            raise AlreadyResolved(f"{self.id}: tool call {call_id!r} already has a result")
        self._replay(Exchange(Role.TOOL, content, tool_call_id=call_id, name=call.name))
        return self

    # --- New-instance operations ---

    def fork(self) -> "Thread":
        """Structurally equal, unowned copy."""
        return Thread(self._exchanges)

    def followup(self, text: str) -> "Thread":
        """New thread continuing a complete thread with a user message."""
        if self.has_pending:
            raise InvalidState(f"{self.id} has unresolved tool calls")
        return Thread(self._exchanges + [Exchange(Role.USER, text)])

    def undo(self) -> "Thread":
        """New thread without the final assistant reply."""
        if not self.complete:
            raise InvalidState(f"{self.id} has no assistant reply to undo")
        return Thread(self._exchanges[:-1])

    def edit(self, text: str) -> "Thread":
        """New thread whose trailing user message is replaced by ``text``."""
        exchanges = self._exchanges[:-1] if self.complete else list(self._exchanges)
        if not exchanges or exchanges[-1].role != Role.USER or exchanges[-1].synthetic:
            raise InvalidState(f"{self.id} does not end in a user message")
        return Thread(exchanges[:-1] + [Exchange(Role.USER, text)])

    @classmethod
    def rollup(cls, base: "Thread", note: str) -> "Thread":
        """New thread holding ``base``'s exchanges plus one synthetic note.

        ``base`` is never mutated.
        """
        if base.has_pending:
            raise InvalidState(f"Cannot roll up onto {base.id}: it has unresolved tool calls")
        rolled = cls(list(base._exchanges) + [Exchange(Role.USER, note, synthetic=True)])
        logger.info(f"Rolled up onto {base.id} as {rolled.id} ({len(rolled)} exchanges)")
        return rolled
