"""Identifiers and timing helpers shared by sessions, agents and threads."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Optional


def generate_id(prefix: str) -> str:
    """Generate a unique, human-readable identifier such as ``Session#1f3a9c0b2d4e``."""
    return f"{prefix}#{uuid.uuid4().hex[:12]}"


@dataclass
class Timing:
    """Wall-clock span measured with a monotonic clock."""

    start: float = field(default_factory=time.monotonic)
    end: Optional[float] = None

    def finish(self) -> None:
        if self.end is None:
            self.end = time.monotonic()

    @property
    def has_ended(self) -> bool:
        return self.end is not None

    @property
    def elapsed(self) -> float:
        """Seconds elapsed, up to now if the span is still open."""
        end = self.end if self.end is not None else time.monotonic()
        return end - self.start
