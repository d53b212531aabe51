"""Per-model request and token throttling over a sliding one-minute window."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, List, Optional, Tuple

from .types import Message

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


def estimate_tokens(messages: List[Message]) -> int:
    """Rough prompt size, about four characters per token."""
    chars = 0
    for message in messages:
        chars += len(message.content or "")
        for call in message.tool_calls or ():
            chars += len(call.name) + len(call.arguments or "")
    return max(1, chars // 4)


class RateLimiter:
    """
    Holds requests back until they fit a model's RPM / TPM limits.

    Every acquired request is stamped into the window. Token usage is
    reserved from an estimate up front and corrected with ``settle`` once
    the real usage is known.
    """

    def __init__(
        self,
        rpm: Optional[int] = None,
        tpm: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rpm = rpm
        self.tpm = tpm
        self._clock = clock
        self._requests: Deque[float] = deque()
        self._tokens: Deque[Tuple[float, int]] = deque()
        self._lock = asyncio.Lock()

    def _expire(self, now: float) -> None:
        while self._requests and self._requests[0] <= now - WINDOW_SECONDS:
            self._requests.popleft()
        while self._tokens and self._tokens[0][0] <= now - WINDOW_SECONDS:
            self._tokens.popleft()

    @property
    def tokens_in_window(self) -> int:
        self._expire(self._clock())
        return sum(n for _, n in self._tokens)

    def delay(self, tokens: int = 0) -> float:
        """Seconds to wait before a request of ``tokens`` fits both limits."""
        now = self._clock()
        self._expire(now)
        wait = 0.0

        if self.rpm and len(self._requests) >= self.rpm:
            oldest = self._requests[len(self._requests) - self.rpm]
            wait = max(wait, oldest + WINDOW_SECONDS - now)

        if self.tpm and self._tokens:
            excess = sum(n for _, n in self._tokens) + tokens - self.tpm
            if excess > 0:
                drained = 0
                for stamp, n in self._tokens:
                    drained += n
                    if drained >= excess:
                        break
                # A request larger than the whole limit waits for an empty window.
                wait = max(wait, stamp + WINDOW_SECONDS - now)

        return max(wait, 0.0)

    async def acquire(self, tokens: int = 0) -> None:
        """Wait for room, then stamp one request reserving ``tokens``."""
        async with self._lock:
            while True:
                wait = self.delay(tokens)
                if wait <= 0:
                    break
                logger.info(f"Rate limit reached (rpm={self.rpm}, tpm={self.tpm}), waiting {wait:.2f}s")
                await asyncio.sleep(wait)
            now = self._clock()
            self._requests.append(now)
            if self.tpm and tokens:
                self._tokens.append((now, tokens))

    def settle(self, reserved: int, actual: int) -> None:
        """Charge reported usage beyond the reservation. Overestimates stay charged."""
        if self.tpm and actual > reserved:
            self._tokens.append((self._clock(), actual - reserved))
