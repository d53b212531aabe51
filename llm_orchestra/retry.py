"""Retry logic with exponential backoff for provider calls."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from .errors import ProviderHTTPError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Vendor error codes that arrive as 429 but will not clear by waiting.
NON_RETRYABLE_CODES = frozenset({"insufficient_quota", "billing_hard_limit_reached"})


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.2  # ±20% random variation


class TransientError(Exception):
    """Exception for transient errors that should be retried."""
    pass


class PermanentError(Exception):
    """Exception for permanent errors that should not be retried."""

    def __init__(self, message: str, status_code: Optional[int] = None, attempts: int = 1):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


class RetriesExhausted(Exception):
    """Every attempt failed with a transient error."""

    def __init__(self, last_error: Exception, attempts: int):
        super().__init__(str(last_error))
        self.last_error = last_error
        self.attempts = attempts
        self.status_code = getattr(last_error, "status_code", None)


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Backoff delay before retrying after the given zero-based attempt."""
    base_delay = min(
        config.base_delay * (config.exponential_base ** attempt),
        config.max_delay
    )
    # Add jitter (random variation) to prevent thundering herd
    jitter = base_delay * config.jitter_factor * (2 * random.random() - 1)
    return max(0.0, base_delay + jitter)


async def retry_with_backoff(
    func: Callable[..., T],
    config: RetryConfig,
    *args: Any,
    **kwargs: Any
) -> T:
    """
    Execute a function with exponential backoff retry logic.

    Args:
        func: Async (or sync) function to execute
        config: Retry configuration
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function execution

    Raises:
        PermanentError: On the first non-transient failure
        RetriesExhausted: If all retry attempts fail
    """
    for attempt in range(config.max_attempts):
        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)

            if attempt > 0:
                logger.info(f"Retry succeeded on attempt {attempt + 1}")
            return result

        except asyncio.CancelledError:
            raise
        except PermanentError as e:
            e.attempts = attempt + 1
            logger.error(f"Permanent error encountered, not retrying: {e}")
            raise

        except Exception as e:
            if not is_transient_error(e):
                logger.error(f"Permanent error encountered, not retrying: {e}")
                raise PermanentError(
                    str(e), status_code=getattr(e, "status_code", None), attempts=attempt + 1
                ) from e

            if attempt == config.max_attempts - 1:
                logger.error(f"All {config.max_attempts} retry attempts failed")
                raise RetriesExhausted(e, attempt + 1) from e

            delay = compute_delay(config, attempt)
            logger.warning(
                f"Attempt {attempt + 1}/{config.max_attempts} failed: {str(e)}. "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)

    raise ValueError("max_attempts must be at least 1")


def is_transient_error(error: Exception) -> bool:
    """
    Determine if an error is transient and should be retried.

    HTTP errors are classified by status code only: 5xx and 429 (unless the
    vendor flags quota exhaustion) are transient, every other status is not.

    Args:
        error: Exception to check

    Returns:
        True if error is transient, False otherwise
    """
    if isinstance(error, TransientError):
        return True

    if isinstance(error, ProviderHTTPError):
        if error.status_code == 429:
            return error.code not in NON_RETRYABLE_CODES
        return error.status_code >= 500

    # Network-related errors
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    error_msg = str(error).lower()
    transient_patterns = [
        "timeout",
        "timed out",
        "connection reset",
        "broken pipe",
        "temporarily unavailable",
    ]

    return any(pattern in error_msg for pattern in transient_patterns)
