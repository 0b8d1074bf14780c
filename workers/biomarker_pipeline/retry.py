"""
Timeout and retry wrapper for external model calls.

Every provider call runs under ``asyncio.wait_for``; failures (timeouts
included) are retried with exponential backoff until the attempt budget
is spent, then surfaced as the calling stage's error type.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Type, TypeVar

from backend.core.config import get_settings
from workers.biomarker_pipeline.exceptions import PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Retry policy for a single model call."""
    max_attempts: int = 3
    timeout: float = 600.0  # seconds per attempt
    backoff_seconds: float = 2.0
    backoff_factor: float = 2.0

    def __post_init__(self):
        # At least one attempt is always made
        self.max_attempts = max(1, self.max_attempts)

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        processing = get_settings().processing
        return cls(
            max_attempts=processing.max_retries,
            timeout=processing.timeout,
            backoff_seconds=processing.backoff_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after the given (1-based) failed attempt."""
        return self.backoff_seconds * (self.backoff_factor ** (attempt - 1))


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    error_cls: Type[PipelineError],
    description: str,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``func()`` with a per-attempt timeout, retrying on failure.

    Raises:
        error_cls: once all attempts have failed, chained to the last error
    """
    config = config or RetryConfig.from_settings()
    last_error: Optional[BaseException] = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await asyncio.wait_for(func(), timeout=config.timeout)
        except asyncio.TimeoutError as e:
            last_error = e
            reason = f"timed out after {config.timeout:g}s"
        except Exception as e:
            last_error = e
            reason = str(e) or type(e).__name__

        if attempt < config.max_attempts:
            delay = config.delay_for(attempt)
            logger.warning(
                f"{description}: attempt {attempt}/{config.max_attempts} failed ({reason}), "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)
        else:
            logger.warning(f"{description}: attempt {attempt}/{config.max_attempts} failed ({reason})")

    raise error_cls(
        f"{description} failed after {config.max_attempts} attempt(s): {reason}"
    ) from last_error
