"""
Retry utilities for the audit assistant.

This module provides the bounded retry loop with exponential backoff used
for every remote call. Only errors derived from ``RetryableError`` are
retried; anything else propagates on the first failure. When all attempts
are exhausted the last error is re-raised unchanged so callers still see
its classification.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict


class RetryableError(Exception):
    """Base exception for retryable errors."""
    pass


@dataclass
class RetryAttempt:
    """Information about a retry attempt."""
    attempt_number: int
    start_time: datetime
    end_time: Optional[datetime] = None
    exception: Optional[Exception] = None
    delay_seconds: float = 0.0
    success: bool = False

    @property
    def duration_ms(self) -> float:
        """Get attempt duration in milliseconds."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds() * 1000
        return 0.0


class RetryConfig(BaseModel):
    """Configuration for retry behavior."""
    model_config = ConfigDict(extra='forbid')

    # Retries on top of the first attempt
    max_retries: int = Field(default=3, ge=0, le=20)

    # Delay configuration: delay = base_delay * multiplier ** attempt
    base_delay: float = Field(default=1.0, ge=0.0, le=60.0)
    multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay: float = Field(default=30.0, ge=0.0, le=3600.0)

    log_attempts: bool = Field(default=True)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def is_retryable_exception(self, exception: BaseException) -> bool:
        """Check if an exception should trigger a retry."""
        return isinstance(exception, RetryableError)

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retrying after the zero-based ``attempt`` failed."""
        delay = self.base_delay * (self.multiplier ** attempt)
        return min(delay, self.max_delay)


class RetryManager:
    """
    Runs async callables under a ``RetryConfig``.

    Cancellation of the calling task interrupts the backoff sleep and
    propagates; it is never treated as a retryable failure.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        logger: Optional[logging.LoggerAdapter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.config = config or RetryConfig()
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._sleep = sleep

        # Metrics
        self.total_attempts = 0
        self.total_successes = 0
        self.total_failures = 0
        self.retry_history: List[RetryAttempt] = []

    async def execute_with_retry(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute an async function with retry logic."""
        attempts: List[RetryAttempt] = []

        for attempt_index in range(self.config.max_attempts):
            attempt = RetryAttempt(
                attempt_number=attempt_index + 1,
                start_time=datetime.now(timezone.utc)
            )
            self.total_attempts += 1

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                attempt.end_time = datetime.now(timezone.utc)
                attempt.exception = e
                attempts.append(attempt)

                is_last = attempt_index + 1 >= self.config.max_attempts
                if not self.config.is_retryable_exception(e) or is_last:
                    self.total_failures += 1
                    self._record(attempts)
                    if self.config.log_attempts:
                        self.logger.warning(
                            f"Giving up after attempt {attempt.attempt_number}: {type(e).__name__}: {e}"
                        )
                    raise

                delay = self.config.calculate_delay(attempt_index)
                attempt.delay_seconds = delay

                if self.config.log_attempts:
                    self.logger.warning(
                        f"Attempt {attempt.attempt_number}/{self.config.max_attempts} failed "
                        f"({type(e).__name__}: {e}), retrying in {delay:.2f}s"
                    )

                await self._sleep(delay)
                continue

            attempt.end_time = datetime.now(timezone.utc)
            attempt.success = True
            attempts.append(attempt)
            self.total_successes += 1
            self._record(attempts)

            if self.config.log_attempts and attempt_index > 0:
                self.logger.info(f"Operation succeeded on attempt {attempt.attempt_number}")

            return result

    def _record(self, attempts: List[RetryAttempt]) -> None:
        self.retry_history.extend(attempts)
        # Keep history bounded for long-running processes
        del self.retry_history[:-100]

    def get_stats(self) -> Dict[str, Any]:
        """Get retry statistics."""
        finished = self.total_successes + self.total_failures
        return {
            'total_attempts': self.total_attempts,
            'total_successes': self.total_successes,
            'total_failures': self.total_failures,
            'success_rate': self.total_successes / max(finished, 1),
            'config': self.config.model_dump()
        }
