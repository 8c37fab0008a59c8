"""Bounded exponential backoff shared by publishing and dispatch."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from orderflow.core.config import RetryConfig
from orderflow.core.errors import OrderFlowError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(OrderFlowError):
    """An operation kept failing until the attempt budget ran out."""

    def __init__(self, label: str, attempts: int, last_error: BaseException):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_backoff: float = 0.2
    max_backoff: float = 10.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            base_backoff=config.base_backoff_seconds,
            max_backoff=config.max_backoff_seconds,
        )

    def backoff(self, attempt: int) -> float:
        """Delay after the *attempt*-th failure (1-based)."""
        return min(self.base_backoff * (2 ** (attempt - 1)), self.max_backoff)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> tuple[T, int]:
    """Run *operation* until it succeeds or the policy gives up.

    Returns ``(result, attempts)``.  Raises ``RetryExhaustedError`` chained
    to the last failure once ``policy.max_attempts`` is reached.  Errors
    outside *retry_on* propagate immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation(), attempt
        except retry_on as exc:
            if attempt >= policy.max_attempts:
                logger.error(
                    "%s failed (attempt %d/%d); giving up",
                    label,
                    attempt,
                    policy.max_attempts,
                )
                raise RetryExhaustedError(label, attempt, exc) from exc
            delay = policy.backoff(attempt)
            logger.warning(
                "%s failed (attempt %d/%d, backoff %.2fs): %s",
                label,
                attempt,
                policy.max_attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
