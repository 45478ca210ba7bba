from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from chat_core.application.exceptions import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (TransientStoreError, ConnectionError, TimeoutError)


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential delay for the given 1-based attempt, capped, plus a little jitter."""
    delay = min(base * (2 ** (attempt - 1)), cap)
    return delay + random.uniform(0, base * 0.25)


async def with_store_retry(
    op_name: str,
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 4,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run a store operation, retrying transient failures with bounded backoff.

    Raises TransientStoreError once attempts are exhausted. Any other error
    propagates on the first occurrence.
    """
    attempt = 1
    while True:
        try:
            return await func()
        except RETRYABLE_ERRORS as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "Store operation %s failed after %d attempts: %s",
                    op_name, attempt, exc,
                )
                if isinstance(exc, TransientStoreError):
                    raise
                raise TransientStoreError(str(exc)) from exc
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.info(
                "Transient store failure in %s (attempt %d), retrying in %.2fs",
                op_name, attempt, delay,
            )
            await sleep(delay)
            attempt += 1


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bundled retry settings handed to client components."""

    max_attempts: int = 4
    base_delay: float = 0.2
    max_delay: float = 5.0

    async def run(self, op_name: str, func: Callable[[], Awaitable[T]]) -> T:
        return await with_store_retry(
            op_name,
            func,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )
