"""Bounded exponential-backoff retry for transient upstream failures."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from brreg_reports.config import setup_logging
from brreg_reports.errors import TransientFetchError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = setup_logging(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempts and delay bounds; delay is ``min(base * 2**attempt, max)``."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> RetryPolicy:
        retry = config.get("retry", {})
        return cls(
            max_attempts=max(1, int(retry.get("max_attempts", 3))),
            base_delay=float(retry.get("base_delay_seconds", 1.0)),
            max_delay=float(retry.get("max_delay_seconds", 8.0)),
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2**attempt), self.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
) -> T:
    """Await ``operation()`` until it succeeds or the policy is exhausted.

    Only ``TransientFetchError`` (and its subclasses, such as
    ``FetchTimeoutError``) is retried; every other exception propagates on
    the first occurrence.

    Parameters
    ----------
    operation : Callable[[], Awaitable[T]]
        Zero-argument coroutine factory; called once per attempt.
    policy : RetryPolicy
        Attempt count and delay bounds.
    description : str, optional
        Label used in log messages.

    Returns
    -------
    T
        Result of the first successful attempt.

    Raises
    ------
    TransientFetchError
        The last transient error once all attempts have failed.
    """
    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except TransientFetchError as e:
            if attempt >= policy.max_attempts - 1:
                logger.warning("%s failed after %s attempts: %s", description, policy.max_attempts, e)
                raise
            delay = policy.delay_for(attempt)
            logger.info(
                "%s failed (attempt %s/%s): %s; retrying in %ss",
                description,
                attempt + 1,
                policy.max_attempts,
                e,
                delay,
            )
            await asyncio.sleep(delay)

    msg = f"{description}: retry policy allows no attempts"
    raise RuntimeError(msg)
