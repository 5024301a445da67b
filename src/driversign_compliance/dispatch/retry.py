"""
driversign_compliance.dispatch.retry

Bounded retry with exponential backoff for dispatch actions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from driversign_compliance.observability.logging import get_logger

T = TypeVar("T")

log = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RetryExhausted(Exception):
    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")


def backoff_delay(attempt: int, *, base: float, cap: float) -> float:
    """Delay before attempt `attempt + 1`: base, 2*base, 4*base, ... capped at `cap`."""
    return min(cap, base * (2 ** (attempt - 1)))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    retry_on: tuple[type[BaseException], ...],
    give_up_on: tuple[type[BaseException], ...] = (),
    sleep: Sleep = asyncio.sleep,
    label: str = "",
) -> tuple[T, int]:
    """
    Call `fn` until it succeeds or `attempts` calls have failed with a `retry_on` error.
    Returns (result, attempts_used). `give_up_on` errors stop immediately, and so does
    any other `Exception`: an error nobody declared is not known to be transient.
    Cancellation (`BaseException`) propagates unchanged.
    """

    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn(), attempt
        except give_up_on as e:
            raise RetryExhausted(attempt, e) from e
        except retry_on as e:
            if attempt >= attempts:
                raise RetryExhausted(attempt, e) from e
            delay = backoff_delay(attempt, base=base_delay, cap=max_delay)
            log.warning(
                "action_retry",
                label=label,
                attempt=attempt,
                max_attempts=attempts,
                delay_seconds=delay,
                error=str(e),
            )
            await sleep(delay)
        except Exception as e:
            log.error("action_unexpected_error", label=label, attempt=attempt, error=repr(e))
            raise RetryExhausted(attempt, e) from e
