"""Bounded retries with linear backoff for a slow, cold-starting backend."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from ridesync.config import Config
from ridesync.errors import FetchCancelled, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar('T')

Sleep = Callable[[float], Awaitable[None]]


class CancelToken:
    """Cooperative cancellation flag shared between a fetch and its owner."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise FetchCancelled('fetch cancelled')


def backoff_delay(initial_delay: float, attempt: int) -> float:
    """Delay before attempt ``attempt + 1``: 1x, 2x, 3x... the initial delay."""
    return initial_delay * attempt


async def execute(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    initial_delay: float = 5.0,
    *,
    cancel_token: CancelToken | None = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run *operation* up to *max_attempts* times.

    Transient failures (see `is_retryable`) are retried after a linearly
    growing delay; any other failure propagates immediately. Once attempts
    are exhausted the last error is re-raised unchanged.

    A set *cancel_token* is honoured before every attempt and interrupts the
    delay between attempts, raising `FetchCancelled`.

    Example:
        >>> payload = await execute(client.list_rides, max_attempts=3, initial_delay=1.0)
    """
    if max_attempts < 1:
        raise ValueError(f'max_attempts must be at least 1: {max_attempts}')

    for attempt in range(1, max_attempts + 1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc) or attempt == max_attempts:
                raise
            delay = backoff_delay(initial_delay, attempt)
            logger.info(
                'Retry attempt %d/%d after %.1fs (%s)', attempt, max_attempts, delay, exc
            )
        await _pause(delay, cancel_token, sleep)

    # Unreachable: the last attempt either returns or raises.
    raise AssertionError('retry loop exited without a result')


async def _pause(delay: float, cancel_token: CancelToken | None, sleep: Sleep) -> None:
    if cancel_token is None:
        await sleep(delay)
        return
    cancel_token.raise_if_cancelled()
    sleeper = asyncio.ensure_future(sleep(delay))
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        sleeper.cancel()
        waiter.cancel()
    cancel_token.raise_if_cancelled()


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry settings bound to an injectable sleep function."""

    max_attempts: int = 5
    initial_delay: float = 5.0
    sleep: Sleep = asyncio.sleep

    @classmethod
    def from_config(cls, config: Config) -> RetryPolicy:
        return cls(max_attempts=config.max_attempts, initial_delay=config.retry_initial_delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        cancel_token: CancelToken | None = None,
    ) -> T:
        return await execute(
            operation,
            self.max_attempts,
            self.initial_delay,
            cancel_token=cancel_token,
            sleep=self.sleep,
        )
