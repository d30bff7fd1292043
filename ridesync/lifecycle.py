"""Per-view stale-while-revalidate orchestration.

A `RequestLifecycle` drives one view through
``idle -> showing_cached -> fetching -> settled``. Cached data is published
as soon as it is read, then a network fetch runs in the background through
the retry policy. Each fetch is tagged with a generation number and a
`CancelToken`; only the newest, uncancelled fetch may publish, so a slow
superseded request can never overwrite fresher state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator

from ridesync.cache import TTLCache
from ridesync.errors import FetchCancelled, user_message
from ridesync.retry import CancelToken, RetryPolicy

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


class ViewStatus(str, Enum):
    IDLE = 'idle'
    SHOWING_CACHED = 'showing_cached'
    FETCHING = 'fetching'
    SETTLED = 'settled'


class ErrorDisplay(str, Enum):
    NONE = 'none'
    BANNER = 'banner'
    BLOCKING = 'blocking'


@dataclass(frozen=True, slots=True)
class ViewState:
    """Immutable snapshot of what a view should render."""

    status: ViewStatus = ViewStatus.IDLE
    data: Any = None
    from_cache: bool = False
    error: Exception | None = None
    error_display: ErrorDisplay = ErrorDisplay.NONE
    generation: int = 0

    @property
    def is_fetching(self) -> bool:
        return self.status is ViewStatus.FETCHING

    @property
    def error_message(self) -> str | None:
        return user_message(self.error) if self.error is not None else None


Listener = Callable[[ViewState], None]


class RequestLifecycle:
    """Fetch orchestration for a single view and resource key."""

    def __init__(
        self,
        resource_key: str,
        fetcher: Fetcher,
        *,
        cache: TTLCache,
        retry_policy: RetryPolicy,
    ) -> None:
        self._key = resource_key
        self._fetcher = fetcher
        self._cache = cache
        self._retry = retry_policy
        self._state = ViewState()
        self._generation = 0
        self._token: CancelToken | None = None
        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def resource_key(self) -> str:
        return self._key

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for every published state; returns a disposer."""
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    async def activate(self) -> asyncio.Task[None] | None:
        """Show cached data, then revalidate from the network.

        Returns the background fetch task, or None when another activation or
        a deactivation superseded this one while the cache was being read.
        """
        generation, token = self._begin()
        cached = await self._cache.read(self._key)
        if not self._is_current(generation, token):
            return None
        if cached is not None:
            self._publish(
                status=ViewStatus.SHOWING_CACHED,
                data=cached,
                from_cache=True,
                error=None,
                error_display=ErrorDisplay.NONE,
                generation=generation,
            )
        return self._start_fetch(generation, token)

    async def manual_refresh(self) -> asyncio.Task[None]:
        """Fetch from the network without consulting the cache."""
        generation, token = self._begin()
        return self._start_fetch(generation, token)

    def deactivate(self) -> None:
        """Cancel the in-flight fetch; displayed data stays as it is."""
        self._cancel_inflight()
        if self._state.status in (ViewStatus.SHOWING_CACHED, ViewStatus.FETCHING):
            self._publish(status=ViewStatus.IDLE)

    async def aclose(self) -> None:
        """Deactivate and wait for outstanding fetch tasks to finish."""
        self.deactivate()
        if self._tasks:
            await asyncio.gather(*self._tasks)

    def _begin(self) -> tuple[int, CancelToken]:
        self._cancel_inflight()
        self._generation += 1
        self._token = CancelToken()
        return self._generation, self._token

    def _cancel_inflight(self) -> None:
        if self._token is not None:
            self._token.cancel()

    def _is_current(self, generation: int, token: CancelToken) -> bool:
        return generation == self._generation and not token.cancelled

    def _start_fetch(self, generation: int, token: CancelToken) -> asyncio.Task[None]:
        self._publish(
            status=ViewStatus.FETCHING,
            error=None,
            error_display=ErrorDisplay.NONE,
            generation=generation,
        )
        task = asyncio.create_task(self._fetch(generation, token))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fetch(self, generation: int, token: CancelToken) -> None:
        try:
            result = await self._retry.execute(self._fetcher, cancel_token=token)
        except FetchCancelled:
            logger.debug('Fetch %s#%d cancelled', self._key, generation)
            return
        except Exception as exc:
            if not self._is_current(generation, token):
                logger.debug('Discarding failure of superseded fetch %s#%d', self._key, generation)
                return
            self._settle_failure(exc, generation)
            return

        if not self._is_current(generation, token):
            logger.debug('Discarding result of superseded fetch %s#%d', self._key, generation)
            return

        self._publish(
            status=ViewStatus.SETTLED,
            data=result,
            from_cache=False,
            error=None,
            error_display=ErrorDisplay.NONE,
            generation=generation,
        )
        await self._cache.write(self._key, result)

    def _settle_failure(self, exc: Exception, generation: int) -> None:
        if self._state.data is not None:
            logger.warning('Refreshing %s failed, keeping displayed data: %s', self._key, exc)
            display = ErrorDisplay.BANNER
            data = self._state.data
        else:
            logger.error('Loading %s failed: %s', self._key, exc)
            display = ErrorDisplay.BLOCKING
            data = None
        self._publish(
            status=ViewStatus.SETTLED,
            data=data,
            error=exc,
            error_display=display,
            generation=generation,
        )

    def _publish(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)


class ViewRegistry:
    """Lifecycles of all mounted views, addressed by view id."""

    def __init__(self, cache: TTLCache, retry_policy: RetryPolicy) -> None:
        self._cache = cache
        self._retry = retry_policy
        self._views: dict[str, RequestLifecycle] = {}

    def register(self, view_id: str, resource_key: str, fetcher: Fetcher) -> RequestLifecycle:
        if view_id in self._views:
            raise ValueError(f'View already registered: {view_id}')
        lifecycle = RequestLifecycle(
            resource_key, fetcher, cache=self._cache, retry_policy=self._retry
        )
        self._views[view_id] = lifecycle
        return lifecycle

    def get(self, view_id: str) -> RequestLifecycle:
        try:
            return self._views[view_id]
        except KeyError:
            raise KeyError(f'Unknown view: {view_id}') from None

    def __contains__(self, view_id: object) -> bool:
        return view_id in self._views

    def __iter__(self) -> Iterator[str]:
        return iter(self._views)

    async def activate(self, view_id: str) -> asyncio.Task[None] | None:
        return await self.get(view_id).activate()

    def deactivate(self, view_id: str) -> None:
        self.get(view_id).deactivate()

    async def manual_refresh(self, view_id: str) -> asyncio.Task[None]:
        return await self.get(view_id).manual_refresh()

    async def aclose(self) -> None:
        for lifecycle in self._views.values():
            await lifecycle.aclose()
