"""Wiring of the ridesync components from a single `Config`."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from ridesync.cache import TTLCache
from ridesync.client import RideShareClient
from ridesync.config import Config
from ridesync.lifecycle import RequestLifecycle, ViewRegistry
from ridesync.resources import Resource, resources_for_role
from ridesync.retry import RetryPolicy
from ridesync.session import SessionStore
from ridesync.storage import KeyValueStore, open_store

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RideSyncCore:
    config: Config
    store: KeyValueStore
    cache: TTLCache
    retry_policy: RetryPolicy
    client: RideShareClient
    session: SessionStore
    views: ViewRegistry

    def mount(self, resource: Resource) -> RequestLifecycle:
        """Return the lifecycle of *resource*'s view, registering it on first use."""
        if resource.view_id in self.views:
            return self.views.get(resource.view_id)
        return self.views.register(
            resource.view_id, resource.cache_key, resource.fetcher(self.client)
        )

    def mount_role_views(self, role: str | None = None) -> list[RequestLifecycle]:
        """Mount the views of *role*, defaulting to the signed-in user's role."""
        if role is None:
            user = self.session.snapshot.user
            role = user.role if user is not None else None
        return [self.mount(resource) for resource in resources_for_role(role)]

    async def logout(self) -> None:
        """Sign out and drop cached data of the previous user."""
        await self.session.logout()
        await self.cache.invalidate_all()

    async def aclose(self) -> None:
        await self.views.aclose()
        await self.session.flush()


def create_core(
    config: Config | None = None,
    *,
    store: KeyValueStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    retry_policy: RetryPolicy | None = None,
    clock: Callable[[], float] = time.time,
) -> RideSyncCore:
    """Create the cache, retry, session and view components.

    Args:
        config: Configuration instance. If None, will be created from environment.
        store: Durable store. Defaults to one opened from ``config.storage_dir``.
        transport: Custom HTTP transport for testing. Uses default if None.
        retry_policy: Overrides the policy derived from the configuration.
        clock: Wall clock used for cache timestamps.

    Example:
        >>> core = create_core()
        >>> await core.session.restore_session()
        >>> home, bookings = core.mount_role_views()
        >>> await home.activate()
    """

    config = config or Config.from_env()
    store = store if store is not None else open_store(config.storage_dir)
    cache = TTLCache(store, config.cache_ttl, prefix=config.cache_prefix, clock=clock)
    retry_policy = retry_policy or RetryPolicy.from_config(config)

    client = RideShareClient(
        config,
        token_provider=lambda: session.snapshot.token,
        transport=transport,
    )
    session = SessionStore(store, api=client)
    views = ViewRegistry(cache, retry_policy)

    logger.debug('ridesync core created for %s', config.base_url)
    return RideSyncCore(
        config=config,
        store=store,
        cache=cache,
        retry_policy=retry_policy,
        client=client,
        session=session,
        views=views,
    )
