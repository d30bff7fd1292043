"""End-to-end wiring: session, client, cache and views over a mock backend."""

from __future__ import annotations

import httpx
import pytest

from conftest import FakeClock, MockAPI, RecordingSleep
from ridesync.config import Config
from ridesync.core import RideSyncCore, create_core
from ridesync.lifecycle import ErrorDisplay, ViewStatus
from ridesync.resources import AVAILABLE_RIDES, DRIVER_RIDES, ride_details
from ridesync.retry import RetryPolicy
from ridesync.storage import MemoryStore

pytestmark = pytest.mark.asyncio

RIDES = [{'_id': 'r1', 'pickupLocation': 'Campus', 'availableSeats': 2}]


@pytest.fixture
def core(
    config: Config,
    mock_api: tuple[MockAPI, httpx.MockTransport],
    store: MemoryStore,
    clock: FakeClock,
    recording_sleep: RecordingSleep,
) -> RideSyncCore:
    _, transport = mock_api
    return create_core(
        config,
        store=store,
        transport=transport,
        retry_policy=RetryPolicy(max_attempts=3, initial_delay=1.0, sleep=recording_sleep),
        clock=clock,
    )


async def test_student_views_revalidate_with_session_token(
    core: RideSyncCore, mock_api: tuple[MockAPI, httpx.MockTransport]
) -> None:
    api, _ = mock_api

    def rides(request: httpx.Request) -> httpx.Response:
        assert request.headers['Authorization'] == 'Bearer jwt-1'
        return httpx.Response(200, json={'success': True, 'rides': RIDES})

    api.add_responder('/api/rides', rides)
    api.add_json('/api/bookings/me', {'success': True, 'bookings': []})

    await core.session.restore_session()
    core.session.login('jwt-1', {'id': 'u1', 'role': 'student'})
    home, bookings = core.mount_role_views()

    await (await home.activate())
    await (await bookings.activate())

    assert home.state.data == RIDES
    assert bookings.state.data == []
    assert await core.cache.read(AVAILABLE_RIDES.cache_key) == RIDES


async def test_cold_start_falls_back_to_cached_rides(
    core: RideSyncCore,
    mock_api: tuple[MockAPI, httpx.MockTransport],
    recording_sleep: RecordingSleep,
) -> None:
    api, _ = mock_api
    api.add_responder('/api/rides', lambda _: httpx.Response(502, text='Bad Gateway'))
    await core.cache.write(AVAILABLE_RIDES.cache_key, RIDES)

    home = core.mount(AVAILABLE_RIDES)
    await (await home.activate())

    assert home.state.status is ViewStatus.SETTLED
    assert home.state.data == RIDES
    assert home.state.error_display is ErrorDisplay.BANNER
    assert len(api.calls) == 3
    assert recording_sleep.delays == [1.0, 2.0]


async def test_driver_views_and_ride_details(
    core: RideSyncCore, mock_api: tuple[MockAPI, httpx.MockTransport]
) -> None:
    api, _ = mock_api
    api.add_json('/api/rides/driver/rides', {'success': True, 'rides': RIDES})
    api.add_json('/api/rides/r1', {'success': True, 'ride': RIDES[0]})

    views = core.mount_role_views('driver')
    details = core.mount(ride_details('r1'))

    assert views[0] is core.mount(DRIVER_RIDES)
    await (await views[0].activate())
    await (await details.activate())

    assert views[0].state.data == RIDES
    assert details.state.data == RIDES[0]
    assert core.mount_role_views() == []


async def test_logout_drops_session_and_cache(
    core: RideSyncCore, store: MemoryStore
) -> None:
    core.session.login('jwt-1', {'id': 'u1', 'role': 'student'})
    await core.cache.write(AVAILABLE_RIDES.cache_key, RIDES)

    await core.logout()

    assert not core.session.snapshot.is_authenticated
    assert await store.keys() == []
    await core.aclose()


async def test_refresh_user_through_client(
    core: RideSyncCore, mock_api: tuple[MockAPI, httpx.MockTransport]
) -> None:
    api, _ = mock_api
    api.add_json(
        '/api/auth/me',
        {'success': True, 'user': {'id': 'u1', 'role': 'driver', 'isVerified': True}},
    )
    core.session.login('jwt-1', {'id': 'u1', 'role': 'driver', 'isVerified': False})

    profile = await core.session.refresh_user()

    assert profile.is_verified is True
    assert core.session.snapshot.user.is_verified is True
    assert api.calls[0].headers['Authorization'] == 'Bearer jwt-1'
