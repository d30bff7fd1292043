"""Cached read resources of the ride-booking app."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ridesync.client import RideShareClient
from ridesync.lifecycle import Fetcher


@dataclass(frozen=True, slots=True)
class Resource:
    """A cacheable API read: where it is cached and how to fetch it.

    ``field`` names the part of the response payload the view renders.
    """

    view_id: str
    cache_key: str
    call: Callable[[RideShareClient], Awaitable[dict[str, Any]]]
    field: str

    def fetcher(self, client: RideShareClient) -> Fetcher:
        async def fetch() -> Any:
            payload = await self.call(client)
            return payload.get(self.field)

        return fetch


AVAILABLE_RIDES = Resource(
    view_id='student_home',
    cache_key='rides:student',
    call=lambda client: client.list_rides(),
    field='rides',
)
MY_BOOKINGS = Resource(
    view_id='my_bookings',
    cache_key='bookings:student',
    call=lambda client: client.my_bookings(),
    field='bookings',
)
DRIVER_RIDES = Resource(
    view_id='driver_home',
    cache_key='rides:driver',
    call=lambda client: client.driver_rides(),
    field='rides',
)
DRIVER_BOOKINGS = Resource(
    view_id='driver_bookings',
    cache_key='bookings:driver',
    call=lambda client: client.driver_bookings(),
    field='bookings',
)

STUDENT_RESOURCES = (AVAILABLE_RIDES, MY_BOOKINGS)
DRIVER_RESOURCES = (DRIVER_RIDES, DRIVER_BOOKINGS)


def ride_details(ride_id: str) -> Resource:
    return Resource(
        view_id=f'ride_details:{ride_id}',
        cache_key=f'ride:{ride_id}',
        call=lambda client: client.get_ride(ride_id),
        field='ride',
    )


def resources_for_role(role: str | None) -> tuple[Resource, ...]:
    if role == 'driver':
        return DRIVER_RESOURCES
    if role == 'student':
        return STUDENT_RESOURCES
    return ()
