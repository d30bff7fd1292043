"""Async HTTP client for the ride-booking backend API."""

from __future__ import annotations

from typing import Any, Callable, Mapping

import httpx

from ridesync.config import Config
from ridesync.errors import ApiError, AuthError, RideSyncError, TransportError

TokenProvider = Callable[[], str | None]


class RideShareClient:
    """Async HTTP client for the ride-booking backend.

    Each call performs exactly one HTTP request and maps its outcome onto the
    ridesync error taxonomy. Retrying and caching are layered on top by
    `ridesync.retry` and `ridesync.lifecycle`.

    Every successful response is the decoded JSON body, which carries a
    ``success`` flag plus the resource fields (``rides``, ``bookings``,
    ``user``...).

    Example:
        >>> client = RideShareClient(Config.from_env(), token_provider=lambda: token)
        >>> payload = await client.list_rides()
        >>> print(len(payload['rides']))
    """

    def __init__(
        self,
        config: Config,
        *,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._token_provider = token_provider
        self._transport = transport

    # Auth

    async def register_student(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request('POST', '/auth/student/register', json=data)

    async def login_student(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request('POST', '/auth/student/login', json=data)

    async def register_driver(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request('POST', '/auth/driver/register', json=data)

    async def login_driver(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request('POST', '/auth/driver/login', json=data)

    async def current_user(self) -> dict[str, Any]:
        """Fetch the profile of the authenticated user (``user`` field)."""
        return await self._request('GET', '/auth/me')

    # Rides

    async def list_rides(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """List bookable rides, optionally filtered (e.g. ``{'date': '2025-01-31'}``)."""
        return await self._request('GET', '/rides', params=params)

    async def get_ride(self, ride_id: str) -> dict[str, Any]:
        return await self._request('GET', f'/rides/{ride_id}')

    async def create_ride(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request('POST', '/rides', json=data)

    async def driver_rides(self) -> dict[str, Any]:
        return await self._request('GET', '/rides/driver/rides')

    async def update_ride(self, ride_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request('PUT', f'/rides/{ride_id}', json=data)

    async def delete_ride(self, ride_id: str) -> dict[str, Any]:
        return await self._request('DELETE', f'/rides/{ride_id}')

    async def confirm_ride(self, ride_id: str) -> dict[str, Any]:
        return await self._request('PUT', f'/rides/{ride_id}/confirm')

    # Bookings

    async def create_booking(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request('POST', '/bookings', json=data)

    async def my_bookings(self) -> dict[str, Any]:
        return await self._request('GET', '/bookings/me')

    async def driver_bookings(self) -> dict[str, Any]:
        return await self._request('GET', '/bookings/driver')

    async def cancel_booking(self, booking_id: str) -> dict[str, Any]:
        return await self._request('PUT', f'/bookings/{booking_id}/cancel')

    async def confirm_booking(self, booking_id: str) -> dict[str, Any]:
        return await self._request('PUT', f'/bookings/{booking_id}/confirm')

    async def reject_booking(self, booking_id: str) -> dict[str, Any]:
        return await self._request('PUT', f'/bookings/{booking_id}/reject')

    def _headers(self) -> dict[str, str]:
        headers = {
            'User-Agent': self._config.user_agent,
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }
        token = self._token_provider() if self._token_provider else None
        if token:
            headers['Authorization'] = f'Bearer {token}'
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform one request; no retries happen here."""
        query = {key: value for key, value in (params or {}).items() if value is not None}

        try:
            async with httpx.AsyncClient(
                base_url=self._config.base_url,
                headers=self._headers(),
                timeout=self._config.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    params=query or None,
                    json=dict(json) if json is not None else None,
                )
        except httpx.HTTPError as exc:
            raise TransportError(exc) from exc

        data = self._decode(response)

        if response.is_error:
            raise self._status_error(response.status_code, data)

        if data.get('success') is False:
            raise ApiError(response.status_code, data.get('message'), data)

        return data

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            if response.is_error:
                # Gateways answer cold starts with HTML error pages.
                return {}
            raise TransportError(exc) from exc
        if not isinstance(data, dict):
            raise RideSyncError(f'Unexpected response body type: {type(data).__name__}')
        return data

    @staticmethod
    def _status_error(status_code: int, data: dict[str, Any]) -> ApiError:
        message = data.get('message') or data.get('error')
        if status_code in (401, 403):
            return AuthError(status_code, message, data)
        return ApiError(status_code, message, data)
