from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
import pytest

from ridesync.cache import TTLCache
from ridesync.client import RideShareClient
from ridesync.config import Config
from ridesync.errors import StorageError
from ridesync.retry import RetryPolicy
from ridesync.storage import MemoryStore

Responder = Callable[[httpx.Request], httpx.Response]


@dataclass
class MockAPI:
    responses: dict[tuple[str, str], Responder] = field(default_factory=dict)
    calls: list[httpx.Request] = field(default_factory=list)

    def add_json(
        self, path: str, payload: dict[str, Any], status_code: int = 200, method: str = 'GET'
    ) -> None:
        def responder(_: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code=status_code, json=payload)

        self.responses[(method, path)] = responder

    def add_responder(self, path: str, responder: Responder, method: str = 'GET') -> None:
        self.responses[(method, path)] = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        responder = self.responses.get((request.method, request.url.path))
        if responder is None:
            raise AssertionError(f'Unexpected request to {request.method} {request.url.path}')
        return responder(request)


class FailingStore(MemoryStore):
    """Memory store whose selected operations raise `StorageError`."""

    def __init__(self, *, fail_on: set[str], initial: dict[str, str] | None = None) -> None:
        super().__init__(initial)
        self.fail_on = fail_on

    def _check(self, operation: str, key: str | None) -> None:
        if operation in self.fail_on:
            raise StorageError(operation, key, OSError('disk unavailable'))

    async def get(self, key: str) -> str | None:
        self._check('get', key)
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        self._check('set', key)
        await super().set(key, value)

    async def remove(self, key: str) -> None:
        self._check('remove', key)
        await super().remove(key)

    async def keys(self) -> list[str]:
        self._check('keys', None)
        return await super().keys()


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def config() -> Config:
    return Config(
        base_url='https://rides.example.test/api',
        user_agent='pytest-agent',
        timeout=5.0,
        cache_ttl=300.0,
        max_attempts=3,
        retry_initial_delay=0.01,  # Fast for tests
    )


@pytest.fixture
def mock_api() -> tuple[MockAPI, httpx.MockTransport]:
    api = MockAPI()
    transport = httpx.MockTransport(api.handler)
    return api, transport


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def cache(store: MemoryStore, clock: FakeClock) -> TTLCache:
    return TTLCache(store, 300.0, clock=clock)


@pytest.fixture
def retry_policy(recording_sleep: RecordingSleep) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_delay=1.0, sleep=recording_sleep)


@pytest.fixture
def ride_client(config: Config, mock_api: tuple[MockAPI, httpx.MockTransport]) -> RideShareClient:
    _, transport = mock_api
    return RideShareClient(config, token_provider=lambda: 'token-abc', transport=transport)
