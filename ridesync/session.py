"""Process-wide authentication state with optimistic persistence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Literal, Mapping, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ridesync.errors import ApiError, RideSyncError, StorageError
from ridesync.storage import KeyValueStore

logger = logging.getLogger(__name__)

TOKEN_KEY = 'token'
USER_KEY = 'user'


class UserProfile(BaseModel):
    """Authenticated user as returned by the backend.

    Fields the backend adds beyond these are preserved.
    """

    model_config = ConfigDict(extra='allow', frozen=True, populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices('id', '_id'))
    name: str | None = None
    email: str | None = None
    role: Literal['student', 'driver'] | None = None
    is_verified: bool | None = Field(default=None, alias='isVerified')


@dataclass(frozen=True, slots=True)
class Session:
    token: str | None = None
    user: UserProfile | None = None
    is_loading: bool = True

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None and self.user is not None


class ProfileApi(Protocol):
    async def current_user(self) -> dict[str, Any]: ...


Listener = Callable[[Session], None]


class SessionStore:
    """Single owner of the in-memory `Session`.

    The in-memory session is the source of truth for the running process;
    the durable store only makes it survive restarts. `login` and
    `refresh_user` update memory first and persist in detached tasks whose
    failures are logged. `logout` removes the stored credentials before
    touching memory and lets storage failures propagate.

    Persistence tasks run one at a time and `logout` waits for the pending
    ones, so a late login write cannot bring back removed credentials.
    `login` and `logout` advance an epoch; a restore or profile refresh
    that started in an earlier epoch is dropped when it completes.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        api: ProfileApi | None = None,
        token_key: str = TOKEN_KEY,
        user_key: str = USER_KEY,
    ) -> None:
        self._store = store
        self._api = api
        self._token_key = token_key
        self._user_key = user_key
        self._session = Session()
        self._listeners: list[Listener] = []
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()
        self._epoch = 0

    @property
    def snapshot(self) -> Session:
        return self._session

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for session changes; returns a disposer."""
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    async def restore_session(self) -> Session:
        """Load the stored session; safe to call more than once.

        Stored credentials never replace an authenticated in-memory session.
        """
        epoch = self._epoch
        try:
            token, user_json = await asyncio.gather(
                self._store.get(self._token_key),
                self._store.get(self._user_key),
            )
        except StorageError as exc:
            logger.error('Error restoring session: %s', exc)
            token, user_json = None, None

        user = _parse_user(user_json) if user_json else None
        current = epoch == self._epoch and not self._session.is_authenticated
        if token and user is not None and current:
            self._set(token=token, user=user, is_loading=False)
        elif self._session.is_loading:
            self._set(is_loading=False)
        return self._session

    def login(self, token: str, user: UserProfile | Mapping[str, Any]) -> Session:
        """Authenticate immediately and persist the credentials in the background."""
        profile = user if isinstance(user, UserProfile) else UserProfile.model_validate(user)
        self._epoch += 1
        self._set(token=token, user=profile)
        self._persist_in_background(
            {self._token_key: token, self._user_key: _dump_user(profile)}
        )
        return self._session

    async def logout(self) -> None:
        """Remove stored credentials, then clear the in-memory session.

        Raises:
            StorageError: If the credentials could not be removed; the
                in-memory session is left untouched in that case.
        """
        self._epoch += 1
        await self.flush()
        async with self._lock:
            await self._store.remove(self._token_key)
            await self._store.remove(self._user_key)
        self._set(token=None, user=None)

    async def refresh_user(self) -> UserProfile | None:
        """Reload the profile from the backend.

        Returns the new profile, or None when the refresh failed and the
        session was left unchanged.
        """
        if self._api is None:
            logger.warning('Cannot refresh user: no API client configured')
            return None
        epoch = self._epoch
        try:
            response = await self._api.current_user()
        except ApiError as exc:
            if exc.status == 404:
                logger.debug('Profile endpoint unavailable: %s', exc)
            else:
                logger.error('Error refreshing user: %s', exc)
            return None
        except RideSyncError as exc:
            logger.error('Error refreshing user: %s', exc)
            return None

        user_data = response.get('user')
        if not response.get('success') or not user_data:
            return None
        try:
            profile = UserProfile.model_validate(user_data)
        except ValidationError as exc:
            logger.warning('Ignoring malformed user profile: %s', exc)
            return None
        if epoch != self._epoch:
            logger.debug('Dropping profile refresh that raced a login or logout')
            return None

        self._set(user=profile)
        self._persist_in_background({self._user_key: _dump_user(profile)})
        return profile

    async def flush(self) -> None:
        """Wait until every pending persistence task has finished."""
        while self._pending:
            await asyncio.gather(*self._pending)

    def _persist_in_background(self, values: dict[str, str]) -> None:
        task = asyncio.create_task(self._persist(values))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, values: dict[str, str]) -> None:
        async with self._lock:
            try:
                for key, value in values.items():
                    await self._store.set(key, value)
            except StorageError as exc:
                # The in-memory session stays valid for this process.
                logger.error('Error saving session data to storage (non-critical): %s', exc)

    def _set(self, **changes: Any) -> None:
        updated = replace(self._session, **changes)
        if updated == self._session:
            return
        self._session = updated
        for listener in list(self._listeners):
            listener(updated)


def _dump_user(profile: UserProfile) -> str:
    return profile.model_dump_json(by_alias=True)


def _parse_user(raw: str) -> UserProfile | None:
    try:
        return UserProfile.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning('Discarding unreadable stored user: %s', exc)
        return None
