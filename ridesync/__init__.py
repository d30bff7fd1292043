"""Client-side data-synchronization core of the ride-booking app."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - fallback only triggers when metadata missing
    __version__: str = version('ridesync')
except PackageNotFoundError:  # pragma: no cover
    __version__ = '0.1.0'

from .cache import TTLCache  # noqa: E402
from .client import RideShareClient  # noqa: E402
from .core import RideSyncCore, create_core  # noqa: E402
from .lifecycle import RequestLifecycle, ViewRegistry  # noqa: E402
from .retry import CancelToken, RetryPolicy, execute  # noqa: E402
from .session import Session, SessionStore, UserProfile  # noqa: E402

__all__ = [
    'CancelToken',
    'RequestLifecycle',
    'RetryPolicy',
    'RideShareClient',
    'RideSyncCore',
    'Session',
    'SessionStore',
    'TTLCache',
    'UserProfile',
    'ViewRegistry',
    'create_core',
    'execute',
    '__version__',
]
