"""Configuration handling for the ridesync core."""

from __future__ import annotations

import math
from os import environ
from dataclasses import dataclass
from urllib.parse import urlparse

from ridesync import __version__

DEFAULT_BASE_URL = 'http://localhost:5001/api'
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_CACHE_TTL_SECONDS = 300.0
DEFAULT_CACHE_PREFIX = 'ridesync_cache:'
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_INITIAL_DELAY = 5.0


@dataclass(slots=True)
class Config:
    """Configuration settings for the ridesync core.

    Values can be customized via environment variables or direct instantiation.

    Environment Variables:
        RIDESYNC_BASE_URL: Base URL of the backend API (default: http://localhost:5001/api)
        RIDESYNC_USER_AGENT: Custom User-Agent header
        RIDESYNC_TIMEOUT: Request timeout in seconds (default: 60.0)
        RIDESYNC_CACHE_TTL: Cache entry lifetime in seconds (default: 300.0)
        RIDESYNC_CACHE_PREFIX: Key prefix of cache entries in the store (default: ridesync_cache:)
        RIDESYNC_MAX_ATTEMPTS: Attempts per fetch, first call included (default: 5)
        RIDESYNC_RETRY_INITIAL_DELAY: Base of the linear backoff in seconds (default: 5.0)
        RIDESYNC_STORAGE_DIR: Directory of the file-backed store (default: in-memory store)

    The long timeout and initial delay leave room for a backend that
    cold-starts in tens of seconds.

    Example:
        >>> config = Config.from_env()
        >>> config = Config(base_url='https://rides.example.com/api', max_attempts=3)
    """

    base_url: str = DEFAULT_BASE_URL
    user_agent: str = f'ridesync/{__version__}'
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS
    cache_prefix: str = DEFAULT_CACHE_PREFIX
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY
    storage_dir: str | None = None

    @classmethod
    def from_env(cls) -> Config:
        """Create a configuration instance from environment variables.

        Numbers that are unparsable or below their minimum fall back to the
        defaults.

        Raises:
            ValueError: If the resulting configuration is inconsistent.
        """

        return cls(
            base_url=environ.get('RIDESYNC_BASE_URL', DEFAULT_BASE_URL).rstrip('/'),
            user_agent=environ.get('RIDESYNC_USER_AGENT') or f'ridesync/{__version__}',
            timeout=_read_number('RIDESYNC_TIMEOUT', DEFAULT_TIMEOUT_SECONDS),
            cache_ttl=_read_number('RIDESYNC_CACHE_TTL', DEFAULT_CACHE_TTL_SECONDS),
            cache_prefix=environ.get('RIDESYNC_CACHE_PREFIX') or DEFAULT_CACHE_PREFIX,
            max_attempts=int(
                _read_number('RIDESYNC_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS, minimum=1)
            ),
            retry_initial_delay=_read_number(
                'RIDESYNC_RETRY_INITIAL_DELAY', DEFAULT_RETRY_INITIAL_DELAY, minimum=0.0
            ),
            storage_dir=environ.get('RIDESYNC_STORAGE_DIR') or None,
        )._validate()

    def _validate(self) -> Config:
        """Reject settings the cache, retry policy or client cannot work with.

        Raises:
            ValueError: If any configuration value is invalid.
        """
        parsed = urlparse(self.base_url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError(f'base_url must be an http(s) URL: {self.base_url}')
        if self.timeout <= 0:
            raise ValueError(f'timeout must be positive: {self.timeout}')
        if self.cache_ttl < 0:
            raise ValueError(f'cache_ttl must be non-negative: {self.cache_ttl}')
        # An empty prefix would let invalidate_all() remove the session keys.
        if not self.cache_prefix:
            raise ValueError('cache_prefix must not be empty')
        if self.max_attempts < 1:
            raise ValueError(f'max_attempts must be at least 1: {self.max_attempts}')
        if self.retry_initial_delay < 0:
            raise ValueError(
                f'retry_initial_delay must be non-negative: {self.retry_initial_delay}'
            )
        return self


def _read_number(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value):
        return default
    if minimum is not None and value < minimum:
        return default
    return value
