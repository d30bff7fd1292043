"""Durable string key-value stores shared by the cache and the session."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote, unquote

from ridesync.errors import StorageError

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Async string-keyed store.

    Every operation is independently fallible and raises `StorageError`.
    There are no multi-key transactions.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def keys(self) -> list[str]: ...


class MemoryStore:
    """Process-local store, used in tests and when no storage directory is configured."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data)


class FileStore:
    """Crash-durable store keeping one file per key inside a directory.

    Values are written to a temporary file and moved into place with
    `os.replace`, so a reader sees either the old or the new value, never a
    partial one. Blocking file I/O runs in a worker thread. A file that is
    not valid UTF-8 fails like any other unreadable file, with `StorageError`.
    """

    suffix = '.val'

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._dir = Path(directory)

    async def get(self, key: str) -> str | None:
        return await self._run('get', key, self._read, key)

    async def set(self, key: str, value: str) -> None:
        await self._run('set', key, self._write, key, value)

    async def remove(self, key: str) -> None:
        await self._run('remove', key, self._unlink, key)

    async def keys(self) -> list[str]:
        return await self._run('keys', None, self._list)

    async def _run(self, operation, key, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(operation, key, exc) from exc

    def _path(self, key: str) -> Path:
        return self._dir / f'{quote(key, safe="")}{self.suffix}'

    def _read(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding='utf-8')
        except FileNotFoundError:
            return None

    def _write(self, key: str, value: str) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix='.tmp-')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                handle.write(value)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _unlink(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def _list(self) -> list[str]:
        if not self._dir.exists():
            return []
        return [
            unquote(path.name[: -len(self.suffix)])
            for path in self._dir.iterdir()
            if path.name.endswith(self.suffix) and not path.name.startswith('.tmp-')
        ]


def open_store(directory: str | None) -> KeyValueStore:
    """Return a `FileStore` for *directory*, or a `MemoryStore` when it is None."""
    if directory is None:
        logger.debug('No storage directory configured, using in-memory store')
        return MemoryStore()
    return FileStore(directory)
