from __future__ import annotations

import abc
import hashlib
import logging
import time
import types
import typing as tp
from copy import deepcopy
from pathlib import Path

import anyio

from ._lfu_cache import LFUCache
from ._models import CacheItem, CacheOptions
from ._serializers import BaseSerializer, JSONSerializer, Metadata
from ._utils import float_seconds_to_int_milliseconds

if tp.TYPE_CHECKING:  # pragma: no cover
    from typing_extensions import Self

try:
    import redis.asyncio as redis
except ImportError:  # pragma: no cover
    redis = None  # type: ignore

logger = logging.getLogger("fetchcache.storages")

__all__ = (
    "BaseKeyValueCache",
    "NoopKeyValueCache",
    "InMemoryKeyValueCache",
    "FileKeyValueCache",
    "RedisKeyValueCache",
    "PrefixingKeyValueCache",
)

V = tp.TypeVar("V")


def _ttl_from(options: tp.Optional[CacheOptions]) -> tp.Optional[float]:
    if not options:
        return None
    return options.get("ttl") or None


class BaseKeyValueCache(abc.ABC, tp.Generic[V]):
    """
    An asynchronous key-value store with optional per-entry expiration.

    A key that was never set, was deleted, or has expired reads as ``None``.
    """

    @abc.abstractmethod
    async def get(self, key: str) -> tp.Optional[V]:
        raise NotImplementedError()

    @abc.abstractmethod
    async def set(self, key: str, value: V, options: tp.Optional[CacheOptions] = None) -> None:
        """
        Store the value under the key.

        Args:
            key: Key of the entry.
            value: The value to store.
            options: Storage options. ``ttl`` is the number of seconds the entry
                lives for; without it the entry never expires.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError()

    async def aclose(self) -> None:
        return

    async def __aenter__(self) -> "Self":
        return self

    async def __aexit__(
        self,
        exc_type: tp.Optional[tp.Type[BaseException]] = None,
        exc_value: tp.Optional[BaseException] = None,
        traceback: tp.Optional[types.TracebackType] = None,
    ) -> None:
        await self.aclose()


class NoopKeyValueCache(BaseKeyValueCache[V]):
    """
    A storage that never retains anything, so every lookup is a miss.
    """

    async def get(self, key: str) -> tp.Optional[V]:
        return None

    async def set(self, key: str, value: V, options: tp.Optional[CacheOptions] = None) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None


class PrefixingKeyValueCache(BaseKeyValueCache[V]):
    """
    Namespaces every key of the wrapped storage, so that several users can share one backend.

    :param wrapped: The storage that actually keeps the entries
    :type wrapped: BaseKeyValueCache
    :param prefix: A string prepended to every key
    :type prefix: str
    """

    def __init__(self, wrapped: BaseKeyValueCache[V], prefix: str) -> None:
        self._wrapped = wrapped
        self._prefix = prefix

    @property
    def wrapped(self) -> BaseKeyValueCache[V]:
        return self._wrapped

    async def get(self, key: str) -> tp.Optional[V]:
        return await self._wrapped.get(self._prefix + key)

    async def set(self, key: str, value: V, options: tp.Optional[CacheOptions] = None) -> None:
        await self._wrapped.set(self._prefix + key, value, options)

    async def delete(self, key: str) -> None:
        await self._wrapped.delete(self._prefix + key)

    async def aclose(self) -> None:
        await self._wrapped.aclose()


class InMemoryKeyValueCache(BaseKeyValueCache[V]):
    """
    A simple in-memory storage.

    Values are copied on the way in and on the way out, so mutating a
    returned value never changes the stored one.

    :param capacity: The maximum number of entries kept, the least frequently used one is evicted first,
        defaults to 128
    :type capacity: int, optional
    """

    def __init__(self, capacity: int = 128) -> None:
        self._cache: LFUCache[str, tp.Tuple[V, tp.Optional[float]]] = LFUCache(capacity=capacity)
        self._lock = anyio.Lock()

    async def get(self, key: str) -> tp.Optional[V]:
        async with self._lock:
            try:
                value, deadline = self._cache.get(key)
            except KeyError:
                return None

            if deadline is not None and deadline <= time.time():
                self._cache.remove_key(key)
                return None
            return deepcopy(value)

    async def set(self, key: str, value: V, options: tp.Optional[CacheOptions] = None) -> None:
        ttl = _ttl_from(options)
        deadline = time.time() + ttl if ttl is not None else None

        async with self._lock:
            self._cache.put(key, (deepcopy(value), deadline))
        await self._remove_expired_entries()

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._cache.remove_key(key)

    async def _remove_expired_entries(self) -> None:
        async with self._lock:
            now = time.time()
            expired = [
                key for key, ((_, deadline), _) in self._cache.cache.items() if deadline is not None and deadline <= now
            ]

            for key in expired:
                self._cache.remove_key(key)


class FileKeyValueCache(BaseKeyValueCache[CacheItem]):
    """
    A simple file storage, one file per key.

    :param serializer: Serializer capable of serializing and de-serializing cache items, defaults to None
    :type serializer: tp.Optional[BaseSerializer], optional
    :param base_path: A storage base path where the entries should be saved, defaults to None
    :type base_path: tp.Optional[Path], optional
    """

    def __init__(
        self,
        serializer: tp.Optional[BaseSerializer] = None,
        base_path: tp.Optional[tp.Union[str, Path]] = None,
    ) -> None:
        self._serializer = serializer or JSONSerializer()
        self._base_path = Path(base_path) if base_path is not None else Path(".cache/fetchcache")
        self._gitignore_file = self._base_path / ".gitignore"

        if not self._base_path.is_dir():
            self._base_path.mkdir(parents=True)

        if not self._gitignore_file.is_file():
            with open(self._gitignore_file, "w", encoding="utf-8") as f:
                f.write("# Automatically created by fetchcache\n*")

        self._lock = anyio.Lock()

    def _path_for(self, key: str) -> anyio.Path:
        return anyio.Path(self._base_path / hashlib.sha256(key.encode("utf-8")).hexdigest())

    async def _read(self, path: anyio.Path) -> tp.Union[str, bytes]:
        if self._serializer.is_binary:
            return await path.read_bytes()
        return await path.read_text(encoding="utf-8")

    async def _write(self, path: anyio.Path, data: tp.Union[str, bytes]) -> None:
        if isinstance(data, bytes):
            await path.write_bytes(data)
        else:
            await path.write_text(data, encoding="utf-8")

    async def get(self, key: str) -> tp.Optional[CacheItem]:
        entry_path = self._path_for(key)

        async with self._lock:
            if not await entry_path.is_file():
                return None

            read_data = await self._read(entry_path)
            if len(read_data) == 0:
                return None

            item, metadata = self._serializer.loads(read_data)
            expires_at = metadata["expires_at"]
            if expires_at is not None and expires_at <= time.time():
                logger.debug(f"Removing the expired entry stored at {entry_path}.")
                await entry_path.unlink()
                return None
            return item

    async def set(self, key: str, value: CacheItem, options: tp.Optional[CacheOptions] = None) -> None:
        ttl = _ttl_from(options)
        now = time.time()
        metadata = Metadata(cache_key=key, created_at=now, expires_at=now + ttl if ttl is not None else None)

        async with self._lock:
            await self._write(self._path_for(key), self._serializer.dumps(value, metadata))

    async def delete(self, key: str) -> None:
        entry_path = self._path_for(key)

        async with self._lock:
            await entry_path.unlink(missing_ok=True)


class RedisKeyValueCache(BaseKeyValueCache[CacheItem]):
    """
    A simple redis storage, expiration is left to redis itself.

    :param serializer: Serializer capable of serializing and de-serializing cache items, defaults to None
    :type serializer: tp.Optional[BaseSerializer], optional
    :param client: A client for redis, defaults to None
    :type client: tp.Optional["redis.Redis"], optional
    """

    def __init__(
        self,
        serializer: tp.Optional[BaseSerializer] = None,
        client: tp.Optional[redis.Redis] = None,  # type: ignore
    ) -> None:
        if redis is None:  # pragma: no cover
            raise RuntimeError(
                f"The `{type(self).__name__}` was used, but the required packages were not found. "
                "Check that you have `fetchcache` installed with the `redis` extension as shown.\n"
                "```pip install fetchcache[redis]```"
            )

        self._serializer = serializer or JSONSerializer()
        self._client = client if client is not None else redis.Redis()

    async def get(self, key: str) -> tp.Optional[CacheItem]:
        stored = await self._client.get(key)
        if stored is None:
            return None

        item, _ = self._serializer.loads(stored)
        return item

    async def set(self, key: str, value: CacheItem, options: tp.Optional[CacheOptions] = None) -> None:
        ttl = _ttl_from(options)
        now = time.time()
        metadata = Metadata(cache_key=key, created_at=now, expires_at=now + ttl if ttl is not None else None)
        px = float_seconds_to_int_milliseconds(ttl) if ttl is not None else None

        await self._client.set(key, self._serializer.dumps(value, metadata), px=px)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def aclose(self) -> None:  # pragma: no cover
        await self._client.aclose()
