from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Tuple,
    TypedDict,
    Union,
)

import httpx
from typing_extensions import TypeAlias

__all__ = (
    "CacheItem",
    "CacheOptions",
    "CacheOptionsFactory",
    "FetchResult",
    "RequestOptions",
)


class CacheOptions(TypedDict, total=False):
    # Keys other than the ones below are passed to the storage untouched.
    ttl: Optional[float]
    """
    Seconds the response may be reused for. When set, the caching headers of
    the response are ignored and any successful response is stored.
    """


@dataclass
class RequestOptions:
    method: str = "GET"
    headers: Union[Mapping[str, str], Iterable[Tuple[str, str]], None] = None
    skip_cache: bool = False
    """
    Do not read from the cache. The response is still stored when it is cacheable,
    so this forces a refresh rather than disabling caching.
    """
    transport_options: Dict[str, Any] = field(default_factory=dict)
    """Keyword arguments forwarded to the fetcher, e.g. ``content``, ``json``, ``params`` or ``timeout``."""


CacheOptionsFactory: TypeAlias = Callable[
    [str, httpx.Response, RequestOptions],
    Union[Optional[CacheOptions], Awaitable[Optional[CacheOptions]]],
]


@dataclass(frozen=True)
class CacheItem:
    policy: Dict[str, Any]
    """Serialized :class:`~fetchcache.CachePolicy`."""
    ttl_override: Optional[float]
    body: Any


@dataclass
class FetchResult:
    response: httpx.Response
    parsed_body: Any
    from_cache: bool = False
    cache_write: Optional["asyncio.Task[None]"] = None
    """
    The pending write of the response into the storage, if one was started.
    Awaiting it is optional and re-raises storage errors.
    """
