from __future__ import annotations

import asyncio
import inspect
import logging
import types
import typing as tp
from dataclasses import replace

import httpx

from ._body import parse_response_body
from ._fetchers import Fetcher, HTTPXFetcher
from ._headers import Headers
from ._models import CacheItem, CacheOptions, CacheOptionsFactory, FetchResult, RequestOptions
from ._policy import CachePolicy, CachePolicyOptions, PolicyRequest, PolicyResponse
from ._storages import BaseKeyValueCache, NoopKeyValueCache, PrefixingKeyValueCache
from ._utils import get_safe_url, round_half_up

if tp.TYPE_CHECKING:  # pragma: no cover
    from typing_extensions import Self

logger = logging.getLogger("fetchcache.http_cache")

__all__ = ("HTTPCache", "CACHE_KEY_PREFIX")

CACHE_KEY_PREFIX = "httpcache:"

BodyParser = tp.Callable[[httpx.Response], tp.Awaitable[tp.Any]]


def policy_request_from(url: str, request: RequestOptions) -> PolicyRequest:
    return PolicyRequest(url=url, method=request.method, headers=Headers.from_any(request.headers))


def policy_response_from(response: httpx.Response) -> PolicyResponse:
    # multi_items keeps repeated fields such as set-cookie apart
    return PolicyResponse(status=response.status_code, headers=Headers.from_pairs(response.headers.multi_items()))


def policy_headers_to_request_headers(headers: Headers) -> tp.Dict[str, str]:
    """
    Flatten policy headers into one value per name, joining repeated fields with ", ".
    """
    return {name: headers[name] for name in headers}


def response_from_policy(policy: CachePolicy, url: tp.Optional[str], method: str) -> httpx.Response:
    """
    Build a body-less response out of what the policy knows about the stored response.
    """
    return httpx.Response(
        status_code=policy.described_status,
        headers=policy.response_headers().multi_items(),
        request=httpx.Request(method, url) if url else None,
    )


def can_be_revalidated(response: httpx.Response) -> bool:
    return "etag" in response.headers or "last-modified" in response.headers


def _log_cache_write_failure(task: "asyncio.Task[None]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Writing a response to the cache failed.", exc_info=exc)


class HTTPCache:
    """
    Fetches URLs, reusing and revalidating stored responses according to HTTP caching rules.

    Entries are kept in ``storage`` under keys prefixed with ``"httpcache:"``,
    so the storage can be shared with unrelated users.

    :param storage: Storage for the cache entries, defaults to a storage that keeps nothing
    :type storage: tp.Optional[BaseKeyValueCache[CacheItem]], optional
    :param fetcher: Callable that performs the network request, defaults to an httpx-based fetcher
    :type fetcher: tp.Optional[Fetcher], optional
    :param body_parser: Coroutine function turning a response into its parsed body
    :type body_parser: tp.Optional[BodyParser], optional
    :param policy_options: Default options of the caching rules, can be overridden per request
    :type policy_options: tp.Optional[CachePolicyOptions], optional
    """

    def __init__(
        self,
        storage: tp.Optional[BaseKeyValueCache[CacheItem]] = None,
        fetcher: tp.Optional[Fetcher] = None,
        body_parser: tp.Optional[BodyParser] = None,
        policy_options: tp.Optional[CachePolicyOptions] = None,
    ) -> None:
        self._storage: BaseKeyValueCache[CacheItem] = PrefixingKeyValueCache(
            storage if storage is not None else NoopKeyValueCache(), CACHE_KEY_PREFIX
        )
        self._fetcher = fetcher if fetcher is not None else HTTPXFetcher()
        self._parse_body = body_parser if body_parser is not None else parse_response_body
        self._policy_options = policy_options
        self._pending_writes: tp.Set["asyncio.Task[None]"] = set()

    async def fetch(
        self,
        url: tp.Union[str, httpx.URL],
        request: tp.Optional[RequestOptions] = None,
        *,
        cache_key: tp.Optional[str] = None,
        cache_options: tp.Union[CacheOptions, CacheOptionsFactory, None] = None,
        policy_options: tp.Optional[CachePolicyOptions] = None,
    ) -> FetchResult:
        """
        Fetch the URL, from the cache when a stored response can be used.

        :param url: The URL to fetch
        :param request: Method, headers and transport options of the request, defaults to a plain GET
        :param cache_key: Key of the cache entry, defaults to the URL. Requests to different URLs
            sharing a key share one entry.
        :param cache_options: Storage options, or a callable computing them from
            ``(url, response, request)`` once the response is known. A ``ttl``
            overrides the caching headers of the response.
        :param policy_options: Options of the caching rules for this request
        :return: The response, its parsed body and, when the response is being stored, the pending write
        """
        url_string = str(url)
        request = request if request is not None else RequestOptions()
        request = replace(request, method=request.method.upper())
        cache_key = cache_key if cache_key is not None else url_string
        policy_options = policy_options if policy_options is not None else self._policy_options
        safe_url = get_safe_url(url_string)

        # HEAD requests never touch the cache, reusing GET entries for them is not supported.
        if request.method == "HEAD":
            logger.debug(f"Bypassing the cache for the HEAD request to {safe_url}.")
            return FetchResult(
                response=await self._fetcher(url_string, request),
                parsed_body="",
                from_cache=False,
            )

        entry = await self._storage.get(cache_key) if not request.skip_cache else None

        if entry is None:
            logger.debug(f"No usable cache entry for {safe_url}, fetching it.")
            response = await self._fetcher(url_string, request)

            policy = CachePolicy(
                policy_request_from(url_string, request),
                policy_response_from(response),
                policy_options,
            )
            parsed_body = await self._parse_body(response)

            return await self._store_response_and_return(
                url_string,
                response,
                parsed_body,
                request,
                policy,
                cache_key,
                cache_options,
            )

        policy = CachePolicy.from_object(entry.policy)
        # A custom cache key may map many URLs to one entry, so the stored URL must not prevent a match.
        url_from_policy = policy.detach_url()

        if entry.ttl_override:
            is_fresh = policy.age() < entry.ttl_override
        else:
            is_fresh = policy.satisfies_without_revalidation(policy_request_from(url_string, request))

        if is_fresh:
            logger.debug(f"Serving the cached response for {safe_url}.")
            return FetchResult(
                response=response_from_policy(policy, url_from_policy, request.method),
                parsed_body=entry.body,
                from_cache=True,
            )

        # The stored validators, if any, let the origin answer with a small 304 when nothing
        # changed. The result is written back even then, since the headers may update the policy.
        logger.debug(f"The cache entry for {safe_url} is stale, revalidating it.")
        revalidation_headers = policy.revalidation_headers(policy_request_from(url_string, request))
        revalidation_request = replace(request, headers=policy_headers_to_request_headers(revalidation_headers))
        revalidation_response = await self._fetcher(url_string, revalidation_request)

        revalidated = policy.revalidated_policy(
            policy_request_from(url_string, revalidation_request),
            policy_response_from(revalidation_response),
        )
        parsed_body = await self._parse_body(revalidation_response) if revalidated.modified else entry.body

        result = await self._store_response_and_return(
            url_string,
            response_from_policy(revalidated.policy, revalidated.policy.described_url, request.method),
            parsed_body,
            request,
            revalidated.policy,
            cache_key,
            cache_options,
        )
        result.from_cache = not revalidated.modified
        return result

    async def _store_response_and_return(
        self,
        url: str,
        response: httpx.Response,
        parsed_body: tp.Any,
        request: RequestOptions,
        policy: CachePolicy,
        cache_key: str,
        cache_options: tp.Union[CacheOptions, CacheOptionsFactory, None],
    ) -> FetchResult:
        if callable(cache_options):
            computed = cache_options(url, response, request)
            if inspect.isawaitable(computed):
                computed = await computed
            cache_options = computed

        ttl_override = cache_options.get("ttl") if cache_options else None
        safe_url = get_safe_url(url)

        # With a TTL override only successful responses are stored, the method and
        # the caching headers are ignored. Without one, only cacheable GET responses are.
        if ttl_override is not None:
            eligible = bool(ttl_override) and 200 <= policy.described_status <= 299
        else:
            eligible = request.method == "GET" and policy.storable()

        if not eligible:
            logger.debug(f"Not storing the response for {safe_url} since it is not cacheable.")
            return FetchResult(response=response, parsed_body=parsed_body)

        ttl = round_half_up(policy.time_to_live()) if ttl_override is None else ttl_override
        if ttl <= 0:
            logger.debug(f"Not storing the response for {safe_url} since it is already expired.")
            return FetchResult(response=response, parsed_body=parsed_body)

        # Keep revalidatable responses past their freshness so that a conditional request
        # can still reuse them once they are stale.
        if can_be_revalidated(response):
            ttl *= 2

        logger.debug(f"Storing the response for {safe_url} for {ttl} seconds.")
        item = CacheItem(policy=policy.to_object(), ttl_override=ttl_override, body=parsed_body)
        cache_write = asyncio.ensure_future(
            self._write_to_cache(cache_key, item, {**(cache_options or {}), "ttl": ttl})  # type: ignore[typeddict-item]
        )
        # The event loop only keeps weak references to tasks.
        self._pending_writes.add(cache_write)
        cache_write.add_done_callback(self._pending_writes.discard)
        cache_write.add_done_callback(_log_cache_write_failure)

        return FetchResult(response=response, parsed_body=parsed_body, cache_write=cache_write)

    async def _write_to_cache(self, cache_key: str, item: CacheItem, options: CacheOptions) -> None:
        await self._storage.set(cache_key, item, options)

    async def aclose(self) -> None:
        """
        Wait for the pending cache writes, then close the storage and the fetcher.

        Failed writes were already logged, so they are not raised here.
        """
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)
        await self._storage.aclose()
        aclose = getattr(self._fetcher, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> "Self":
        return self

    async def __aexit__(
        self,
        exc_type: tp.Optional[tp.Type[BaseException]] = None,
        exc_value: tp.Optional[BaseException] = None,
        traceback: tp.Optional[types.TracebackType] = None,
    ) -> None:
        await self.aclose()
