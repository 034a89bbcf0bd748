from __future__ import annotations

import types
import typing as tp

import httpx

from ._models import RequestOptions

if tp.TYPE_CHECKING:  # pragma: no cover
    from typing_extensions import Self

__all__ = ("Fetcher", "HTTPXFetcher")

Fetcher = tp.Callable[[str, RequestOptions], tp.Awaitable[httpx.Response]]


def _header_pairs(headers: tp.Any) -> tp.List[tp.Tuple[str, str]]:
    if headers is None:
        return []
    if isinstance(headers, tp.Mapping):
        return list(headers.items())
    return list(headers)


class HTTPXFetcher:
    """
    Sends requests through an :class:`httpx.AsyncClient`.

    :param client: The client used to send requests; when omitted, one is created and owned by the fetcher
    :type client: tp.Optional[httpx.AsyncClient], optional
    """

    def __init__(self, client: tp.Optional[httpx.AsyncClient] = None) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient()

    async def __call__(self, url: str, request: RequestOptions) -> httpx.Response:
        return await self._client.request(
            request.method,
            url,
            headers=_header_pairs(request.headers),
            **request.transport_options,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "Self":
        return self

    async def __aexit__(
        self,
        exc_type: tp.Optional[tp.Type[BaseException]] = None,
        exc_value: tp.Optional[BaseException] = None,
        traceback: tp.Optional[types.TracebackType] = None,
    ) -> None:
        await self.aclose()
