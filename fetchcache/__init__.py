from fetchcache._body import parse_response_body as parse_response_body
from fetchcache._exceptions import (
    FetchCacheError as FetchCacheError,
    InvalidPolicyError as InvalidPolicyError,
    SerializationError as SerializationError,
)
from fetchcache._fetchers import Fetcher as Fetcher, HTTPXFetcher as HTTPXFetcher
from fetchcache._headers import (
    CacheControl as CacheControl,
    Headers as Headers,
    parse_cache_control as parse_cache_control,
)
from fetchcache._http_cache import CACHE_KEY_PREFIX as CACHE_KEY_PREFIX, HTTPCache as HTTPCache
from fetchcache._mock import MockAsyncTransport as MockAsyncTransport
from fetchcache._models import (
    CacheItem as CacheItem,
    CacheOptions as CacheOptions,
    CacheOptionsFactory as CacheOptionsFactory,
    FetchResult as FetchResult,
    RequestOptions as RequestOptions,
)
from fetchcache._policy import (
    CachePolicy as CachePolicy,
    CachePolicyOptions as CachePolicyOptions,
    PolicyRequest as PolicyRequest,
    PolicyResponse as PolicyResponse,
    RevalidatedPolicy as RevalidatedPolicy,
)
from fetchcache._serializers import (
    BaseSerializer as BaseSerializer,
    JSONSerializer as JSONSerializer,
    Metadata as Metadata,
    PickleSerializer as PickleSerializer,
)
from fetchcache._storages import (
    BaseKeyValueCache as BaseKeyValueCache,
    FileKeyValueCache as FileKeyValueCache,
    InMemoryKeyValueCache as InMemoryKeyValueCache,
    NoopKeyValueCache as NoopKeyValueCache,
    PrefixingKeyValueCache as PrefixingKeyValueCache,
    RedisKeyValueCache as RedisKeyValueCache,
)

__all__ = (
    # Fetching
    "HTTPCache",
    "CACHE_KEY_PREFIX",
    "FetchResult",
    "RequestOptions",
    "CacheOptions",
    "CacheOptionsFactory",
    "CacheItem",
    "Fetcher",
    "HTTPXFetcher",
    "parse_response_body",
    # Caching rules
    "CachePolicy",
    "CachePolicyOptions",
    "PolicyRequest",
    "PolicyResponse",
    "RevalidatedPolicy",
    ## Headers
    "Headers",
    "CacheControl",
    "parse_cache_control",
    # Storages
    "BaseKeyValueCache",
    "NoopKeyValueCache",
    "InMemoryKeyValueCache",
    "FileKeyValueCache",
    "RedisKeyValueCache",
    "PrefixingKeyValueCache",
    # Serializers
    "BaseSerializer",
    "JSONSerializer",
    "PickleSerializer",
    "Metadata",
    # Exceptions
    "FetchCacheError",
    "InvalidPolicyError",
    "SerializationError",
    # Testing
    "MockAsyncTransport",
)

__version__ = "0.1.0"
