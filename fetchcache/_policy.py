from __future__ import annotations

import logging
import time
import typing as tp
from dataclasses import dataclass, field

from ._exceptions import InvalidPolicyError
from ._headers import Headers, parse_cache_control, without_hop_by_hop_headers
from ._utils import format_http_date, get_safe_url, parse_date, round_half_up

logger = logging.getLogger("fetchcache.policy")

__all__ = (
    "CachePolicy",
    "CachePolicyOptions",
    "PolicyRequest",
    "PolicyResponse",
    "RevalidatedPolicy",
    "CACHEABLE_BY_DEFAULT_STATUS_CODES",
    "UNDERSTOOD_STATUS_CODES",
)

CACHEABLE_BY_DEFAULT_STATUS_CODES = frozenset((200, 203, 204, 206, 300, 301, 308, 404, 405, 410, 414, 501))
UNDERSTOOD_STATUS_CODES = frozenset((200, 203, 204, 300, 301, 302, 303, 307, 308, 404, 405, 410, 414, 501))

# A 304 must not overwrite fields that describe the stored content.
EXCLUDED_FROM_REVALIDATION_UPDATE = frozenset(
    ("content-length", "content-encoding", "transfer-encoding", "content-range")
)

CARGO_CULT_DIRECTIVES = frozenset(("pre-check", "post-check", "no-cache", "no-store", "must-revalidate"))

SERIALIZATION_VERSION = 1
ONE_DAY = 86_400


@dataclass
class CachePolicyOptions:
    """
    Configuration of the caching rules.

    Attributes:
        shared: Behave as a shared cache (proxy, gateway). Shared caches honor
            ``s-maxage``, ``proxy-revalidate``, ``private`` and refuse to reuse
            responses to authorized requests unless explicitly allowed.
        cache_heuristic: Fraction of the time since ``Last-Modified`` used as the
            freshness lifetime when the response carries no explicit expiration.
        immutable_min_time_to_live: Minimum freshness, in seconds, of responses
            marked ``immutable`` that carry no explicit expiration.
        ignore_cargo_cult: Drop the legacy IE ``pre-check``/``post-check``
            combination together with the directives it is usually sent with.
    """

    shared: bool = True
    cache_heuristic: float = 0.1
    immutable_min_time_to_live: float = ONE_DAY
    ignore_cargo_cult: bool = False


@dataclass
class PolicyRequest:
    url: tp.Optional[str]
    method: str = "GET"
    headers: Headers = field(default_factory=Headers)


@dataclass
class PolicyResponse:
    status: int = 200
    headers: Headers = field(default_factory=Headers)


@dataclass
class RevalidatedPolicy:
    policy: "CachePolicy"
    modified: bool
    """Whether the origin sent new content rather than confirming the stored one."""
    matches: bool
    """Whether the validation response refers to the stored representation."""


def _strip_weak_prefix(etag: str) -> str:
    etag = etag.strip()
    return etag[2:] if etag.startswith("W/") else etag


def _to_number_or_zero(value: tp.Optional[str]) -> float:
    if value is None:
        return 0
    try:
        return float(value)
    except ValueError:
        return 0


def _without_cargo_cult(headers: Headers) -> Headers:
    headers = headers.copy()
    directives = [
        directive.strip()
        for directive in headers.get("cache-control", "").split(",")
        if directive.strip() and directive.strip().split("=")[0].lower() not in CARGO_CULT_DIRECTIVES
    ]
    if directives:
        headers["cache-control"] = ", ".join(directives)
    else:
        headers.pop("cache-control", None)
    headers.pop("expires", None)
    headers.pop("pragma", None)
    return headers


class CachePolicy:
    """
    Caching rules of RFC 7234 evaluated for one request/response pair.

    The policy is built from the request that was sent and the response that
    came back, can be serialized with :meth:`to_object` and restored with
    :meth:`from_object`, and answers the questions a cache needs answered:
    may this be stored, for how long, is it fresh for a new request, how to
    revalidate it, and what does it look like after revalidation.
    """

    def __init__(
        self,
        request: PolicyRequest,
        response: PolicyResponse,
        options: tp.Optional[CachePolicyOptions] = None,
    ) -> None:
        options = options if options is not None else CachePolicyOptions()

        response_headers = response.headers.copy()
        if options.ignore_cargo_cult:
            cache_control = parse_cache_control(response_headers.get("cache-control"))
            if cache_control.has_extension("pre-check") and cache_control.has_extension("post-check"):
                response_headers = _without_cargo_cult(response_headers)

        self._response_time = self.now()
        self._is_shared = options.shared
        self._cache_heuristic = options.cache_heuristic
        self._immutable_min_ttl = options.immutable_min_time_to_live
        self._status = response.status
        self._response_headers = response_headers
        self._method = request.method.upper()
        self._url = request.url
        self._host = request.headers.get("host")
        self._no_authorization = "authorization" not in request.headers
        self._request_headers = request.headers.copy() if "vary" in response_headers else None
        self._request_cache_control = request.headers.get("cache-control")
        self._setup()

    def _setup(self) -> None:
        self._response_cc = parse_cache_control(self._response_headers.get("cache-control"))
        self._request_cc = parse_cache_control(self._request_cache_control)

        # HTTP/1.0 servers signal no-cache through Pragma
        if "cache-control" not in self._response_headers and "no-cache" in self._response_headers.get("pragma", ""):
            self._response_cc.no_cache = True

    def now(self) -> float:
        return time.time()

    @property
    def described_url(self) -> tp.Optional[str]:
        return self._url

    @property
    def described_status(self) -> int:
        return self._status

    @property
    def described_headers(self) -> Headers:
        return self._response_headers.copy()

    def detach_url(self) -> tp.Optional[str]:
        """
        Stop matching requests against the URL the policy was built for.

        Returns the URL so that callers can still tell where the response came from.
        """
        url, self._url = self._url, None
        return url

    def options(self) -> CachePolicyOptions:
        return CachePolicyOptions(
            shared=self._is_shared,
            cache_heuristic=self._cache_heuristic,
            immutable_min_time_to_live=self._immutable_min_ttl,
        )

    def storable(self) -> bool:
        """
        Whether the response may be stored at all.

        See also (https://www.rfc-editor.org/rfc/rfc7234#section-3)
        """
        return bool(
            not self._request_cc.no_store
            and (
                self._method in ("GET", "HEAD")
                or (self._method == "POST" and self._has_explicit_expiration())
            )
            and self._status in UNDERSTOOD_STATUS_CODES
            and not self._response_cc.no_store
            and (not self._is_shared or not self._response_cc.private)
            and (not self._is_shared or self._no_authorization or self._allows_storing_authenticated())
            and (
                "expires" in self._response_headers
                or self._response_cc.max_age is not None
                or (self._is_shared and self._response_cc.s_maxage is not None)
                or self._response_cc.public
                or self._status in CACHEABLE_BY_DEFAULT_STATUS_CODES
            )
        )

    def _has_explicit_expiration(self) -> bool:
        return (
            (self._is_shared and self._response_cc.s_maxage is not None)
            or self._response_cc.max_age is not None
            or "expires" in self._response_headers
        )

    def _allows_storing_authenticated(self) -> bool:
        # https://www.rfc-editor.org/rfc/rfc7234#section-3.2
        return bool(
            self._response_cc.must_revalidate or self._response_cc.public or self._response_cc.s_maxage is not None
        )

    def satisfies_without_revalidation(self, request: PolicyRequest) -> bool:
        """
        Whether the stored response can answer the request without contacting the origin.

        See also (https://www.rfc-editor.org/rfc/rfc7234#section-4)
        """
        request_cc = parse_cache_control(request.headers.get("cache-control"))
        safe_url = get_safe_url(request.url)

        if request_cc.no_cache or "no-cache" in request.headers.get("pragma", ""):
            logger.debug(f"The request for {safe_url} asks for revalidation with the no-cache directive.")
            return False

        if request_cc.max_age is not None and self.age() > request_cc.max_age:
            logger.debug(f"The stored response for {safe_url} is older than the request's max-age.")
            return False

        if request_cc.min_fresh is not None and self.time_to_live() < request_cc.min_fresh:
            logger.debug(f"The stored response for {safe_url} will not stay fresh for the request's min-fresh.")
            return False

        if self.stale():
            allows_stale = (
                request_cc.max_stale is not None
                and not self._response_cc.must_revalidate
                and request_cc.max_stale > self.age() - self.max_age()
            )
            if not allows_stale:
                logger.debug(f"The stored response for {safe_url} is stale.")
                return False

        return self._request_matches(request, allow_head_method=False)

    def _request_matches(self, request: PolicyRequest, allow_head_method: bool) -> bool:
        method = request.method.upper()
        return (
            (not self._url or self._url == request.url)
            and self._host == request.headers.get("host")
            and (not method or self._method == method or (allow_head_method and method == "HEAD"))
            and self._vary_matches(request)
        )

    def _vary_matches(self, request: PolicyRequest) -> bool:
        vary = self._response_headers.get("vary")
        if not vary:
            return True

        # A Vary of "*" never matches
        if vary.strip() == "*":
            return False

        stored_request_headers = self._request_headers if self._request_headers is not None else Headers()
        for name in vary.split(","):
            name = name.strip().lower()
            if name and request.headers.get(name) != stored_request_headers.get(name):
                return False
        return True

    def response_headers(self) -> Headers:
        """
        Headers for a response served from the cache, with ``age`` and ``date`` refreshed.
        """
        headers = without_hop_by_hop_headers(self._response_headers)
        age = self.age()

        # https://www.rfc-editor.org/rfc/rfc7234#section-5.5.4
        if age > ONE_DAY and not self._has_explicit_expiration() and self.max_age() > ONE_DAY:
            warning = '113 - "rfc7234 5.5.4"'
            headers["warning"] = f"{headers['warning']}, {warning}" if "warning" in headers else warning

        headers["age"] = str(round_half_up(age))
        headers["date"] = format_http_date(self.now())
        return headers

    def date(self) -> float:
        server_date = parse_date(self._response_headers.get("date"))
        if server_date is not None:
            return server_date
        return self._response_time

    def age(self) -> float:
        """
        Current age of the response in seconds, including the time it spent in this cache.
        """
        age_value = _to_number_or_zero(self._response_headers.get("age"))
        resident_time = self.now() - self._response_time
        return age_value + resident_time

    def max_age(self) -> float:
        """
        Freshness lifetime of the response in seconds.

        See also (https://www.rfc-editor.org/rfc/rfc7234#section-4.2.1)
        """
        if not self.storable() or self._response_cc.no_cache:
            return 0

        # Shared responses with cookies are cacheable only if marked public or immutable.
        if (
            self._is_shared
            and "set-cookie" in self._response_headers
            and not self._response_cc.public
            and not self._response_cc.immutable
        ):
            return 0

        if self._response_headers.get("vary", "").strip() == "*":
            return 0

        if self._is_shared:
            if self._response_cc.proxy_revalidate:
                return 0
            if self._response_cc.s_maxage is not None:
                return self._response_cc.s_maxage

        if self._response_cc.max_age is not None:
            return self._response_cc.max_age

        default_min_ttl = self._immutable_min_ttl if self._response_cc.immutable else 0
        server_date = self.date()

        if "expires" in self._response_headers:
            expires = parse_date(self._response_headers["expires"])
            # Invalid or past Expires means "already expired"
            if expires is None or expires < server_date:
                return 0
            return max(default_min_ttl, expires - server_date)

        if "last-modified" in self._response_headers:
            last_modified = parse_date(self._response_headers["last-modified"])
            if last_modified is not None and server_date > last_modified:
                return max(default_min_ttl, (server_date - last_modified) * self._cache_heuristic)

        return default_min_ttl

    def time_to_live(self) -> float:
        """
        Seconds left until the response becomes stale.
        """
        return max(0.0, self.max_age() - self.age())

    def stale(self) -> bool:
        return self.max_age() <= self.age()

    def revalidation_headers(self, request: PolicyRequest) -> Headers:
        """
        Headers for a conditional request that revalidates the stored response.

        The request's own end-to-end headers are kept, ``If-None-Match`` and
        ``If-Modified-Since`` are added from the stored validators.

        See also (https://www.rfc-editor.org/rfc/rfc7234#section-4.3.1)
        """
        headers = without_hop_by_hop_headers(request.headers)

        # This implementation does not understand range requests
        headers.pop("if-range", None)

        if not self._request_matches(request, allow_head_method=True) or not self.storable():
            # The request doesn't use the stored response, so its validators must not be sent.
            headers.pop("if-none-match", None)
            headers.pop("if-modified-since", None)
            return headers

        etag = self._response_headers.get("etag")
        if etag:
            headers["if-none-match"] = f"{headers['if-none-match']}, {etag}" if "if-none-match" in headers else etag
            logger.debug(
                f"Adding the 'If-None-Match' header with the value of '{etag}' "
                f"to the request for the resource located at {get_safe_url(request.url)}."
            )

        # Clients must not use weak validators in range requests or with other conditionals
        forbids_weak_validators = (
            "accept-ranges" in headers
            or "if-match" in headers
            or "if-unmodified-since" in headers
            or (bool(self._method) and self._method != "GET")
        )

        if forbids_weak_validators:
            headers.pop("if-modified-since", None)

            if "if-none-match" in headers:
                etags = [tag for tag in headers["if-none-match"].split(",") if not tag.strip().startswith("W/")]
                if not etags:
                    del headers["if-none-match"]
                else:
                    headers["if-none-match"] = ",".join(etags).strip()
        elif "last-modified" in self._response_headers and "if-modified-since" not in headers:
            last_modified = self._response_headers["last-modified"]
            headers["if-modified-since"] = last_modified
            logger.debug(
                f"Adding the 'If-Modified-Since' header with the value of '{last_modified}' "
                f"to the request for the resource located at {get_safe_url(request.url)}."
            )

        return headers

    def revalidated_policy(self, request: PolicyRequest, response: PolicyResponse) -> RevalidatedPolicy:
        """
        Combine the stored response with the response to a revalidation request.

        A 304 that refers to the stored representation refreshes the stored
        headers and keeps the stored content. Anything else replaces the
        stored response.

        See also (https://www.rfc-editor.org/rfc/rfc7234#section-4.3.4)
        """
        old_etag = self._response_headers.get("etag")
        new_etag = response.headers.get("etag")

        if response.status != 304:
            matches = False
        elif new_etag and not new_etag.strip().startswith("W/"):
            # "All of the stored responses with the same strong validator are selected."
            matches = bool(old_etag) and _strip_weak_prefix(old_etag) == new_etag.strip()
        elif old_etag and new_etag:
            # "If the new response contains a weak validator and that validator corresponds
            # to one of the cache's stored responses, then the most recent of those matching
            # stored responses is selected for update."
            matches = _strip_weak_prefix(old_etag) == _strip_weak_prefix(new_etag)
        elif "last-modified" in self._response_headers:
            matches = self._response_headers["last-modified"] == response.headers.get("last-modified")
        else:
            # "If the new response does not include any form of validator, and there is only
            # one stored response, and that stored response also lacks a validator, then that
            # stored response is selected for update."
            matches = not old_etag and "last-modified" not in response.headers and not new_etag

        if not matches:
            logger.debug(f"The revalidation response for {get_safe_url(request.url)} replaces the stored response.")
            return RevalidatedPolicy(
                policy=type(self)(request, response, self.options()),
                modified=response.status != 304,
                matches=False,
            )

        headers = Headers()
        for name in self._response_headers:
            source = (
                response.headers
                if name in response.headers and name not in EXCLUDED_FROM_REVALIDATION_UPDATE
                else self._response_headers
            )
            for value in source.get_list(name) or []:
                headers.add(name, value)

        logger.debug(f"The stored response for {get_safe_url(request.url)} was revalidated by the origin.")
        return RevalidatedPolicy(
            policy=type(self)(request, PolicyResponse(status=self._status, headers=headers), self.options()),
            modified=False,
            matches=True,
        )

    def to_object(self) -> tp.Dict[str, tp.Any]:
        """
        A JSON-compatible representation of the policy.
        """
        return {
            "v": SERIALIZATION_VERSION,
            "t": self._response_time,
            "sh": self._is_shared,
            "ch": self._cache_heuristic,
            "imm": self._immutable_min_ttl,
            "st": self._status,
            "resh": self._response_headers.to_policy_headers(),
            "m": self._method,
            "u": self._url,
            "h": self._host,
            "a": self._no_authorization,
            "reqh": self._request_headers.to_policy_headers() if self._request_headers is not None else None,
            "reqcc": self._request_cache_control,
        }

    @classmethod
    def from_object(cls, obj: tp.Any) -> "CachePolicy":
        if not isinstance(obj, tp.Mapping) or obj.get("v") != SERIALIZATION_VERSION:
            raise InvalidPolicyError("Invalid cache policy serialization.")

        policy = cls.__new__(cls)
        try:
            policy._response_time = float(obj["t"])
            policy._is_shared = bool(obj["sh"])
            policy._cache_heuristic = float(obj["ch"])
            policy._immutable_min_ttl = float(obj["imm"])
            policy._status = int(obj["st"])
            policy._response_headers = Headers(obj["resh"])
            policy._method = str(obj["m"])
            policy._url = obj["u"]
            policy._host = obj["h"]
            policy._no_authorization = bool(obj["a"])
            policy._request_headers = Headers(obj["reqh"]) if obj["reqh"] is not None else None
            policy._request_cache_control = obj["reqcc"]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise InvalidPolicyError(f"Malformed cache policy object: {exc!r}") from exc

        policy._setup()
        return policy
