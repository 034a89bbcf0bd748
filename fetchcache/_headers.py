from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Tuple,
    Union,
)

__all__ = (
    "Headers",
    "CacheControl",
    "parse_cache_control",
    "HOP_BY_HOP_HEADERS",
    "without_hop_by_hop_headers",
)

PolicyHeaders = Dict[str, Union[str, List[str]]]
HeaderPairs = Iterable[Tuple[str, str]]

HOP_BY_HOP_HEADERS = frozenset(
    (
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    )
)

MAX_DELTA_SECONDS = 2**31 - 1

# RFC 7230, section 3.2.6
TOKEN = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
QUOTED_STRING = re.compile(r'"((?:[^"\\]|\\.)*)"')
UNQUOTED_VALUE = re.compile(r'[^\s,"]*')
QUOTED_PAIR = re.compile(r"\\(.)")


class Headers(MutableMapping[str, str]):
    """
    An ordered, case-insensitive multimap of header fields.

    Every name maps to the list of values it was received with, so repeated
    fields such as ``Set-Cookie`` keep their multiplicity. Item access joins
    the values with ``", "``, which is what the caching rules expect for
    singleton fields.
    """

    def __init__(self, headers: Optional[Mapping[str, Union[str, List[str]]]] = None) -> None:
        self._headers: Dict[str, List[str]] = {}
        for key, value in (headers or {}).items():
            values = [value] if isinstance(value, str) else list(value)
            self._headers.setdefault(key.lower(), []).extend(values)

    @classmethod
    def from_pairs(cls, pairs: HeaderPairs) -> "Headers":
        headers = cls()
        for key, value in pairs:
            headers.add(key, value)
        return headers

    @classmethod
    def from_any(cls, headers: Union["Headers", Mapping[str, Any], HeaderPairs, None]) -> "Headers":
        if headers is None:
            return cls()
        if isinstance(headers, Headers):
            return headers.copy()
        if isinstance(headers, Mapping):
            return cls(headers)
        return cls.from_pairs(headers)

    def get_list(self, key: str) -> Optional[List[str]]:
        return self._headers.get(key.lower(), None)

    def add(self, key: str, value: str) -> None:
        self._headers.setdefault(key.lower(), []).append(value)

    def multi_items(self) -> List[Tuple[str, str]]:
        return [(key, value) for key, values in self._headers.items() for value in values]

    def to_policy_headers(self) -> PolicyHeaders:
        """
        Collapse single-valued fields to plain strings, keeping repeated fields as lists.
        """
        return {key: values[0] if len(values) == 1 else values[:] for key, values in self._headers.items()}

    def copy(self) -> "Headers":
        return Headers(self._headers)

    def __getitem__(self, key: str) -> str:
        return ", ".join(self._headers[key.lower()])

    def __setitem__(self, key: str, value: str) -> None:
        self._headers[key.lower()] = [value]

    def __delitem__(self, key: str) -> None:
        del self._headers[key.lower()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._headers

    def __iter__(self) -> Iterator[str]:
        return iter(self._headers)

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._headers!r})"

    def __eq__(self, other_headers: Any) -> bool:
        return isinstance(other_headers, Headers) and self._headers == other_headers._headers


def without_hop_by_hop_headers(headers: Headers) -> Headers:
    """
    Copy the headers without the hop-by-hop fields, including those nominated by ``Connection``.
    """
    excluded = set(HOP_BY_HOP_HEADERS)
    if "connection" in headers:
        for name in headers["connection"].split(","):
            if name.strip():
                excluded.add(name.strip().lower())

    copied = Headers()
    for key, value in headers.multi_items():
        if key not in excluded:
            copied.add(key, value)
    return copied


@dataclass
class CacheControl:
    """
    Cache-Control directives of a request or a response.

    ``no_cache`` and ``private`` are ``False`` when absent, ``True`` when present
    without arguments, and the list of lowercased field names otherwise.
    Directives that are not understood are kept in ``extensions`` as
    ``"name"`` or ``"name=value"``.
    """

    max_age: Optional[int] = None
    s_maxage: Optional[int] = None
    max_stale: Optional[int] = None
    min_fresh: Optional[int] = None
    stale_if_error: Optional[int] = None
    stale_while_revalidate: Optional[int] = None
    no_store: bool = False
    no_transform: bool = False
    only_if_cached: bool = False
    must_revalidate: bool = False
    proxy_revalidate: bool = False
    public: bool = False
    immutable: bool = False
    no_cache: Union[bool, List[str]] = False
    private: Union[bool, List[str]] = False
    extensions: List[str] = field(default_factory=list)

    def has_extension(self, name: str) -> bool:
        return any(extension == name or extension.startswith(f"{name}=") for extension in self.extensions)


DELTA_SECONDS_DIRECTIVES = {
    "max-age": "max_age",
    "s-maxage": "s_maxage",
    "max-stale": "max_stale",
    "min-fresh": "min_fresh",
    "stale-if-error": "stale_if_error",
    "stale-while-revalidate": "stale_while_revalidate",
}
FLAG_DIRECTIVES = {
    "no-store": "no_store",
    "no-transform": "no_transform",
    "only-if-cached": "only_if_cached",
    "must-revalidate": "must_revalidate",
    "proxy-revalidate": "proxy_revalidate",
    "public": "public",
    "immutable": "immutable",
}
FIELD_NAMES_DIRECTIVES = {"no-cache": "no_cache", "private": "private"}


def parse_delta_seconds(value: str) -> Optional[int]:
    if not (value.isascii() and value.isdigit()):
        return None
    return min(int(value), MAX_DELTA_SECONDS)


def parse_field_names(value: str) -> List[str]:
    return [name.strip().lower() for name in value.split(",") if name.strip()]


def _skip_whitespace(value: str, pos: int) -> int:
    while pos < len(value) and value[pos] in " \t":
        pos += 1
    return pos


def iter_directives(value: str) -> Iterator[Tuple[str, Optional[str]]]:
    """
    Split a Cache-Control value into ``(name, argument)`` pairs.

    Names are lowercased and quoted arguments unescaped. Characters that cannot
    start a directive are skipped, as is an argument whose quotes are never closed.
    """
    pos = 0
    while pos < len(value):
        if value[pos] in " \t,":
            pos += 1
            continue

        token = TOKEN.match(value, pos)
        if token is None:
            pos += 1
            continue

        name = token.group().lower()
        pos = _skip_whitespace(value, token.end())
        if pos >= len(value) or value[pos] != "=":
            yield name, None
            continue

        pos = _skip_whitespace(value, pos + 1)
        if pos < len(value) and value[pos] == '"':
            quoted = QUOTED_STRING.match(value, pos)
            if quoted is None:
                pos += 1
                continue
            yield name, QUOTED_PAIR.sub(r"\1", quoted.group(1))
            pos = quoted.end()
        else:
            unquoted = UNQUOTED_VALUE.match(value, pos)
            assert unquoted is not None
            yield name, unquoted.group()
            pos = unquoted.end()


def parse_cache_control(value: Optional[str]) -> CacheControl:
    """
    Parse a Cache-Control header from either a request or response.

    Parsing is lenient: a malformed directive is ignored instead of failing the whole header.

    Examples:
        >>> cc = parse_cache_control("public, max-age=3600, must-revalidate")
        >>> cc.public, cc.max_age, cc.must_revalidate
        (True, 3600, True)

        >>> cc = parse_cache_control('no-cache="Set-Cookie, Authorization"')
        >>> cc.no_cache
        ['set-cookie', 'authorization']
    """
    cc = CacheControl()

    for name, argument in iter_directives(value or ""):
        if name == "max-stale" and argument is None:
            # any staleness is acceptable
            cc.max_stale = MAX_DELTA_SECONDS
        elif name in DELTA_SECONDS_DIRECTIVES and argument is not None:
            setattr(cc, DELTA_SECONDS_DIRECTIVES[name], parse_delta_seconds(argument))
        elif name in FLAG_DIRECTIVES and argument is None:
            setattr(cc, FLAG_DIRECTIVES[name], True)
        elif name in FIELD_NAMES_DIRECTIVES:
            setattr(cc, FIELD_NAMES_DIRECTIVES[name], True if argument is None else parse_field_names(argument))
        else:
            cc.extensions.append(name if argument is None else f"{name}={argument}")

    return cc
