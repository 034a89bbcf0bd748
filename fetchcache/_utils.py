from __future__ import annotations

import calendar
import math
import typing as tp
from email.utils import formatdate, parsedate_tz

import httpx

__all__ = (
    "parse_date",
    "format_http_date",
    "get_safe_url",
    "float_seconds_to_int_milliseconds",
    "round_half_up",
)


def parse_date(date: str | None) -> tp.Optional[int]:
    if not date:
        return None
    expires = parsedate_tz(date)
    if expires is None:
        return None
    timestamp = calendar.timegm(expires[:6])
    if expires[9] is not None:
        timestamp -= expires[9]
    return timestamp


def format_http_date(timestamp: tp.Optional[float] = None) -> str:
    """
    Format a timestamp as an HTTP date (RFC 1123).

    Example output: 'Sun, 26 Oct 2025 12:34:56 GMT'
    """
    return formatdate(timeval=timestamp, localtime=False, usegmt=True)


def get_safe_url(url: str | httpx.URL | None) -> str:
    """
    Render a URL for logging, without the userinfo and the query string.
    """
    if url is None:
        return "<unknown>"
    try:
        parsed = httpx.URL(str(url))
    except httpx.InvalidURL:
        return "<invalid url>"
    netloc = parsed.host if parsed.port is None else f"{parsed.host}:{parsed.port}"
    return f"{parsed.scheme}://{netloc}{parsed.path}"


def float_seconds_to_int_milliseconds(seconds: float) -> int:
    return int(seconds * 1000)


def round_half_up(seconds: float) -> int:
    """
    Round to the nearest integer with halves going up, so ``round_half_up(0.5) == 1``.
    """
    return math.floor(seconds + 0.5)
