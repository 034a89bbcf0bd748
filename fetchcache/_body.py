from __future__ import annotations

import typing as tp

import httpx

__all__ = ("parse_response_body", "is_json_content_type")


def is_json_content_type(content_type: tp.Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


async def parse_response_body(response: httpx.Response) -> tp.Any:
    """
    Read the response and decode it as JSON or text, based on its metadata.

    A "204 No Content" or a zero ``Content-Length`` is returned as text no
    matter what the ``Content-Type`` says, since there is nothing to decode.
    """
    await response.aread()

    if (
        response.status_code != 204
        and response.headers.get("content-length") != "0"
        and is_json_content_type(response.headers.get("content-type"))
    ):
        return response.json()
    return response.text
