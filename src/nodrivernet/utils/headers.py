"""small header conversions between protocol shapes.

the `Network` domain speaks header *objects* (`{"name": "value"}`),
`Fetch` speaks header *entry lists* (`[{"name": ..., "value": ...}]`).
"""

from __future__ import annotations

from http import HTTPStatus


def headers_array(headers: dict | list | None) -> list[dict] | None:
    """header object -> `Fetch` header entry list (passes entry lists through)."""
    if headers is None:
        return None
    if isinstance(headers, list):
        return headers
    return [{"name": name, "value": str(value)} for name, value in headers.items()]


def lower_headers(headers: dict | None) -> dict:
    """copy of `headers` with lower-cased names."""
    if not headers:
        return {}
    return {name.lower(): value for name, value in headers.items()}


def status_text(status: int) -> str:
    """standard reason phrase for `status`, or "" when unknown."""
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


__all__ = [
    "headers_array",
    "lower_headers",
    "status_text",
]
