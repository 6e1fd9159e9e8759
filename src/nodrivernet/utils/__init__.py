"""utility facade: header shape conversions used across the network layer."""

from .headers import headers_array, lower_headers, status_text

__all__ = [
    "headers_array",
    "lower_headers",
    "status_text",
]
