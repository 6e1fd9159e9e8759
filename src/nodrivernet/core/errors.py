"""error taxonomy shared by the network layer.

- `ProtocolError`: the browser rejected a command (or the connection went away)
- `UsageError`: caller mistake caught locally, never sent over the wire
- `WaitTimeoutError`: a wait with a deadline expired
- `StaleContextError`: the browsing context was torn down mid-operation
"""

from __future__ import annotations


class NetworkError(Exception):
    """base class for every error raised by `nodrivernet`."""


class ProtocolError(NetworkError):
    """a protocol command failed.

    :param method: the protocol method that failed (e.g. "Network.getCookies").
    :param message: error text reported by the browser.
    :param code: numeric protocol error code if one was reported.
    """

    def __init__(self, method: str, message: str, code: int | None = None):
        self.method = method
        self.message = message
        self.code = code
        super().__init__(f"Protocol error ({method}): {message}")


class ConnectionClosedError(ProtocolError):
    """the underlying connection closed before the command was answered."""


class StaleContextError(ProtocolError):
    """the execution context or frame was destroyed, usually by a navigation."""


class UsageError(NetworkError, ValueError):
    """invalid argument or illegal call sequence (e.g. handling a request twice)."""


class WaitTimeoutError(NetworkError, TimeoutError):
    """a `wait_for_*` call did not see a matching event before its deadline."""


_STALE_CONTEXT_MARKERS = (
    "Cannot find context with specified id",
    "Execution context was destroyed",
)


def rewrite_error(error: ProtocolError) -> ProtocolError:
    """turn a known "context went away" protocol error into `StaleContextError`.

    anything else comes back untouched.
    """
    if isinstance(error, StaleContextError):
        return error
    if any(marker in error.message for marker in _STALE_CONTEXT_MARKERS):
        return StaleContextError(
            error.method,
            "Execution context was destroyed, most likely because of a navigation.",
            error.code,
        )
    return error


def is_known_protocol_failure(error: BaseException) -> bool:
    """`True` for the protocol error codes that just mean "target moved on"."""
    code = getattr(error, "code", None)
    if code in (-32000, -32001, -32601):
        return True
    se = str(error)
    return "-32000" in se or "-32001" in se or "-32601" in se


__all__ = [
    "NetworkError",
    "ProtocolError",
    "ConnectionClosedError",
    "StaleContextError",
    "UsageError",
    "WaitTimeoutError",
    "rewrite_error",
    "is_known_protocol_failure",
]
