"""session capability the network layer depends on, plus the `nodriver` adapter.

`NetworkManager`, `FetchInterceptor` and the correlation strategies only ever
talk to a `CDPSession`: something that can send a raw protocol command and
register handlers for raw protocol events (handlers receive the event's
`params` dict). `NodriverSession` is the production implementation on top of a
`nodriver.Tab` / `nodriver.Connection`; tests use an in-memory fake.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Protocol, runtime_checkable

import nodriver
import websockets
from nodriver import cdp
from nodriver.core.connection import ProtocolException

from .errors import ConnectionClosedError, ProtocolError

logger = logging.getLogger("nodrivernet.connection")

EventHandler = Callable[[dict], Any]


@runtime_checkable
class CDPSession(Protocol):
    """minimal command + event capability consumed by the network layer."""

    async def send(self, method: str, params: dict | None = None) -> dict:
        """send `method` and return the protocol `result` dict.

        must raise `ProtocolError` when the browser rejects the command.
        """
        ...

    def add_handler(self, method: str, handler: EventHandler) -> None:
        ...

    def remove_handler(self, method: str, handler: EventHandler) -> None:
        ...


# snake_case -> protocol names that don't follow plain lowerCamelCase
_IRREGULAR_KEYS = {
    "document_url": "documentURL",
}


def _protocol_key(name: str) -> str:
    if name in _IRREGULAR_KEYS:
        return _IRREGULAR_KEYS[name]
    # `type_`, `id_` etc. carry a trailing underscore to dodge builtins
    head, *rest = name.rstrip("_").split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _to_json(value: Any) -> Any:
    if hasattr(value, "to_json"):
        return value.to_json()
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_json(v) for k, v in value.items()}
    return value


def event_to_json(ev: Any) -> dict:
    """convert a typed `nodriver.cdp` event back into its protocol `params` dict.

    nested protocol types serialize through their own `to_json()`;
    unset (`None`) fields are dropped, the way chrome omits them.
    """
    if dataclasses.is_dataclass(ev):
        items = ((f.name, getattr(ev, f.name)) for f in dataclasses.fields(ev))
    else:
        items = vars(ev).items()
    return {
        _protocol_key(name): _to_json(value)
        for name, value in items
        if value is not None
    }


async def send_cdp(
    connection: nodriver.Tab | nodriver.Connection,
    method: str,
    params: dict | None = None,
) -> dict:
    """send a raw devtools command through nodriver and return the raw result.

    nodriver's `send()` drives a generator: the first `yield` hands it the
    command, and whatever the generator returns after receiving the
    response becomes the result.

    :param connection: tab or underlying connection.
    :param method: full method name (e.g. "Network.getAllCookies").
    :param params: payload dict; omit if none.
    :return: protocol `result` dict (may be empty).
    """
    def c():
        result = yield {"method": method, "params": params or {}}
        return result

    return await connection.send(c())


class NodriverSession:
    """`CDPSession` backed by a `nodriver.Tab` or `nodriver.Connection`.

    - commands go out through `send_cdp()`; nodriver's `ProtocolException`
      becomes `ProtocolError`, websocket closure becomes `ConnectionClosedError`
    - handlers are registered on nodriver's typed event classes and receive
      the event converted back to protocol JSON
    - subscribing marks the domain as enabled on the connection so nodriver
      doesn't auto-enable it (an implicit `Fetch.enable()` would pause every
      request); the network layer enables its domains itself
    """

    def __init__(self, connection: nodriver.Tab | nodriver.Connection):
        self.connection = connection
        # (method, handler) -> wrapper registered with nodriver
        self._wrappers: dict[tuple[str, EventHandler], Callable] = {}

    async def send(self, method: str, params: dict | None = None) -> dict:
        try:
            result = await send_cdp(self.connection, method, params)
        except ProtocolException as e:
            message = getattr(e, "message", None) or str(e)
            raise ProtocolError(method, message, getattr(e, "code", None)) from e
        except (
            websockets.exceptions.ConnectionClosedOK,
            websockets.exceptions.ConnectionClosedError,
        ) as e:
            raise ConnectionClosedError(method, "connection closed") from e
        return result or {}

    def add_handler(self, method: str, handler: EventHandler):
        event_type = cdp.util._event_parsers.get(method)
        if event_type is None:
            logger.warning("nodriver does not know the event %s; handler not registered", method)
            return
        self._mark_domain_enabled(method)

        def _dispatch(ev, _connection=None):
            # nodriver retries a callback with a single argument on TypeError,
            # so nothing may escape from here
            try:
                handler(event_to_json(ev))
            except Exception:
                logger.exception("failed to handle %s", method)

        self._wrappers[(method, handler)] = _dispatch
        self.connection.add_handler(event_type, _dispatch)

    def remove_handler(self, method: str, handler: EventHandler):
        wrapper = self._wrappers.pop((method, handler), None)
        if wrapper is None:
            return
        self.connection.remove_handler(cdp.util._event_parsers[method], wrapper)

    def _mark_domain_enabled(self, method: str):
        domain = getattr(cdp, method.split(".", 1)[0].lower(), None)
        enabled_domains = getattr(self.connection, "enabled_domains", None)
        if domain is not None and enabled_domains is not None and domain not in enabled_domains:
            enabled_domains.append(domain)

    def __repr__(self):
        return f"<NodriverSession {self.connection!r}>"


__all__ = [
    "CDPSession",
    "EventHandler",
    "NodriverSession",
    "event_to_json",
    "send_cdp",
]
