"""pairing "request about to be sent" with "request paused for interception".

chrome reports an intercepted request twice: once through
`Network.requestWillBeSent` (the full picture: initiator, frame, redirect
info...) and once through the interception event (the handle needed to let it
go). either can arrive first. a `CorrelationStrategy` buffers whichever shows
up first and hands back the pair when the second one arrives.

two generations exist and they never mix within one `NetworkManager`:

- `HashCorrelation` (legacy `Network.requestIntercepted`): the two events
  don't share an id, so they are matched by `request_hash()`. identical
  requests in flight at the same time share a hash bucket; buckets are FIFO so
  the oldest unmatched entry pairs first. true duplicates can still be
  mispaired, that's a known limitation of the legacy protocol.
- `IdCorrelation` (`Fetch.requestPaused`): the paused event carries
  `networkId` == `requestWillBeSent.requestId`, so it's a direct lookup.

each strategy also knows how to continue/fulfill/fail/authenticate a paused
request in its own protocol dialect.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Callable
from urllib.parse import unquote

from ..connection import CDPSession
from ..events import FetchEvent, InterceptionMode
from ...utils import lower_headers, status_text
from .fetch import FetchInterceptor

logger = logging.getLogger("nodrivernet.correlation")

# headers chrome may add/alter between the two events
IGNORED_HEADERS = frozenset({
    "accept",
    "referer",
    "x-devtools-emulate-network-conditions-client-id",
    "cookie",
    "origin",
    "content-type",
    "intervention",
})

PausedCallback = Callable[[dict, str], None]
AuthCallback = Callable[[str], None]
Pair = tuple[dict, str]

# escapes of ; / ? : @ & = + $ , # stay encoded when normalizing urls
RESERVED_ESCAPE = re.compile(r"(%(?:2[346BCF]|3[ABDF]|40))", re.IGNORECASE)


def request_hash(request: dict) -> str:
    """content hash of a protocol `Request` object.

    covers the percent-decoded url (reserved characters stay escaped; raw url
    if it doesn't decode), method, post data and the lower-cased,
    sorted headers minus `IGNORED_HEADERS`.
    data URLs hash without headers.
    """
    url = request["url"]
    try:
        normalized_url = "".join(
            part if i % 2 else unquote(part, errors="strict")
            for i, part in enumerate(RESERVED_ESCAPE.split(url))
        )
    except UnicodeDecodeError:
        normalized_url = url
    headers: dict[str, str] = {}
    if not normalized_url.startswith("data:"):
        lowered = lower_headers(request.get("headers"))
        for name in sorted(lowered):
            if name in IGNORED_HEADERS:
                continue
            headers[name] = lowered[name]
    return json.dumps({
        "url": normalized_url,
        "method": request.get("method"),
        "postData": request.get("postData"),
        "headers": headers,
    })


class Multimap:
    """key -> ordered values; `first_value()` is the oldest value still present."""

    def __init__(self):
        self._map: dict[str, list[str]] = {}

    def set(self, key: str, value: str):
        values = self._map.setdefault(key, [])
        if value not in values:
            values.append(value)

    def has(self, key: str, value: str) -> bool:
        return value in self._map.get(key, ())

    def first_value(self, key: str) -> str | None:
        values = self._map.get(key)
        return values[0] if values else None

    def delete(self, key: str, value: str) -> bool:
        values = self._map.get(key)
        if not values or value not in values:
            return False
        values.remove(value)
        if not values:
            del self._map[key]
        return True

    def __len__(self):
        return sum(len(values) for values in self._map.values())


class CorrelationStrategy:
    """base class; see `HashCorrelation` and `IdCorrelation`.

    `request_will_be_sent()` / `request_paused()` return the
    `(requestWillBeSent params, interception id)` pair once both halves are
    known, `None` while one half is still buffered.
    """

    mode: InterceptionMode

    def __init__(self, session: CDPSession):
        self.session = session
        self._on_paused: PausedCallback | None = None
        self._on_auth: AuthCallback | None = None

    def subscribe(self, on_paused: PausedCallback, on_auth: AuthCallback):
        self._on_paused = on_paused
        self._on_auth = on_auth

    def unsubscribe(self):
        self._on_paused = None
        self._on_auth = None

    async def enable(self, patterns: list[dict] | None = None):
        raise NotImplementedError

    async def disable(self):
        raise NotImplementedError

    def request_will_be_sent(self, event: dict) -> Pair | None:
        raise NotImplementedError

    def request_paused(self, event: dict, interception_id: str) -> Pair | None:
        raise NotImplementedError

    def is_response_stage(self, event: dict) -> bool:
        return "responseStatusCode" in event or "responseErrorReason" in event

    def release(self, request_id: str) -> dict | None:
        """hand back (and stop buffering) a `requestWillBeSent` that never got
        paused, e.g. because it didn't match the interception patterns.
        """
        raise NotImplementedError

    @property
    def pending(self) -> int:
        """number of buffered halves still waiting for their partner."""
        raise NotImplementedError

    async def continue_request(
        self,
        interception_id: str,
        url: str | None = None,
        method: str | None = None,
        post_data: str | bytes | None = None,
        headers: dict | None = None,
    ):
        raise NotImplementedError

    async def fulfill_request(self, interception_id: str, status: int, headers: dict, body: bytes | None):
        raise NotImplementedError

    async def fail_request(self, interception_id: str, reason: str):
        raise NotImplementedError

    async def continue_with_auth(
        self,
        interception_id: str,
        response: str,
        username: str | None = None,
        password: str | None = None,
    ):
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__} pending={self.pending}>"


class HashCorrelation(CorrelationStrategy):
    """legacy `Network.setRequestInterception` / `Network.requestIntercepted`."""

    mode = InterceptionMode.LEGACY

    def __init__(self, session: CDPSession):
        super().__init__(session)
        self._request_hash_to_request_ids = Multimap()
        self._request_hash_to_interception_ids = Multimap()
        self._request_id_to_request_will_be_sent: dict[str, dict] = {}

    def subscribe(self, on_paused: PausedCallback, on_auth: AuthCallback):
        super().subscribe(on_paused, on_auth)
        self.session.add_handler("Network.requestIntercepted", self._on_request_intercepted)

    def unsubscribe(self):
        self.session.remove_handler("Network.requestIntercepted", self._on_request_intercepted)
        super().unsubscribe()

    def _on_request_intercepted(self, event: dict):
        if self._on_paused is None:
            return
        interception_id = event["interceptionId"]
        if event.get("authChallenge"):
            self._on_auth(interception_id)
            return
        self._on_paused(event, interception_id)

    async def enable(self, patterns: list[dict] | None = None):
        # the legacy domain only ever needs the catch-all pattern
        await self.session.send(
            "Network.setRequestInterception", {"patterns": [{"urlPattern": "*"}]}
        )

    async def disable(self):
        await self.session.send("Network.setRequestInterception", {"patterns": []})

    def request_will_be_sent(self, event: dict) -> Pair | None:
        request_hash_ = request_hash(event["request"])
        interception_id = self._request_hash_to_interception_ids.first_value(request_hash_)
        if interception_id is not None:
            self._request_hash_to_interception_ids.delete(request_hash_, interception_id)
            logger.debug("paired %s with buffered interception %s", event["requestId"], interception_id)
            return event, interception_id
        self._request_hash_to_request_ids.set(request_hash_, event["requestId"])
        self._request_id_to_request_will_be_sent[event["requestId"]] = event
        return None

    def request_paused(self, event: dict, interception_id: str) -> Pair | None:
        request_hash_ = request_hash(event["request"])
        request_id = self._request_hash_to_request_ids.first_value(request_hash_)
        if request_id is not None:
            self._request_hash_to_request_ids.delete(request_hash_, request_id)
            request_will_be_sent = self._request_id_to_request_will_be_sent.pop(request_id)
            logger.debug("paired interception %s with buffered request %s", interception_id, request_id)
            return request_will_be_sent, interception_id
        self._request_hash_to_interception_ids.set(request_hash_, interception_id)
        return None

    def release(self, request_id: str) -> dict | None:
        event = self._request_id_to_request_will_be_sent.pop(request_id, None)
        if event is not None:
            self._request_hash_to_request_ids.delete(request_hash(event["request"]), request_id)
        return event

    @property
    def pending(self) -> int:
        return len(self._request_hash_to_request_ids) + len(self._request_hash_to_interception_ids)

    async def _continue_intercepted(self, params: dict):
        await self.session.send("Network.continueInterceptedRequest", params)

    async def continue_request(
        self,
        interception_id: str,
        url: str | None = None,
        method: str | None = None,
        post_data: str | bytes | None = None,
        headers: dict | None = None,
    ):
        params: dict = {"interceptionId": interception_id}
        if url is not None:
            params["url"] = url
        if method is not None:
            params["method"] = method
        if post_data is not None:
            params["postData"] = post_data.decode("utf-8") if isinstance(post_data, bytes) else post_data
        if headers is not None:
            params["headers"] = headers
        await self._continue_intercepted(params)

    async def fulfill_request(self, interception_id: str, status: int, headers: dict, body: bytes | None):
        # the legacy domain takes a raw HTTP/1.1 response
        lines = [f"HTTP/1.1 {status} {status_text(status)}"]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        raw = ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")
        if body:
            raw += body
        await self._continue_intercepted({
            "interceptionId": interception_id,
            "rawResponse": base64.b64encode(raw).decode(),
        })

    async def fail_request(self, interception_id: str, reason: str):
        await self._continue_intercepted({"interceptionId": interception_id, "errorReason": reason})

    async def continue_with_auth(
        self,
        interception_id: str,
        response: str,
        username: str | None = None,
        password: str | None = None,
    ):
        challenge_response: dict = {"response": response}
        if response == "ProvideCredentials":
            challenge_response["username"] = username
            challenge_response["password"] = password
        await self._continue_intercepted({
            "interceptionId": interception_id,
            "authChallengeResponse": challenge_response,
        })


class IdCorrelation(CorrelationStrategy):
    """`Fetch` domain interception, correlated by `networkId`.

    :param session: the session to drive.
    :param fetch: optional pre-built `FetchInterceptor` (one is created otherwise).
    """

    mode = InterceptionMode.FETCH

    def __init__(self, session: CDPSession, fetch: FetchInterceptor | None = None):
        super().__init__(session)
        self.fetch = fetch or FetchInterceptor(session)
        self._request_id_to_request_will_be_sent: dict[str, dict] = {}
        self._network_id_to_request_paused: dict[str, dict] = {}

    def subscribe(self, on_paused: PausedCallback, on_auth: AuthCallback):
        super().subscribe(on_paused, on_auth)
        self.fetch.on(FetchEvent.REQUEST_PAUSED, self._on_request_paused)
        self.fetch.on(FetchEvent.AUTH_REQUIRED, self._on_auth_required)
        self.fetch.start()

    def unsubscribe(self):
        self.fetch.stop()
        self.fetch.remove_listener(FetchEvent.REQUEST_PAUSED, self._on_request_paused)
        self.fetch.remove_listener(FetchEvent.AUTH_REQUIRED, self._on_auth_required)
        super().unsubscribe()

    def _on_request_paused(self, event: dict):
        if self._on_paused is not None:
            self._on_paused(event, event["requestId"])

    def _on_auth_required(self, event: dict):
        if self._on_auth is not None:
            self._on_auth(event["requestId"])

    async def enable(self, patterns: list[dict] | None = None):
        await self.fetch.enable(patterns or [{"urlPattern": "*"}], handle_auth_requests=True)

    async def disable(self):
        await self.fetch.disable()

    def request_will_be_sent(self, event: dict) -> Pair | None:
        paused = self._network_id_to_request_paused.pop(event["requestId"], None)
        if paused is not None:
            return event, paused["requestId"]
        self._request_id_to_request_will_be_sent[event["requestId"]] = event
        return None

    def request_paused(self, event: dict, interception_id: str) -> Pair | None:
        network_id = event.get("networkId")
        if not network_id:
            # not backed by a network request (e.g. served without the network
            # stack); build the request straight from the paused event
            return {
                "requestId": interception_id,
                "request": event["request"],
                "frameId": event.get("frameId"),
                "type": event.get("resourceType"),
            }, interception_id
        request_will_be_sent = self._request_id_to_request_will_be_sent.pop(network_id, None)
        if request_will_be_sent is not None:
            return request_will_be_sent, interception_id
        self._network_id_to_request_paused[network_id] = event
        return None

    def release(self, request_id: str) -> dict | None:
        return self._request_id_to_request_will_be_sent.pop(request_id, None)

    @property
    def pending(self) -> int:
        return len(self._request_id_to_request_will_be_sent) + len(self._network_id_to_request_paused)

    async def continue_request(
        self,
        interception_id: str,
        url: str | None = None,
        method: str | None = None,
        post_data: str | bytes | None = None,
        headers: dict | None = None,
    ):
        await self.fetch.continue_request(
            interception_id, url=url, method=method, post_data=post_data, headers=headers
        )

    async def fulfill_request(self, interception_id: str, status: int, headers: dict, body: bytes | None):
        await self.fetch.fulfill_request(interception_id, status, headers, body)

    async def fail_request(self, interception_id: str, reason: str):
        await self.fetch.fail_request(interception_id, reason)

    async def continue_with_auth(
        self,
        interception_id: str,
        response: str,
        username: str | None = None,
        password: str | None = None,
    ):
        await self.fetch.continue_with_auth(interception_id, response, username, password)


def strategy_for(mode: InterceptionMode, session: CDPSession) -> CorrelationStrategy:
    if mode is InterceptionMode.LEGACY:
        return HashCorrelation(session)
    return IdCorrelation(session)


__all__ = [
    "IGNORED_HEADERS",
    "request_hash",
    "Multimap",
    "CorrelationStrategy",
    "HashCorrelation",
    "IdCorrelation",
    "strategy_for",
]
