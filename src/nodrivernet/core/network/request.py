"""`Request`: one logical HTTP(S) request attempt as observed through the protocol.

every redirect hop is a new `Request`; the previous hops travel along in
`redirect_chain` (oldest first).

when interception is enabled the request is paused in the browser until
exactly one of `continue_()`, `respond()` or `abort()` is called. calling a
second one (or any of them without interception) is a programming error and
raises `UsageError` right away, before anything is sent.
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from ..errors import ProtocolError, UsageError

if TYPE_CHECKING:
    from ..connection import CDPSession
    from .correlation import CorrelationStrategy
    from .response import Response

logger = logging.getLogger("nodrivernet.Request")


# normalized (lowercase, no separators) -> protocol `ErrorReason`
ERROR_REASONS: dict[str, str] = {
    "aborted": "Aborted",
    "accessdenied": "AccessDenied",
    "addressunreachable": "AddressUnreachable",
    "blockedbyclient": "BlockedByClient",
    "blockedbyresponse": "BlockedByResponse",
    "connectionaborted": "ConnectionAborted",
    "connectionclosed": "ConnectionClosed",
    "connectionfailed": "ConnectionFailed",
    "connectionrefused": "ConnectionRefused",
    "connectionreset": "ConnectionReset",
    "internetdisconnected": "InternetDisconnected",
    "namenotresolved": "NameNotResolved",
    "timedout": "TimedOut",
    "failed": "Failed",
}


def error_reason(reason: str) -> str:
    """map "connection-refused" / "ConnectionRefused" / "connection_refused"
    to the protocol reason.

    :raises UsageError: unknown reason.
    """
    key = str(reason).lower().replace("-", "").replace("_", "")
    try:
        return ERROR_REASONS[key]
    except KeyError:
        raise UsageError(f"Unknown error code: {reason}") from None


class Request:
    """
    :param session: session used for post data lookups.
    :param event: the `Network.requestWillBeSent` params (or an equivalent
    built from a `Fetch.requestPaused` event).
    :param frame: resolved frame object, if a frame manager is attached.
    :param redirect_chain: previous hops, oldest first.
    :param interception_id: protocol handle for the paused request.
    :param interception: the active correlation strategy; issues the actual
    continue/fulfill/fail commands.
    :param allow_interception: whether user-level interception was enabled
    when the request was created.
    """

    def __init__(
        self,
        session: CDPSession,
        event: dict,
        frame: Any = None,
        redirect_chain: list[Request] | None = None,
        interception_id: str | None = None,
        interception: CorrelationStrategy | None = None,
        allow_interception: bool = False,
    ):
        self._session = session
        self._frame = frame
        self._redirect_chain: list[Request] = redirect_chain if redirect_chain is not None else []
        self._interception_id = interception_id
        self._interception = interception
        self._allow_interception = allow_interception
        self._interception_handled = False
        self._response: Response | None = None
        self._from_memory_cache = False
        self._failure_text: str | None = None

        self._request_id: str = event["requestId"]
        self._loader_id: str | None = event.get("loaderId")
        self._document_url: str | None = event.get("documentURL")
        self._timestamp: float | None = event.get("timestamp")
        self._wall_time: float | None = event.get("wallTime")
        self._initiator: dict | None = event.get("initiator")
        self._resource_type: str | None = event.get("type")
        self._frame_id: str | None = event.get("frameId")
        self._has_user_gesture = bool(event.get("hasUserGesture"))

        rinfo: dict = event["request"]
        self._url: str = rinfo["url"]
        self._url_fragment: str | None = rinfo.get("urlFragment")
        self._method: str = rinfo.get("method", "GET")
        self._headers: dict = dict(rinfo.get("headers") or {})
        self._full_headers: dict | None = None
        self._headers_text: str | None = None
        self._post_data: str | None = rinfo.get("postData")
        self._has_post_data = bool(rinfo.get("hasPostData")) or self._post_data is not None
        self._mixed_content_type: str | None = rinfo.get("mixedContentType")
        self._initial_priority: str | None = rinfo.get("initialPriority")
        self._referrer_policy: str | None = rinfo.get("referrerPolicy")
        self._is_link_preload = bool(rinfo.get("isLinkPreload"))
        self._protocol: str | None = None

        self._is_navigation_request = (
            self._request_id == self._loader_id and self._resource_type == "Document"
        )

    # --- identity / metadata

    @property
    def request_id(self) -> str:
        return self._request_id

    @property
    def loader_id(self) -> str | None:
        return self._loader_id

    @property
    def url(self) -> str:
        """request url including the fragment chrome reports separately."""
        if self._url_fragment:
            return self._url + self._url_fragment
        return self._url

    @property
    def url_fragment(self) -> str | None:
        return self._url_fragment

    @property
    def method(self) -> str:
        return self._method

    @property
    def headers(self) -> dict:
        """full request headers once a response reported them, else the initial ones."""
        return self._full_headers if self._full_headers is not None else self._headers

    @property
    def headers_text(self) -> str | None:
        return self._headers_text

    @property
    def post_data(self) -> str | None:
        return self._post_data

    @property
    def has_post_data(self) -> bool:
        return self._has_post_data

    @property
    def resource_type(self) -> str | None:
        return self._resource_type

    @property
    def initiator(self) -> dict | None:
        return self._initiator

    @property
    def frame_id(self) -> str | None:
        return self._frame_id

    @property
    def frame(self) -> Any:
        return self._frame

    @property
    def document_url(self) -> str | None:
        return self._document_url

    @property
    def timestamp(self) -> float | None:
        return self._timestamp

    @property
    def wall_time(self) -> float | None:
        return self._wall_time

    @property
    def has_user_gesture(self) -> bool:
        return self._has_user_gesture

    @property
    def mixed_content_type(self) -> str | None:
        return self._mixed_content_type

    @property
    def initial_priority(self) -> str | None:
        return self._initial_priority

    @property
    def referrer_policy(self) -> str | None:
        return self._referrer_policy

    @property
    def is_link_preload(self) -> bool:
        return self._is_link_preload

    @property
    def is_navigation_request(self) -> bool:
        return self._is_navigation_request

    @property
    def protocol(self) -> str | None:
        return self._protocol

    @property
    def redirect_chain(self) -> list[Request]:
        return list(self._redirect_chain)

    @property
    def response(self) -> Response | None:
        return self._response

    @property
    def from_memory_cache(self) -> bool:
        return self._from_memory_cache

    @property
    def interception_id(self) -> str | None:
        return self._interception_id

    @property
    def interception_handled(self) -> bool:
        return self._interception_handled

    def failure(self) -> dict | None:
        if not self._failure_text:
            return None
        return {"errorText": self._failure_text}

    def request_line(self) -> str:
        parts = urlsplit(self.url)
        path = parts.path or "/"
        if parts.query:
            path += "?" + parts.query
        return f"{self._method} {path} {(self._protocol or 'HTTP/1.1').upper()}"

    async def get_post_data(self) -> bytes:
        """fetch the (possibly large) request body through `Network.getRequestPostData`."""
        data = await self._session.send(
            "Network.getRequestPostData", {"requestId": self._request_id}
        )
        body = data.get("postData", "")
        if data.get("base64Encoded"):
            return base64.b64decode(body)
        return body.encode("utf-8")

    # --- interception actions

    def _claim_interception(self):
        # requests outside the interception patterns were never paused
        if not self._allow_interception or self._interception is None or self._interception_id is None:
            raise UsageError("Request Interception is not enabled!")
        if self._interception_handled:
            raise UsageError("Request is already handled!")
        self._interception_handled = True

    async def continue_(
        self,
        url: str | None = None,
        method: str | None = None,
        post_data: str | bytes | None = None,
        headers: dict | None = None,
    ):
        """let the paused request proceed, optionally with overrides.

        protocol failures (request already canceled, page closed) are tolerated.
        """
        # interception doesn't happen for data URLs
        if self._url.startswith("data:"):
            return
        self._claim_interception()
        try:
            await self._interception.continue_request(
                self._interception_id,
                url=url,
                method=method,
                post_data=post_data,
                headers=headers,
            )
        except ProtocolError as e:
            logger.debug("failed to continue request for %s:\n  %s", self.url, e)

    async def respond(
        self,
        status: int = 200,
        headers: dict | None = None,
        content_type: str | None = None,
        body: str | bytes | None = None,
    ):
        """answer the paused request with a synthetic response.

        `str` bodies are utf-8 encoded; `content-length` is filled in when a
        body is given and the header is missing.
        """
        # mocking responses for data URLs is not supported
        if self._url.startswith("data:"):
            return
        self._claim_interception()
        response_body = body.encode("utf-8") if isinstance(body, str) else body
        response_headers = {name.lower(): str(value) for name, value in (headers or {}).items()}
        if content_type:
            response_headers["content-type"] = content_type
        if response_body and "content-length" not in response_headers:
            response_headers["content-length"] = str(len(response_body))
        try:
            await self._interception.fulfill_request(
                self._interception_id,
                status or 200,
                response_headers,
                response_body or None,
            )
        except ProtocolError as e:
            logger.debug("failed to respond to request for %s:\n  %s", self.url, e)

    async def abort(self, reason: str = "failed"):
        """fail the paused request with `reason` (see `ERROR_REASONS`).

        :raises UsageError: unknown reason, interception disabled, or already handled.
        """
        if self._url.startswith("data:"):
            return
        protocol_reason = error_reason(reason)
        self._claim_interception()
        try:
            await self._interception.fail_request(self._interception_id, protocol_reason)
        except ProtocolError as e:
            logger.debug("failed to abort request for %s:\n  %s", self.url, e)

    # --- manager-side updates

    def _update_from_response(self, full_headers: dict | None, headers_text: str | None, protocol: str | None):
        if full_headers is not None:
            self._full_headers = dict(full_headers)
        if headers_text is not None:
            self._headers_text = headers_text
        if protocol is not None:
            self._protocol = protocol

    def to_dict(self) -> dict:
        return {
            "requestId": self._request_id,
            "loaderId": self._loader_id,
            "url": self.url,
            "method": self._method,
            "headers": self.headers,
            "postData": self._post_data,
            "type": self._resource_type,
            "frameId": self._frame_id,
            "initiator": self._initiator,
            "isNavigationRequest": self._is_navigation_request,
            "fromMemoryCache": self._from_memory_cache,
            "redirectChain": [r.url for r in self._redirect_chain],
            "failure": self.failure(),
        }

    def __repr__(self):
        return f"<Request {self._method} {self.url} id={self._request_id}>"


__all__ = ["Request", "ERROR_REASONS", "error_reason"]
