"""thin wrapper around the `Fetch` domain (pause-based request interception).

translates high level continue/fulfill/fail/auth calls into protocol commands
and re-emits `Fetch.requestPaused` / `Fetch.authRequired` as `FetchEvent`s.
holds no correlation state; pairing paused requests with
`Network.requestWillBeSent` is the `NetworkManager`'s job.
"""

from __future__ import annotations

import base64
import logging

from pyee.asyncio import AsyncIOEventEmitter

from ..connection import CDPSession
from ..errors import UsageError
from ..events import FetchEvent
from ...utils import headers_array

logger = logging.getLogger("nodrivernet.FetchInterceptor")

AUTH_CHALLENGE_RESPONSES = ("Default", "CancelAuth", "ProvideCredentials")


def validate_patterns(patterns) -> list[dict]:
    """
    :raises UsageError: `patterns` is not a list of dicts with a str `urlPattern`.
    """
    if not isinstance(patterns, list):
        raise UsageError(
            f"The patterns option must be a list, received {type(patterns).__name__}"
        )
    for pattern in patterns:
        if not isinstance(pattern, dict) or not isinstance(pattern.get("urlPattern"), str):
            raise UsageError(
                "The patterns option must be a list of dicts with a str urlPattern, "
                f"one is not: {pattern!r}"
            )
    return patterns


class FetchInterceptor(AsyncIOEventEmitter):
    """
    lifecycle:
    1. `start()`: subscribe to the `Fetch` events
    2. `enable()`: start pausing matching requests
    3. `disable()` / `stop()`

    :param session: the session to drive.
    """

    def __init__(self, session: CDPSession):
        super().__init__()
        self.session = session
        self._enabled = False
        self._handling_auth_requests = False
        self._request_patterns: list[dict] | None = None
        self._started = False
        self.on("error", self._on_listener_error)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def handling_auth_requests(self) -> bool:
        """if `True`, `Fetch.authRequired` fires and requests wait for `continue_with_auth()`."""
        return self._handling_auth_requests

    @property
    def request_patterns(self) -> list[dict] | None:
        return self._request_patterns

    def _on_request_paused(self, event: dict):
        self.emit(FetchEvent.REQUEST_PAUSED, event)

    def _on_auth_required(self, event: dict):
        self.emit(FetchEvent.AUTH_REQUIRED, event)

    def _on_listener_error(self, error: Exception):
        logger.error("fetch listener failed", exc_info=error)

    def start(self):
        if self._started:
            return
        self._started = True
        self.session.add_handler("Fetch.requestPaused", self._on_request_paused)
        self.session.add_handler("Fetch.authRequired", self._on_auth_required)

    def stop(self):
        if not self._started:
            return
        self._started = False
        self.session.remove_handler("Fetch.requestPaused", self._on_request_paused)
        self.session.remove_handler("Fetch.authRequired", self._on_auth_required)

    async def enable(self, patterns: list[dict] | None = None, handle_auth_requests: bool = False):
        """enable `Fetch.requestPaused` for requests matching `patterns` (all if omitted).

        :param patterns: list of `RequestPattern` dicts (`{"urlPattern": "*"}` ...).
        :param handle_auth_requests: also pause on auth challenges (`Fetch.authRequired`).
        :raises UsageError: malformed patterns.
        """
        params: dict = {}
        if patterns is not None:
            params["patterns"] = validate_patterns(patterns)
        if handle_auth_requests:
            params["handleAuthRequests"] = True
        await self.session.send("Fetch.enable", params)
        self._request_patterns = patterns
        self._handling_auth_requests = bool(handle_auth_requests)
        self._enabled = True
        logger.debug("enabled fetch interception: %s", params)

    async def disable(self):
        if not self._enabled:
            return
        await self.session.send("Fetch.disable", {})
        self._enabled = False
        self._handling_auth_requests = False
        self._request_patterns = None
        logger.debug("disabled fetch interception")

    async def continue_request(
        self,
        request_id: str,
        url: str | None = None,
        method: str | None = None,
        post_data: str | bytes | None = None,
        headers: dict | list | None = None,
        intercept_response: bool | None = None,
    ):
        """`Fetch.continueRequest`, only sending the overrides that were given.

        `post_data` is base64-encoded here, chrome expects it that way.
        """
        params: dict = {"requestId": request_id}
        if url is not None:
            params["url"] = url
        if method is not None:
            params["method"] = method
        if post_data is not None:
            raw = post_data.encode("utf-8") if isinstance(post_data, str) else bytes(post_data)
            params["postData"] = base64.b64encode(raw).decode()
        if headers is not None:
            params["headers"] = headers_array(headers)
        if intercept_response is not None:
            params["interceptResponse"] = intercept_response
        await self.session.send("Fetch.continueRequest", params)

    async def fulfill_request(
        self,
        request_id: str,
        response_code: int,
        response_headers: dict | list | None = None,
        body: bytes | None = None,
        response_phrase: str | None = None,
    ):
        """`Fetch.fulfillRequest`; `body` is raw bytes and gets base64-encoded here."""
        params: dict = {
            "requestId": request_id,
            "responseCode": response_code,
            "responseHeaders": headers_array(response_headers) or [],
        }
        if body is not None:
            params["body"] = base64.b64encode(body).decode()
        if response_phrase:
            params["responsePhrase"] = response_phrase
        await self.session.send("Fetch.fulfillRequest", params)

    async def fail_request(self, request_id: str, error_reason: str = "Failed"):
        await self.session.send(
            "Fetch.failRequest",
            {"requestId": request_id, "errorReason": error_reason or "Failed"},
        )

    async def continue_with_auth(
        self,
        request_id: str,
        response: str,
        username: str | None = None,
        password: str | None = None,
    ):
        """answer a `Fetch.authRequired` challenge.

        :param response: one of "Default", "CancelAuth", "ProvideCredentials".
        """
        if response not in AUTH_CHALLENGE_RESPONSES:
            raise UsageError(f"Unknown auth challenge response: {response}")
        challenge_response: dict = {"response": response}
        if response == "ProvideCredentials":
            challenge_response["username"] = username
            challenge_response["password"] = password
        await self.session.send(
            "Fetch.continueWithAuth",
            {"requestId": request_id, "authChallengeResponse": challenge_response},
        )

    async def get_response_body(self, request_id: str) -> bytes:
        """body of a request paused at the response stage."""
        result = await self.session.send("Fetch.getResponseBody", {"requestId": request_id})
        body = result.get("body", "")
        if result.get("base64Encoded"):
            return base64.b64decode(body)
        return body.encode("utf-8")

    def __repr__(self):
        return (
            f"<FetchInterceptor enabled={self._enabled} "
            f"patterns={self._request_patterns!r} auth={self._handling_auth_requests}>"
        )


__all__ = ["FetchInterceptor", "validate_patterns", "AUTH_CHALLENGE_RESPONSES"]
