"""`NetworkManager`: per-target request lifecycle, interception and cookies.

# overview:
protocol events arrive one at a time and every handler here runs to
completion synchronously; nothing awaits on the dispatch path. handlers:
- build `Request` / `Response` objects and keep the live index by request id
- pair `requestWillBeSent` with the interception event through the active
  `CorrelationStrategy` (chosen once, on first enable)
- emit `NetworkEvent`s (request -> response -> finished/failed)

follow-up commands a handler has to send (auth answers, letting through
pauses nobody asked for) are scheduled as tasks and tracked in `tasks`;
`wait_for_tasks()` drains them. their failures are logged, never raised.

lifecycle:
1. `start()`: subscribe + `Network.enable`
2. use it: `set_request_interception()`, `authenticate()`, cookies, waits...
3. `stop()`: unsubscribe, stop answering auth challenges, drain tasks
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pyee.asyncio import AsyncIOEventEmitter

from ..connection import CDPSession
from ..errors import (
    ConnectionClosedError,
    ProtocolError,
    UsageError,
    WaitTimeoutError,
    is_known_protocol_failure,
    rewrite_error,
)
from ..events import InterceptionMode, NetworkEvent
from .cookie import Cookie
from .correlation import CorrelationStrategy, strategy_for
from .fetch import validate_patterns
from .idle_watcher import IdleOptions, NetworkIdleWatcher
from .request import Request
from .response import Response, redirect_body_error

logger = logging.getLogger("nodrivernet.NetworkManager")


def _split_name_value(cookie: str) -> tuple[str, str]:
    name, _, value = cookie.partition("=")
    return name, value


class NetworkManager(AsyncIOEventEmitter):
    """
    :param session: anything satisfying `CDPSession` (`NodriverSession` in production).
    :param frame_manager: optional; `frame(frame_id)` resolves `Request.frame`.
    :param interception_mode: interception generation to drive once
    interception gets enabled. fixed for the manager's lifetime.
    """

    tasks: set[asyncio.Task]

    def __init__(
        self,
        session: CDPSession,
        *,
        frame_manager: Any = None,
        interception_mode: InterceptionMode = InterceptionMode.FETCH,
    ):
        super().__init__()
        self.session = session
        self.frame_manager = frame_manager
        self.interception_mode = InterceptionMode(interception_mode)
        self.tasks = set()

        self._requests: dict[str, Request] = {}
        self._strategy: CorrelationStrategy | None = None
        self._extra_http_headers: dict[str, str] = {}
        self._offline = False
        self._cache_enabled = True
        self._credentials: dict | None = None
        self._attempted_authentications: set[str] = set()
        self._user_request_interception_enabled = False
        self._request_patterns: list[dict] | None = None
        # (enabled, patterns) last applied to the browser
        self._protocol_interception: tuple[bool, list[dict] | None] = (False, None)

        self._started = False
        self._stopped = False
        self._handlers: dict[str, Callable[[dict], None]] = {
            "Network.requestWillBeSent": self._on_request_will_be_sent,
            "Network.requestServedFromCache": self._on_request_served_from_cache,
            "Network.responseReceived": self._on_response_received,
            "Network.loadingFinished": self._on_loading_finished,
            "Network.loadingFailed": self._on_loading_failed,
        }
        self.on("error", self._on_listener_error)

    # --- lifecycle

    async def start(self):
        if self._started:
            return
        self._started = True
        self._stopped = False
        for method, handler in self._handlers.items():
            self.session.add_handler(method, handler)
        if self._strategy is not None:
            self._strategy.subscribe(self._on_request_paused, self._on_auth_required)
        await self._send("Network.enable")
        logger.debug("network manager started (%s interception)", self.interception_mode.value)

    async def stop(self):
        """detach from the session and drain follow-up tasks.

        interception is left as is in the browser; disable it first if the
        target outlives the manager.
        """
        if self._stopped:
            return
        self._stopped = True
        if self._started:
            for method, handler in self._handlers.items():
                self.session.remove_handler(method, handler)
            if self._strategy is not None:
                self._strategy.unsubscribe()
        self._started = False
        await self.wait_for_tasks()
        logger.debug("network manager stopped")

    async def wait_for_tasks(self):
        """await all outstanding follow-up commands."""
        if not self.tasks:
            return
        logger.debug("waiting for %d pending tasks", len(self.tasks))
        await asyncio.gather(*self.tasks, return_exceptions=True)

    def _schedule(self, coro: Awaitable, description: str):
        task = asyncio.ensure_future(coro)
        self.tasks.add(task)

        def _done(t: asyncio.Task):
            self.tasks.discard(t)
            if t.cancelled():
                return
            e = t.exception()
            if e is None:
                return
            if isinstance(e, ConnectionClosedError):
                logger.debug("connection closed while trying to %s", description)
            elif is_known_protocol_failure(e):
                logger.warning("failed to %s:\n  %s", description, e)
            else:
                logger.exception("unexpected error while trying to %s", description, exc_info=e)

        task.add_done_callback(_done)
        return task

    async def _send(self, method: str, params: dict | None = None) -> dict:
        try:
            return await self.session.send(method, params or {})
        except ProtocolError as e:
            rewritten = rewrite_error(e)
            if rewritten is e:
                raise
            raise rewritten from e

    def _on_listener_error(self, error: Exception):
        logger.error("network event listener failed", exc_info=error)

    # --- state

    @property
    def requests(self) -> dict[str, Request]:
        """live (not yet finished/failed/redirected) requests by id. a copy."""
        return dict(self._requests)

    @property
    def strategy(self) -> CorrelationStrategy | None:
        return self._strategy

    @property
    def extra_http_headers(self) -> dict[str, str]:
        return dict(self._extra_http_headers)

    @property
    def offline(self) -> bool:
        return self._offline

    @property
    def cache_enabled(self) -> bool:
        return self._cache_enabled

    @property
    def request_interception_enabled(self) -> bool:
        return self._user_request_interception_enabled

    @property
    def protocol_request_interception_enabled(self) -> bool:
        return self._protocol_interception[0]

    # --- interception

    async def set_request_interception(self, enabled: bool, patterns: list[dict] | None = None):
        """turn user-level request interception on or off.

        while on, every `Request` emitted with `NetworkEvent.REQUEST` is paused
        in the browser until one of `continue_()`, `respond()` or `abort()`.

        :param patterns: `RequestPattern` dicts (`Fetch` mode only); all
        requests when omitted.
        :raises UsageError: malformed patterns.
        """
        if patterns is not None:
            validate_patterns(patterns)
            if self.interception_mode is InterceptionMode.LEGACY:
                logger.debug("legacy interception always uses the catch-all pattern, ignoring %s", patterns)
        self._user_request_interception_enabled = bool(enabled)
        self._request_patterns = [dict(p) for p in patterns] if patterns is not None else None
        await self._update_protocol_request_interception()

    async def authenticate(self, credentials: dict | None):
        """answer HTTP auth challenges with `{"username": ..., "password": ...}`.

        pass `None` to stop. enables protocol-level interception as needed.
        """
        if credentials is not None:
            if "username" not in credentials or "password" not in credentials:
                raise UsageError("credentials need both a username and a password")
            credentials = {"username": credentials["username"], "password": credentials["password"]}
        self._credentials = credentials
        await self._update_protocol_request_interception()

    def _ensure_strategy(self) -> CorrelationStrategy:
        if self._strategy is None:
            self._strategy = strategy_for(self.interception_mode, self.session)
            if self._started:
                self._strategy.subscribe(self._on_request_paused, self._on_auth_required)
            logger.debug("using %r", self._strategy)
        return self._strategy

    async def _update_protocol_request_interception(self):
        enabled = self._user_request_interception_enabled or self._credentials is not None
        patterns = None
        if enabled and self.interception_mode is InterceptionMode.FETCH:
            patterns = self._request_patterns
        state = (enabled, patterns)
        if state == self._protocol_interception:
            return
        previous = self._protocol_interception
        self._protocol_interception = state
        if not enabled and self._strategy is None:
            return
        strategy = self._ensure_strategy()
        try:
            await self._update_protocol_cache_disabled()
            if enabled:
                await strategy.enable(patterns)
            else:
                await strategy.disable()
        except Exception:
            # let the next call retry
            self._protocol_interception = previous
            raise
        logger.debug("protocol request interception: %s", state)

    async def _update_protocol_cache_disabled(self):
        # intercepted requests must not be answered from the cache
        await self._send(
            "Network.setCacheDisabled",
            {"cacheDisabled": not self._cache_enabled or self._protocol_interception[0]},
        )

    # --- protocol event handlers

    def _on_request_will_be_sent(self, event: dict):
        if self._stopped:
            return
        # interception doesn't happen for data URLs
        if self._protocol_interception[0] and not event["request"]["url"].startswith("data:"):
            strategy = self._strategy
            if event.get("redirectResponse") and event["requestId"] not in self._requests:
                # previous hop was never paused; materialize it so the chain is kept
                self._materialize(event["requestId"])
            pair = strategy.request_will_be_sent(event)
            if pair is not None:
                self._on_request(*pair)
            else:
                logger.debug("buffered requestWillBeSent for %s", event["request"]["url"])
            return
        self._on_request(event, None)

    def _on_request_paused(self, event: dict, interception_id: str):
        if self._stopped:
            return
        strategy = self._strategy
        if strategy.is_response_stage(event):
            self._schedule(
                strategy.continue_request(interception_id),
                f"continue response for {event['request']['url']}",
            )
            return
        if not self._user_request_interception_enabled and self._protocol_interception[0]:
            # only intercepting for credentials
            self._schedule(
                strategy.continue_request(interception_id),
                f"continue request for {event['request']['url']}",
            )
        pair = strategy.request_paused(event, interception_id)
        if pair is not None:
            self._on_request(*pair)
        else:
            logger.debug("buffered paused request %s for %s", interception_id, event["request"]["url"])

    def _on_auth_required(self, interception_id: str):
        if self._stopped:
            return
        username = password = None
        if interception_id in self._attempted_authentications:
            response = "CancelAuth"
        elif self._credentials is not None:
            response = "ProvideCredentials"
            username = self._credentials["username"]
            password = self._credentials["password"]
            self._attempted_authentications.add(interception_id)
        else:
            response = "Default"
        logger.debug("answering auth challenge %s with %s", interception_id, response)
        self._schedule(
            self._strategy.continue_with_auth(interception_id, response, username, password),
            f"answer auth challenge {interception_id}",
        )

    def _on_request(self, event: dict, interception_id: str | None):
        redirect_chain: list[Request] = []
        if event.get("redirectResponse"):
            request = self._requests.get(event["requestId"])
            # attaching late can mean the previous hop was never seen
            if request is not None:
                redirect_chain = self._handle_request_redirect(request, event)
        frame = None
        frame_id = event.get("frameId")
        if frame_id and self.frame_manager is not None:
            frame = self.frame_manager.frame(frame_id)
        request = Request(
            self.session,
            event,
            frame=frame,
            redirect_chain=redirect_chain,
            interception_id=interception_id,
            interception=self._strategy,
            allow_interception=self._user_request_interception_enabled,
        )
        self._requests[request.request_id] = request
        self.emit(NetworkEvent.REQUEST, request)

    def _handle_request_redirect(self, request: Request, event: dict) -> list[Request]:
        response = request._response
        if response is None:
            response = Response(self.session, request, event)
            request._response = response
        response.body_loaded.resolve(redirect_body_error())
        redirect_chain = request._redirect_chain + [request]
        self._retire(request)
        logger.debug("redirect: %s => %s", request.url, event["request"]["url"])
        self.emit(NetworkEvent.RESPONSE, response)
        self.emit(NetworkEvent.REQUEST_FINISHED, request)
        return redirect_chain

    def _materialize(self, request_id: str) -> Request | None:
        """create the `Request` for a still-buffered `requestWillBeSent`."""
        if self._strategy is None:
            return None
        event = self._strategy.release(request_id)
        if event is None:
            return None
        self._on_request(event, None)
        return self._requests.get(request_id)

    def _live_request(self, request_id: str) -> Request | None:
        # a buffered hop is newer than the indexed request (unpaused redirect target)
        request = self._materialize(request_id)
        if request is None:
            request = self._requests.get(request_id)
        return request

    def _retire(self, request: Request):
        self._requests.pop(request.request_id, None)
        if request.interception_id is not None:
            self._attempted_authentications.discard(request.interception_id)

    def _on_request_served_from_cache(self, event: dict):
        if self._stopped:
            return
        request = self._requests.get(event["requestId"])
        if request is not None:
            request._from_memory_cache = True

    def _on_response_received(self, event: dict):
        if self._stopped:
            return
        request = self._live_request(event["requestId"])
        # file uploads get a response without a request
        if request is None:
            return
        if request._response is not None:
            logger.debug("ignoring second response for %r", request)
            return
        response = Response(self.session, request, event)
        request._response = response
        self.emit(NetworkEvent.RESPONSE, response)

    def _on_loading_finished(self, event: dict):
        if self._stopped:
            return
        request = self._live_request(event["requestId"])
        # some request ids never get a requestWillBeSent
        if request is None:
            return
        # and some never get a responseReceived
        if request._response is not None:
            request._response.body_loaded.resolve()
        self._retire(request)
        self.emit(NetworkEvent.REQUEST_FINISHED, request)

    def _on_loading_failed(self, event: dict):
        if self._stopped:
            return
        request = self._live_request(event["requestId"])
        if request is None:
            return
        request._failure_text = event.get("errorText")
        if request._response is not None:
            request._response.body_loaded.resolve()
        self._retire(request)
        self.emit(NetworkEvent.REQUEST_FAILED, request)

    # --- cookies

    def _cookies(self, result: dict) -> list[Cookie]:
        return [Cookie(self, c) for c in result.get("cookies", [])]

    async def get_all_cookies(self) -> list[Cookie]:
        return self._cookies(await self._send("Network.getAllCookies"))

    async def get_cookies(self, urls: list[str] | str | None = None) -> list[Cookie]:
        """cookies visible to `urls` (the current page's url if omitted)."""
        params = {}
        if urls:
            params["urls"] = [urls] if isinstance(urls, str) else list(urls)
        return self._cookies(await self._send("Network.getCookies", params))

    def _cookie_param(self, cookie: dict | str) -> dict:
        if isinstance(cookie, str):
            name, value = _split_name_value(cookie)
            return {"name": name, "value": value}
        if isinstance(cookie, Cookie):
            cookie = cookie.to_dict()
            # read-only fields `Network.getCookies` reports but setCookie rejects
            for key in ("size", "session", "priority", "sourceScheme", "sourcePort"):
                cookie.pop(key, None)
            return cookie
        return dict(cookie)

    async def set_cookie(self, cookie: dict | str) -> bool:
        """set one cookie (`CookieParam` dict or "name=value").

        :return: whether the browser accepted it.
        """
        result = await self._send("Network.setCookie", self._cookie_param(cookie))
        return bool(result.get("success", True))

    async def set_cookies(self, *cookies: dict | str):
        if not cookies:
            return
        await self._send(
            "Network.setCookies", {"cookies": [self._cookie_param(c) for c in cookies]}
        )

    async def delete_cookie(self, cookie: Cookie | dict | str, for_url: str | None = None):
        """delete cookies matching `cookie`.

        :param cookie: a `Cookie`, a `DeleteCookies` params dict, a name or "name=value".
        :param for_url: restrict to cookies that would be sent to this url.
        """
        if isinstance(cookie, str):
            name, _ = _split_name_value(cookie)
            params: dict = {"name": name}
        elif isinstance(cookie, Cookie):
            params = {"name": cookie.name}
            if cookie.domain:
                params["domain"] = cookie.domain
            if cookie.path:
                params["path"] = cookie.path
        else:
            params = dict(cookie)
        if for_url:
            params["url"] = for_url
        await self._send("Network.deleteCookies", params)

    async def delete_cookies(self, *cookies: Cookie | dict | str):
        for cookie in cookies:
            await self.delete_cookie(cookie)

    async def clear_browser_cookies(self):
        await self._send("Network.clearBrowserCookies")

    # --- pass-through configuration

    async def set_extra_http_headers(self, headers: dict[str, str]):
        """
        :raises UsageError: a header value is not a `str`.
        """
        extra: dict[str, str] = {}
        for name, value in headers.items():
            if not isinstance(value, str):
                raise UsageError(
                    f'Expected value of header "{name}" to be str, but "{type(value).__name__}" is found.'
                )
            extra[name.lower()] = value
        self._extra_http_headers = extra
        await self._send("Network.setExtraHTTPHeaders", {"headers": dict(extra)})

    async def set_offline_mode(self, offline: bool):
        offline = bool(offline)
        if self._offline == offline:
            return
        self._offline = offline
        await self._send("Network.emulateNetworkConditions", {
            "offline": offline,
            # 0 latency and -1 throughput remove any active throttling
            "latency": 0,
            "downloadThroughput": -1,
            "uploadThroughput": -1,
        })

    async def emulate_network_conditions(
        self,
        offline: bool = False,
        latency: float = 0,
        download_throughput: float = -1,
        upload_throughput: float = -1,
        connection_type: str | None = None,
    ):
        """
        :param latency: minimum latency in ms.
        :param download_throughput: bytes/sec, -1 disables throttling.
        :param upload_throughput: bytes/sec, -1 disables throttling.
        :param connection_type: e.g. "cellular3g", "wifi".
        """
        params: dict = {
            "offline": bool(offline),
            "latency": latency,
            "downloadThroughput": download_throughput,
            "uploadThroughput": upload_throughput,
        }
        if connection_type:
            params["connectionType"] = connection_type
        self._offline = bool(offline)
        await self._send("Network.emulateNetworkConditions", params)

    async def set_user_agent(
        self,
        user_agent: str | None = None,
        accept_language: str | None = None,
        platform: str | None = None,
    ):
        """
        :raises UsageError: none of the three values was given.
        """
        if user_agent is None and accept_language is None and platform is None:
            raise UsageError(
                'Must supply a value for at least one of "user_agent, accept_language, platform"'
            )
        params = {}
        if user_agent:
            params["userAgent"] = user_agent
        if accept_language:
            params["acceptLanguage"] = accept_language
        if platform:
            params["platform"] = platform
        await self._send("Network.setUserAgentOverride", params)

    async def set_cache_enabled(self, enabled: bool):
        """toggle the browser cache; it stays off while interception is on."""
        self._cache_enabled = bool(enabled)
        await self._update_protocol_cache_disabled()

    async def clear_browser_cache(self):
        await self._send("Network.clearBrowserCache")

    async def set_blocked_urls(self, *urls: str):
        """block requests to urls matching these patterns (`*` wildcards)."""
        if not urls:
            return
        await self._send("Network.setBlockedURLs", {"urls": list(urls)})

    async def bypass_service_worker(self, bypass: bool):
        await self._send("Network.setBypassServiceWorker", {"bypass": bool(bypass)})

    # --- waiting

    async def _wait_for_event(
        self,
        event: NetworkEvent,
        predicate: Callable[[Any], bool],
        timeout: float | None,
    ):
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def _listener(target):
            if future.done():
                return
            try:
                matched = predicate(target)
            except Exception as e:
                future.set_exception(e)
                return
            if matched:
                future.set_result(target)

        self.on(event, _listener)
        try:
            if not timeout:
                return await future
            try:
                return await asyncio.wait_for(future, timeout / 1000)
            except asyncio.TimeoutError:
                raise WaitTimeoutError(
                    f"Timeout of {timeout}ms exceeded while waiting for {event.value}"
                ) from None
        finally:
            self.remove_listener(event, _listener)

    @staticmethod
    def _predicate(url_or_predicate: str | Callable[[Any], bool]) -> Callable[[Any], bool]:
        if isinstance(url_or_predicate, str):
            return lambda target: target.url == url_or_predicate
        if callable(url_or_predicate):
            return lambda target: bool(url_or_predicate(target))
        raise UsageError("Must provide a url or a predicate.")

    async def wait_for_request(
        self,
        url_or_predicate: str | Callable[[Request], bool],
        timeout: float | None = 30000,
    ) -> Request:
        """first `Request` whose url equals `url_or_predicate` (or that the
        predicate accepts).

        :param timeout: ms; 0/None waits forever.
        :raises WaitTimeoutError: nothing matched in time.
        """
        return await self._wait_for_event(
            NetworkEvent.REQUEST, self._predicate(url_or_predicate), timeout
        )

    async def wait_for_response(
        self,
        url_or_predicate: str | Callable[[Response], bool],
        timeout: float | None = 30000,
    ) -> Response:
        """`wait_for_request()` for `Response`s."""
        return await self._wait_for_event(
            NetworkEvent.RESPONSE, self._predicate(url_or_predicate), timeout
        )

    async def wait_for_network_idle(self, options: IdleOptions | None = None):
        await NetworkIdleWatcher.wait_for_idle(self, options)

    def __repr__(self):
        return (
            f"<NetworkManager live={len(self._requests)} "
            f"interception={self._protocol_interception[0]} mode={self.interception_mode.value}>"
        )


__all__ = ["NetworkManager"]
