from __future__ import annotations

from collections import defaultdict
from urllib.parse import urlsplit

import pytest
import pytest_asyncio

from nodrivernet import InterceptionMode, NetworkManager


class FakeSession:
    """in-memory stand-in for a browser tab.

    - records every command in `commands`
    - `results[method]` is returned (dict), raised (exception) or called (callable)
    - keeps a tiny cookie jar for the `Network.*Cookie*` commands
    - `emit()` dispatches an event to the registered handlers, in order
    """

    def __init__(self):
        self.handlers: dict[str, list] = defaultdict(list)
        self.commands: list[tuple[str, dict]] = []
        self.results: dict = {}
        self.cookies: list[dict] = []

    async def send(self, method: str, params: dict | None = None) -> dict:
        params = params or {}
        self.commands.append((method, params))
        if method in self.results:
            result = self.results[method]
            if isinstance(result, BaseException):
                raise result
            if callable(result):
                return result(params)
            return result
        jar = getattr(self, "_" + method.split(".", 1)[1], None)
        if jar is not None and "Cookie" in method:
            return jar(params)
        return {}

    def add_handler(self, method, handler):
        self.handlers[method].append(handler)

    def remove_handler(self, method, handler):
        if handler in self.handlers[method]:
            self.handlers[method].remove(handler)

    def emit(self, method: str, params: dict):
        for handler in list(self.handlers[method]):
            handler(params)

    def sent(self, method: str) -> list[dict]:
        return [params for name, params in self.commands if name == method]

    @property
    def methods(self) -> list[str]:
        return [name for name, _ in self.commands]

    # --- cookie jar

    @staticmethod
    def _host(url: str) -> str:
        return urlsplit(url).hostname or ""

    def _store(self, params: dict):
        domain = params.get("domain") or self._host(params.get("url", ""))
        cookie = {
            "name": params["name"],
            "value": params.get("value", ""),
            "domain": domain,
            "path": params.get("path", "/"),
            "expires": params.get("expires", -1),
            "size": len(params["name"]) + len(params.get("value", "")),
            "httpOnly": params.get("httpOnly", False),
            "secure": params.get("secure", False),
            "session": "expires" not in params,
            "sameSite": params.get("sameSite"),
        }
        key = (cookie["name"], cookie["domain"], cookie["path"])
        self.cookies = [
            c for c in self.cookies if (c["name"], c["domain"], c["path"]) != key
        ]
        self.cookies.append(cookie)

    def _setCookie(self, params):
        self._store(params)
        return {"success": True}

    def _setCookies(self, params):
        for cookie in params["cookies"]:
            self._store(cookie)
        return {}

    def _getAllCookies(self, params):
        return {"cookies": [dict(c) for c in self.cookies]}

    def _getCookies(self, params):
        urls = params.get("urls")
        if not urls:
            return self._getAllCookies(params)
        hosts = {self._host(url) for url in urls}
        return {"cookies": [
            dict(c) for c in self.cookies
            if any(host.endswith(c["domain"].lstrip(".")) for host in hosts)
        ]}

    def _deleteCookies(self, params):
        def matches(c):
            if c["name"] != params["name"]:
                return False
            if params.get("domain") and c["domain"] != params["domain"]:
                return False
            if params.get("path") and c["path"] != params["path"]:
                return False
            if params.get("url") and not self._host(params["url"]).endswith(c["domain"].lstrip(".")):
                return False
            return True

        self.cookies = [c for c in self.cookies if not matches(c)]
        return {}

    def _clearBrowserCookies(self, params):
        self.cookies = []
        return {}


def request_payload(url: str, method: str = "GET", headers: dict | None = None, post_data: str | None = None) -> dict:
    request = {"url": url, "method": method, "headers": dict(headers or {})}
    if post_data is not None:
        request["postData"] = post_data
        request["hasPostData"] = True
    return request


def will_be_sent(
    request_id: str,
    url: str,
    *,
    method: str = "GET",
    headers: dict | None = None,
    post_data: str | None = None,
    resource_type: str = "Document",
    loader_id: str | None = None,
    frame_id: str | None = "F1",
    redirect_response: dict | None = None,
) -> dict:
    event = {
        "requestId": request_id,
        "loaderId": loader_id if loader_id is not None else request_id,
        "documentURL": url,
        "request": request_payload(url, method, headers, post_data),
        "timestamp": 1.0,
        "wallTime": 1700000000.0,
        "initiator": {"type": "other"},
        "type": resource_type,
        "frameId": frame_id,
    }
    if redirect_response is not None:
        event["redirectResponse"] = redirect_response
    return event


def request_paused(
    interception_id: str,
    url: str,
    *,
    network_id: str | None = None,
    method: str = "GET",
    headers: dict | None = None,
    resource_type: str = "Document",
    frame_id: str = "F1",
    response_status_code: int | None = None,
) -> dict:
    event = {
        "requestId": interception_id,
        "request": request_payload(url, method, headers),
        "frameId": frame_id,
        "resourceType": resource_type,
    }
    if network_id is not None:
        event["networkId"] = network_id
    if response_status_code is not None:
        event["responseStatusCode"] = response_status_code
        event["responseHeaders"] = []
    return event


def request_intercepted(
    interception_id: str,
    url: str,
    *,
    method: str = "GET",
    headers: dict | None = None,
    post_data: str | None = None,
    auth_challenge: dict | None = None,
) -> dict:
    event = {
        "interceptionId": interception_id,
        "request": request_payload(url, method, headers, post_data),
        "frameId": "F1",
        "resourceType": "Document",
        "isNavigationRequest": True,
    }
    if auth_challenge is not None:
        event["authChallenge"] = auth_challenge
    return event


def response_payload(url: str, status: int = 200, headers: dict | None = None, **extra) -> dict:
    payload = {
        "url": url,
        "status": status,
        "statusText": "",
        "headers": dict(headers or {}),
        "mimeType": "text/html",
        "connectionReused": False,
        "connectionId": 1,
        "encodedDataLength": 100,
        "securityState": "neutral",
        "protocol": "http/1.1",
    }
    payload.update(extra)
    return payload


def response_received(request_id: str, url: str, status: int = 200, **extra) -> dict:
    return {
        "requestId": request_id,
        "loaderId": request_id,
        "timestamp": 2.0,
        "type": "Document",
        "response": response_payload(url, status, **extra),
        "frameId": "F1",
    }


AUTH_CHALLENGE = {"source": "Server", "origin": "https://secure.test", "scheme": "basic", "realm": "test"}


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest_asyncio.fixture
async def manager(session):
    manager = NetworkManager(session)
    await manager.start()
    yield manager
    await manager.stop()


@pytest_asyncio.fixture
async def legacy_manager(session):
    manager = NetworkManager(session, interception_mode=InterceptionMode.LEGACY)
    await manager.start()
    yield manager
    await manager.stop()


@pytest.fixture
def recorded(manager):
    """every local event the `manager` fixture emits, as `(event, payload)`."""
    from nodrivernet import NetworkEvent

    events: list = []
    for kind in (
        NetworkEvent.REQUEST,
        NetworkEvent.RESPONSE,
        NetworkEvent.REQUEST_FINISHED,
        NetworkEvent.REQUEST_FAILED,
    ):
        manager.on(kind, lambda payload, kind=kind: events.append((kind, payload)))
    return events
