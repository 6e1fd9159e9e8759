from __future__ import annotations

from enum import Enum


class NetworkEvent(Enum):
    """local events emitted by `NetworkManager` and `NetworkIdleWatcher`."""

    REQUEST = "request"
    RESPONSE = "response"
    REQUEST_FINISHED = "requestfinished"
    REQUEST_FAILED = "requestfailed"
    NETWORK_IDLE = "networkidle"


class FetchEvent(Enum):
    """local re-emissions of the `Fetch` domain events by `FetchInterceptor`."""

    REQUEST_PAUSED = "Fetch.requestPaused"
    AUTH_REQUIRED = "Fetch.authRequired"


class InterceptionMode(Enum):
    """which interception generation a `NetworkManager` drives.

    - `LEGACY`: `Network.setRequestInterception` + `Network.requestIntercepted`,
      correlated to `Network.requestWillBeSent` by request content hash
    - `FETCH`: `Fetch.enable` + `Fetch.requestPaused`, correlated by `networkId`
    """

    LEGACY = "legacy"
    FETCH = "fetch"


__all__ = ["NetworkEvent", "FetchEvent", "InterceptionMode"]
