"""network idle detection on top of `NetworkManager` events.

"idle" here is a threshold, not zero in-flight requests: once no more than
`num_inflight` requests are outstanding for `inflight_idle` ms, the page is
considered settled. long-poll / keep-alive requests that never finish don't
hold it up. `global_wait` is the hard deadline either way.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pyee.asyncio import AsyncIOEventEmitter

from ..events import NetworkEvent

if TYPE_CHECKING:
    from .manager import NetworkManager
    from .request import Request

logger = logging.getLogger("nodrivernet.NetworkIdleWatcher")


@dataclass
class IdleOptions:
    """timing knobs for `NetworkIdleWatcher`, all in milliseconds.

    - `global_wait`: give up waiting and declare idle after this long
    - `inflight_idle`: quiet period required once in-flight count is low enough
    - `num_inflight`: in-flight count at or below which the quiet period starts
    """

    global_wait: float = 40000
    inflight_idle: float = 1500
    num_inflight: int = 2


class NetworkIdleWatcher(AsyncIOEventEmitter):
    """one-shot watcher; emits `NetworkEvent.NETWORK_IDLE` exactly once.

    :param manager: the `NetworkManager` whose request events are observed.
    :param options: see `IdleOptions`; defaults when omitted.
    """

    def __init__(self, manager: NetworkManager, options: IdleOptions | None = None):
        super().__init__()
        self.manager = manager
        self.options = options or IdleOptions()
        self._request_ids: set[str] = set()
        self._idle_timer: asyncio.TimerHandle | None = None
        self._global_timer: asyncio.TimerHandle | None = None
        self._done = False
        self._listening = False
        self.on("error", self._on_listener_error)

    @property
    def done(self) -> bool:
        return self._done

    @property
    def inflight(self) -> int:
        return len(self._request_ids)

    @classmethod
    async def wait_for_idle(cls, manager: NetworkManager, options: IdleOptions | None = None):
        """start a watcher and wait until it declares the network idle."""
        watcher = cls(manager, options)
        idle = asyncio.get_running_loop().create_future()

        def _resolve():
            if not idle.done():
                idle.set_result(None)

        watcher.once(NetworkEvent.NETWORK_IDLE, _resolve)
        watcher.start()
        try:
            await idle
        finally:
            watcher.stop()

    def start(self):
        if self._listening:
            return
        self._listening = True
        self._request_ids.clear()
        self._done = False
        self.manager.on(NetworkEvent.REQUEST, self._request_started)
        self.manager.on(NetworkEvent.REQUEST_FINISHED, self._request_finished)
        self.manager.on(NetworkEvent.REQUEST_FAILED, self._request_finished)
        loop = asyncio.get_running_loop()
        self._global_timer = loop.call_later(self.options.global_wait / 1000, self._global_timeout)
        logger.debug("watching for network idle: %s", self.options)

    def stop(self):
        """detach without emitting; safe to call after idle fired."""
        self._clear_timers()
        self._detach()

    def _request_started(self, request: Request):
        if self._done:
            return
        self._request_ids.add(request.request_id)
        if len(self._request_ids) > self.options.num_inflight and self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _request_finished(self, request: Request):
        if self._done:
            return
        self._request_ids.discard(request.request_id)
        if len(self._request_ids) <= self.options.num_inflight and self._idle_timer is None:
            loop = asyncio.get_running_loop()
            self._idle_timer = loop.call_later(self.options.inflight_idle / 1000, self._network_idled)

    def _global_timeout(self):
        self._global_timer = None
        logger.debug("global wait of %sms reached, %d requests in flight",
            self.options.global_wait, len(self._request_ids))
        self._finish()

    def _network_idled(self):
        self._idle_timer = None
        logger.debug("network idle, %d requests in flight", len(self._request_ids))
        self._finish()

    def _finish(self):
        if self._done:
            return
        self._done = True
        self._clear_timers()
        self._detach()
        asyncio.get_running_loop().call_soon(self.emit, NetworkEvent.NETWORK_IDLE)

    def _clear_timers(self):
        if self._global_timer is not None:
            self._global_timer.cancel()
            self._global_timer = None
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _detach(self):
        if not self._listening:
            return
        self._listening = False
        self.manager.remove_listener(NetworkEvent.REQUEST, self._request_started)
        self.manager.remove_listener(NetworkEvent.REQUEST_FINISHED, self._request_finished)
        self.manager.remove_listener(NetworkEvent.REQUEST_FAILED, self._request_finished)

    def _on_listener_error(self, error: Exception):
        logger.error("network idle listener failed", exc_info=error)

    def __repr__(self):
        return f"<NetworkIdleWatcher inflight={len(self._request_ids)} done={self._done}>"


__all__ = ["IdleOptions", "NetworkIdleWatcher"]
