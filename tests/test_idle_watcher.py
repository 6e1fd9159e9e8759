import asyncio

import pytest

from nodrivernet import IdleOptions, NetworkEvent, NetworkIdleWatcher

from conftest import will_be_sent

pytestmark = [pytest.mark.idle, pytest.mark.asyncio]


def _watch(manager, options):
    loop = asyncio.get_running_loop()
    watcher = NetworkIdleWatcher(manager, options)
    fired = []
    watcher.on(NetworkEvent.NETWORK_IDLE, lambda: fired.append(loop.time()))
    return watcher, fired


async def test_idle_fires_after_last_request_plus_quiet_period(session, manager):
    loop = asyncio.get_running_loop()
    watcher, fired = _watch(manager, IdleOptions(global_wait=1000, inflight_idle=200, num_inflight=0))
    started = loop.time()
    watcher.start()
    for request_id in ("1", "2", "3"):
        session.emit("Network.requestWillBeSent", will_be_sent(request_id, f"https://a.test/{request_id}"))
    for delay, request_id in ((0.05, "1"), (0.08, "2"), (0.1, "3")):
        loop.call_later(delay, session.emit, "Network.loadingFinished", {"requestId": request_id, "timestamp": 2.0})

    await asyncio.sleep(0.6)
    assert len(fired) == 1
    assert 0.25 <= fired[0] - started < 0.5
    assert watcher.done


async def test_idle_fires_exactly_once(session, manager):
    watcher, fired = _watch(manager, IdleOptions(global_wait=1000, inflight_idle=30, num_inflight=0))
    watcher.start()
    session.emit("Network.requestWillBeSent", will_be_sent("1", "https://a.test/1"))
    session.emit("Network.loadingFinished", {"requestId": "1", "timestamp": 2.0})
    await asyncio.sleep(0.1)
    assert len(fired) == 1

    session.emit("Network.requestWillBeSent", will_be_sent("2", "https://a.test/2"))
    session.emit("Network.loadingFailed", {"requestId": "2", "timestamp": 2.0, "errorText": "x"})
    await asyncio.sleep(0.1)
    assert len(fired) == 1
    assert manager.listeners(NetworkEvent.REQUEST) == []
    assert manager.listeners(NetworkEvent.REQUEST_FINISHED) == []


async def test_global_deadline_wins_over_busy_network(session, manager):
    loop = asyncio.get_running_loop()
    watcher, fired = _watch(manager, IdleOptions(global_wait=100, inflight_idle=50, num_inflight=0))
    started = loop.time()
    watcher.start()
    # a long poll that never finishes
    session.emit("Network.requestWillBeSent", will_be_sent("1", "https://a.test/poll"))
    await asyncio.sleep(0.3)
    assert len(fired) == 1
    assert 0.09 <= fired[0] - started < 0.25
    assert watcher.inflight == 1


async def test_new_request_above_threshold_resets_quiet_period(session, manager):
    loop = asyncio.get_running_loop()
    watcher, fired = _watch(manager, IdleOptions(global_wait=2000, inflight_idle=100, num_inflight=0))
    started = loop.time()
    watcher.start()
    session.emit("Network.requestWillBeSent", will_be_sent("1", "https://a.test/1"))
    session.emit("Network.loadingFinished", {"requestId": "1", "timestamp": 2.0})
    await asyncio.sleep(0.05)
    session.emit("Network.requestWillBeSent", will_be_sent("2", "https://a.test/2"))
    await asyncio.sleep(0.05)
    session.emit("Network.loadingFinished", {"requestId": "2", "timestamp": 2.0})
    await asyncio.sleep(0.3)
    assert len(fired) == 1
    assert fired[0] - started >= 0.19


async def test_wait_for_network_idle(session, manager):
    await asyncio.wait_for(
        manager.wait_for_network_idle(IdleOptions(global_wait=50, inflight_idle=1000)),
        timeout=1,
    )
    assert manager.listeners(NetworkEvent.REQUEST) == []
