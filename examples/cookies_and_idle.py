import asyncio

import nodriver
from nodrivernet import IdleOptions, NetworkManager, NodriverSession

URL = "https://example.com"

async def main():
    browser = await nodriver.start(headless=True)
    tab = await browser.get("about:blank")
    manager = NetworkManager(NodriverSession(tab))
    await manager.start()

    await manager.set_cookie({"name": "visited", "value": "1", "domain": "example.com"})
    await tab.get(URL)
    # settle once at most one request is left for 500ms (or give up after 10s)
    await manager.wait_for_network_idle(IdleOptions(global_wait=10000, inflight_idle=500, num_inflight=1))

    for cookie in await manager.get_cookies([URL]):
        print(cookie)
    await manager.delete_cookie("visited", for_url=URL)

    await manager.stop()
    browser.stop()

if __name__ == "__main__":
    asyncio.run(main())
