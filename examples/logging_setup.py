import asyncio
import logging

import nodriver
from nodrivernet import NetworkManager, NodriverSession

# show how to raise log level beyond default warnings/errors
async def main():
    logging.basicConfig(level=logging.INFO)
    # correlation decisions and tolerated command failures log at debug
    logging.getLogger("nodrivernet").setLevel(logging.DEBUG)
    browser = await nodriver.start(headless=True)
    tab = await browser.get("about:blank")
    manager = NetworkManager(NodriverSession(tab))
    await manager.start()
    await tab.get("https://example.com")
    await manager.wait_for_network_idle()
    await manager.stop()
    browser.stop()

if __name__ == "__main__":
    asyncio.run(main())
