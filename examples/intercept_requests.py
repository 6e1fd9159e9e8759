import asyncio

import nodriver
from nodrivernet import NetworkEvent, NetworkManager, NodriverSession, Request

URL = "https://example.com"

# block images, mock one api call, let everything else through
async def main():
    browser = await nodriver.start(headless=True)
    tab = await browser.get("about:blank")
    manager = NetworkManager(NodriverSession(tab))
    await manager.start()
    await manager.set_request_interception(True)

    async def on_request(request: Request):
        if request.resource_type == "Image":
            await request.abort("blocked-by-client")
        elif request.url.endswith("/api/status"):
            await request.respond(content_type="application/json", body='{"ok": true}')
        else:
            await request.continue_()

    manager.on(NetworkEvent.REQUEST, on_request)
    manager.on(NetworkEvent.REQUEST_FAILED, lambda r: print("failed:", r.url, r.failure()))

    await tab.get(URL)
    response = await manager.wait_for_response(URL + "/")
    print(response.status_line())
    print((await response.text())[:200])

    await manager.set_request_interception(False)
    await manager.stop()
    browser.stop()

if __name__ == "__main__":
    asyncio.run(main())
