import pytest

from nodrivernet import Cookie

pytestmark = [pytest.mark.cookies, pytest.mark.asyncio]


async def test_cookie_round_trip(session, manager):
    assert await manager.set_cookie({"name": "sid", "value": "abc", "domain": "example.com"})
    cookies = await manager.get_cookies(["https://example.com/"])
    assert [(c.name, c.value) for c in cookies] == [("sid", "abc")]
    assert all(isinstance(c, Cookie) for c in cookies)

    await manager.delete_cookie("sid")
    assert await manager.get_all_cookies() == []


async def test_name_value_strings(session, manager):
    await manager.set_cookie("a=1")
    await manager.set_cookies("b=2", {"name": "c", "value": "3", "url": "https://c.test/"})
    assert session.sent("Network.setCookie") == [{"name": "a", "value": "1"}]
    assert session.sent("Network.setCookies") == [{"cookies": [
        {"name": "b", "value": "2"},
        {"name": "c", "value": "3", "url": "https://c.test/"},
    ]}]
    assert sorted(c.name for c in await manager.get_all_cookies()) == ["a", "b", "c"]

    await manager.delete_cookies("a=1", "b")
    assert [c.name for c in await manager.get_all_cookies()] == ["c"]


async def test_delete_cookie_does_not_mutate_callers_dict(session, manager):
    params = {"name": "sid"}
    await manager.delete_cookie(params, for_url="https://example.com/")
    assert params == {"name": "sid"}
    assert session.sent("Network.deleteCookies") == [{"name": "sid", "url": "https://example.com/"}]


async def test_cookie_delete_uses_identity(session, manager):
    await manager.set_cookie({"name": "sid", "value": "1", "domain": "a.test", "path": "/app"})
    await manager.set_cookie({"name": "sid", "value": "2", "domain": "b.test"})
    (cookie,) = await manager.get_cookies(["https://a.test/"])
    assert cookie.identity == ("sid", "a.test", "/app")

    await cookie.delete()
    assert session.sent("Network.deleteCookies")[-1] == {"name": "sid", "domain": "a.test", "path": "/app"}
    assert [c.domain for c in await manager.get_all_cookies()] == ["b.test"]


async def test_cookie_update(session, manager):
    await manager.set_cookie({"name": "sid", "value": "1", "domain": "a.test"})
    (cookie,) = await manager.get_all_cookies()
    assert cookie.session

    assert await cookie.update(value="2", secure=True)
    assert cookie.value == "2"
    assert cookie.secure
    params = session.sent("Network.setCookie")[-1]
    assert params["value"] == "2"
    assert "expires" not in params
    assert [c.value for c in await manager.get_all_cookies()] == ["2"]


async def test_rejected_update_keeps_local_state(session, manager):
    await manager.set_cookie({"name": "sid", "value": "1", "domain": "a.test"})
    (cookie,) = await manager.get_all_cookies()
    session.results["Network.setCookie"] = {"success": False}
    assert not await cookie.update(value="2")
    assert cookie.value == "1"


async def test_clear_browser_cookies(session, manager):
    await manager.set_cookie({"name": "sid", "value": "1", "domain": "a.test"})
    await manager.clear_browser_cookies()
    assert await manager.get_all_cookies() == []
