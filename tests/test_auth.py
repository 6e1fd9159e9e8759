import pytest

from nodrivernet import UsageError

from conftest import AUTH_CHALLENGE, request_intercepted, request_payload, will_be_sent

pytestmark = [
    pytest.mark.network,
    pytest.mark.interception,
    pytest.mark.asyncio,
]


def _auth_required(interception_id: str, url: str = "https://secure.test/") -> dict:
    return {
        "requestId": interception_id,
        "request": request_payload(url),
        "frameId": "F1",
        "resourceType": "Document",
        "authChallenge": AUTH_CHALLENGE,
    }


async def test_credentials_are_offered_once_then_cancelled(session, manager):
    await manager.authenticate({"username": "user", "password": "pass"})
    for _ in range(3):
        session.emit("Fetch.authRequired", _auth_required("interception-1"))
    await manager.wait_for_tasks()

    answers = [p["authChallengeResponse"] for p in session.sent("Fetch.continueWithAuth")]
    assert answers == [
        {"response": "ProvideCredentials", "username": "user", "password": "pass"},
        {"response": "CancelAuth"},
        {"response": "CancelAuth"},
    ]


async def test_without_credentials_the_browser_decides(session, manager):
    await manager.set_request_interception(True)
    session.emit("Fetch.authRequired", _auth_required("interception-1"))
    await manager.wait_for_tasks()
    assert session.sent("Fetch.continueWithAuth") == [
        {"requestId": "interception-1", "authChallengeResponse": {"response": "Default"}}
    ]


async def test_finished_request_forgets_its_attempt(session, manager):
    await manager.authenticate({"username": "user", "password": "pass"})
    session.emit("Network.requestWillBeSent", will_be_sent("1", "https://secure.test/"))
    session.emit("Fetch.requestPaused", {
        "requestId": "interception-1",
        "networkId": "1",
        "request": request_payload("https://secure.test/"),
        "frameId": "F1",
        "resourceType": "Document",
    })
    session.emit("Fetch.authRequired", _auth_required("interception-1"))
    session.emit("Network.loadingFinished", {"requestId": "1", "timestamp": 2.0})
    session.emit("Fetch.authRequired", _auth_required("interception-1"))
    await manager.wait_for_tasks()

    answers = [p["authChallengeResponse"]["response"] for p in session.sent("Fetch.continueWithAuth")]
    assert answers == ["ProvideCredentials", "ProvideCredentials"]


async def test_challenges_are_not_answered_after_stop(session, manager):
    await manager.authenticate({"username": "user", "password": "pass"})
    await manager.stop()
    assert session.handlers["Fetch.authRequired"] == []
    manager._on_auth_required("interception-1")
    await manager.wait_for_tasks()
    assert session.sent("Fetch.continueWithAuth") == []


async def test_incomplete_credentials_are_rejected(session, manager):
    with pytest.raises(UsageError):
        await manager.authenticate({"username": "user"})
    assert not manager.protocol_request_interception_enabled


@pytest.mark.legacy
async def test_legacy_auth_goes_through_continue_intercepted_request(session, legacy_manager):
    await legacy_manager.authenticate({"username": "user", "password": "pass"})
    for _ in range(2):
        session.emit("Network.requestIntercepted", request_intercepted(
            "interception-1", "https://secure.test/", auth_challenge=AUTH_CHALLENGE
        ))
    await legacy_manager.wait_for_tasks()

    assert session.sent("Network.continueInterceptedRequest") == [
        {
            "interceptionId": "interception-1",
            "authChallengeResponse": {"response": "ProvideCredentials", "username": "user", "password": "pass"},
        },
        {"interceptionId": "interception-1", "authChallengeResponse": {"response": "CancelAuth"}},
    ]
