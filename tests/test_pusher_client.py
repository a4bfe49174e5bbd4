import pytest

from utils import pusher_client
from utils.encryption import MessageDecryptionError, decrypt_data, encrypt_data
from utils.pusher_client import LocalBroadcaster, PusherBroadcaster, create_broadcaster, publish_event


class _RaisingBroadcaster(LocalBroadcaster):
    async def publish(self, channel, event, data):
        raise RuntimeError("connection reset")


class _FailingBroadcaster(LocalBroadcaster):
    def _trigger(self, channel, event, data):
        raise RuntimeError("401 unauthorized")


@pytest.mark.asyncio
async def test_publish_event_records_on_local_broadcaster():
    broadcaster = LocalBroadcaster()
    ok = await publish_event(broadcaster, "group-3", "new-message", {"id": 1})
    assert ok is True
    assert broadcaster.published == [("group-3", "new-message", {"id": 1})]
    assert broadcaster.events(channel="group-3") == broadcaster.events(event="new-message")


@pytest.mark.asyncio
async def test_publish_event_never_raises():
    assert await publish_event(_RaisingBroadcaster(), "group-3", "typing", {}) is False
    assert await publish_event(_FailingBroadcaster(), "group-3", "typing", {}) is False


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_fail_publish():
    broadcaster = LocalBroadcaster()
    received = []

    def _broken(data):
        raise ValueError("bad handler")

    broadcaster.subscribe("user-1", "incoming-call", _broken)
    broadcaster.subscribe("user-1", "incoming-call", received.append)

    assert await publish_event(broadcaster, "user-1", "incoming-call", {"callId": 4}) is True
    assert received == [{"callId": 4}]

    broadcaster.unsubscribe("user-1", "incoming-call", received.append)
    await publish_event(broadcaster, "user-1", "incoming-call", {"callId": 5})
    assert received == [{"callId": 4}]


def test_local_authenticate_is_deterministic_per_channel():
    broadcaster = LocalBroadcaster(key="k", secret="s")
    first = broadcaster.authenticate(channel="private-chat-1-2", socket_id="1.1")
    assert first["auth"].startswith("k:")
    assert broadcaster.authenticate(channel="private-chat-1-2", socket_id="1.1") == first
    assert broadcaster.authenticate(channel="private-chat-1-3", socket_id="1.1") != first


def test_create_broadcaster_falls_back_to_local(monkeypatch):
    monkeypatch.setattr(pusher_client, "PUSHER_ENABLED", True)
    monkeypatch.setattr(pusher_client, "PUSHER_SECRET", "")
    assert isinstance(create_broadcaster(), LocalBroadcaster)

    monkeypatch.setattr(pusher_client, "PUSHER_ENABLED", False)
    assert isinstance(create_broadcaster(), LocalBroadcaster)


def test_create_broadcaster_uses_pusher_when_configured(monkeypatch):
    monkeypatch.setattr(pusher_client, "PUSHER_ENABLED", True)
    monkeypatch.setattr(pusher_client, "PUSHER_APP_ID", "123")
    monkeypatch.setattr(pusher_client, "PUSHER_KEY", "key")
    monkeypatch.setattr(pusher_client, "PUSHER_SECRET", "secret")
    broadcaster = create_broadcaster()
    try:
        assert isinstance(broadcaster, PusherBroadcaster)
        assert broadcaster.name == "pusher"
    finally:
        broadcaster.close()


@pytest.mark.asyncio
async def test_pusher_skips_channel_names_it_rejects(caplog):
    broadcaster = PusherBroadcaster(app_id="123", key="key", secret="secret", cluster="mt1")
    triggered = []
    broadcaster.client.trigger = lambda channel, event, data: triggered.append(channel)
    try:
        assert broadcaster.supports_channel("private-chat-1-2") is True
        assert broadcaster.supports_channel("user-5") is True

        with caplog.at_level("WARNING", logger="utils.pusher_client"):
            assert await publish_event(broadcaster, "user-notifications:5", "new-message", {}) is False
            assert await publish_event(broadcaster, "user-notifications:6", "new-message", {}) is False
            assert await publish_event(broadcaster, "private-chat-5-6", "new-message", {}) is True

        assert triggered == ["private-chat-5-6"]
        warnings = [r for r in caplog.records if r.name == "utils.pusher_client" and r.levelname == "WARNING"]
        assert len(warnings) == 1
        assert "user-notifications:" in warnings[0].getMessage()
        assert not [r for r in caplog.records if r.levelname == "ERROR"]
    finally:
        broadcaster.close()


def test_encryption_round_trip_and_corrupt_token():
    token = encrypt_data("Peace be with you")
    assert token != "Peace be with you"
    assert decrypt_data(token) == "Peace be with you"
    assert encrypt_data("") is None

    with pytest.raises(MessageDecryptionError):
        decrypt_data(token[:-4] + "AAAA")
    with pytest.raises(MessageDecryptionError):
        decrypt_data("plainly not a token")
