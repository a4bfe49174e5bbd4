import pytest

from models import Block, Message, MESSAGE_TOMBSTONE
from routers.messaging import messages as messages_router
from routers.messaging import service as messaging_service
from utils.encryption import DECRYPTION_FAILED_PLACEHOLDER, decrypt_data
from utils.pusher_client import LocalBroadcaster


class _FailingBroadcaster(LocalBroadcaster):
    def _trigger(self, channel, event, data):
        raise RuntimeError("pusher unavailable")


@pytest.fixture
def alice_client(client_for, alice):
    return client_for(alice, messages_router.router)


@pytest.fixture
def bob_client(client_for, bob):
    return client_for(bob, messages_router.router)


@pytest.fixture
def carol_client(client_for, carol):
    return client_for(carol, messages_router.router)


def _send(client, receiver_id, content="hello", **extra):
    payload = {"receiver_id": receiver_id, "content": content}
    payload.update(extra)
    return client.post("/messages/send", json=payload)


def test_send_stores_ciphertext_and_broadcasts_plaintext(alice_client, test_db, broadcaster, alice, bob):
    response = _send(alice_client, bob.account_id, "Hello Bob")
    assert response.status_code == 200
    body = response.json()
    assert body["broadcast"] is True
    assert body["message"]["content"] == "Hello Bob"
    assert body["message"]["is_delivered"] is False
    assert body["message"]["is_read"] is False

    stored = test_db.get(Message, body["message"]["id"])
    assert stored.is_encrypted is True
    assert stored.content != "Hello Bob"
    assert decrypt_data(stored.content) == "Hello Bob"

    chat_events = broadcaster.events("private-chat-1001-1002", "new-message")
    assert len(chat_events) == 1
    data = chat_events[0][2]
    assert data["content"] == "Hello Bob"
    assert data["senderId"] == alice.account_id
    assert data["receiverId"] == bob.account_id
    assert data["sender"]["name"] == "Alice"

    notify_events = broadcaster.events("user-notifications:1002", "new-message")
    assert len(notify_events) == 1
    assert notify_events[0][2]["id"] == body["message"]["id"]


def test_send_strips_html(alice_client, broadcaster, bob):
    response = _send(alice_client, bob.account_id, "<b>hi</b>")
    assert response.status_code == 200
    assert response.json()["message"]["content"] == "hi"
    assert broadcaster.events("private-chat-1001-1002")[0][2]["content"] == "hi"


def test_send_validation_errors(alice_client, alice, bob):
    assert _send(alice_client, alice.account_id).status_code == 400
    assert _send(alice_client, 999999).status_code == 404
    assert _send(alice_client, bob.account_id, "   ").status_code == 400
    assert alice_client.post("/messages/send", json={"content": "no receiver"}).status_code == 422


def test_send_with_media_only(alice_client, test_db, bob):
    response = _send(alice_client, bob.account_id, None, media_url="https://cdn.example.com/a.png", message_type="image")
    assert response.status_code == 200
    message = response.json()["message"]
    assert message["content"] is None
    assert message["media_url"] == "https://cdn.example.com/a.png"
    assert test_db.get(Message, message["id"]).is_encrypted is False


def test_send_blocked_in_either_direction(alice_client, bob_client, test_db, broadcaster, alice, bob):
    test_db.add(Block(blocker_id=bob.account_id, blocked_id=alice.account_id))
    test_db.commit()

    assert _send(alice_client, bob.account_id).status_code == 403
    assert _send(bob_client, alice.account_id).status_code == 403
    assert broadcaster.published == []
    assert test_db.query(Message).count() == 0


def test_reply_must_belong_to_conversation(alice_client, carol_client, alice, bob, carol):
    other = _send(carol_client, alice.account_id, "from carol").json()["message"]
    response = _send(alice_client, bob.account_id, "reply", reply_to_id=other["id"])
    assert response.status_code == 400

    parent = _send(alice_client, bob.account_id, "first").json()["message"]
    response = _send(alice_client, bob.account_id, "second", reply_to_id=parent["id"])
    assert response.status_code == 200
    assert response.json()["message"]["reply_to_id"] == parent["id"]


def test_rate_limit_returns_429_with_retry_after(alice_client, monkeypatch, test_db, bob):
    monkeypatch.setattr(messaging_service, "PRIVATE_CHAT_MAX_MESSAGES_PER_MINUTE", 2)

    assert _send(alice_client, bob.account_id, "one").status_code == 200
    assert _send(alice_client, bob.account_id, "two").status_code == 200
    response = _send(alice_client, bob.account_id, "three")
    assert response.status_code == 429
    assert int(response.headers["X-Retry-After"]) >= 1
    assert test_db.query(Message).count() == 2


def test_broadcast_failure_still_persists(client_for, alice, bob, test_db):
    client = client_for(alice, messages_router.router, broadcaster_override=_FailingBroadcaster())
    response = _send(client, bob.account_id, "still saved")
    assert response.status_code == 200
    assert response.json()["broadcast"] is False
    assert test_db.query(Message).count() == 1


class _NoNotificationsBroadcaster(LocalBroadcaster):
    def supports_channel(self, channel):
        return not channel.startswith("user-notifications:")


def test_unsupported_notification_channel_does_not_fail_chat_broadcast(client_for, alice, bob):
    broadcaster = _NoNotificationsBroadcaster()
    client = client_for(alice, messages_router.router, broadcaster_override=broadcaster)

    body = _send(client, bob.account_id, "hi").json()
    assert body["broadcast"] is True
    assert body["notified"] is False
    assert len(broadcaster.events("private-chat-1001-1002", "new-message")) == 1
    assert broadcaster.events("user-notifications:1002") == []


def test_mark_delivered_is_recipient_only_and_idempotent(alice_client, bob_client, broadcaster, bob):
    message_id = _send(alice_client, bob.account_id).json()["message"]["id"]

    assert alice_client.post(f"/messages/{message_id}/delivered").status_code == 403
    assert bob_client.post("/messages/424242/delivered").status_code == 404

    first = bob_client.post(f"/messages/{message_id}/delivered").json()
    assert first["changed"] is True
    assert first["is_delivered"] is True
    assert first["broadcast"] is True

    second = bob_client.post(f"/messages/{message_id}/delivered").json()
    assert second["changed"] is False
    assert second["delivered_at"] == first["delivered_at"]

    events = broadcaster.events("private-chat-1001-1002", "message-delivered")
    assert len(events) == 1
    assert events[0][2]["messageId"] == message_id


def test_read_implies_delivered_and_never_regresses(alice_client, bob_client, test_db, broadcaster, alice, bob):
    ids = [_send(alice_client, bob.account_id, f"m{i}").json()["message"]["id"] for i in range(3)]

    response = bob_client.post("/messages/read", json={"sender_id": alice.account_id})
    assert response.status_code == 200
    body = response.json()
    assert body["updated"] == 3
    assert body["message_ids"] == ids

    events = broadcaster.events("private-chat-1001-1002", "message-read")
    assert len(events) == 1
    assert events[0][2]["messageIds"] == ids
    assert events[0][2]["readerId"] == bob.account_id

    # delivered after read changes nothing
    late = bob_client.post(f"/messages/{ids[0]}/delivered").json()
    assert late["changed"] is False
    test_db.expire_all()
    for message in test_db.query(Message).filter(Message.id.in_(ids)):
        assert message.is_read is True
        assert message.is_delivered is True

    again = bob_client.post("/messages/read", json={"message_ids": ids}).json()
    assert again["updated"] == 0
    assert len(broadcaster.events(event="message-read")) == 1


def test_read_requires_a_filter(bob_client):
    assert bob_client.post("/messages/read", json={}).status_code == 400


def test_unread_counts(alice_client, carol_client, bob_client, alice, bob, carol):
    _send(alice_client, bob.account_id, "a1")
    _send(alice_client, bob.account_id, "a2")
    _send(carol_client, bob.account_id, "c1")

    body = bob_client.get("/messages/unread").json()
    assert body["total"] == 3
    counts = {row["sender_id"]: row["count"] for row in body["by_sender"]}
    assert counts == {alice.account_id: 2, carol.account_id: 1}

    bob_client.post("/messages/read", json={"sender_id": alice.account_id})
    body = bob_client.get("/messages/unread").json()
    assert body["total"] == 1


def test_unread_ignores_messages_deleted_for_everyone(alice_client, bob_client, bob):
    message_id = _send(alice_client, bob.account_id, "hello").json()["message"]["id"]
    assert alice_client.post(f"/messages/{message_id}/delete", json={"scope": "everyone"}).status_code == 200

    body = bob_client.get("/messages/unread").json()
    assert body == {"total": 0, "by_sender": []}


def test_conversation_list_shows_last_visible_message_per_partner(
    alice_client, bob_client, carol_client, test_db, alice, bob, carol
):
    _send(alice_client, bob.account_id, "a1")
    _send(bob_client, alice.account_id, "b1")
    hidden_id = _send(alice_client, bob.account_id, "a2").json()["message"]["id"]
    _send(carol_client, bob.account_id, "c1")
    _send(carol_client, bob.account_id, "c2")

    # Bob hides Alice's latest message for himself only
    assert bob_client.post(f"/messages/{hidden_id}/delete", json={"scope": "self"}).status_code == 200

    response = bob_client.get("/messages/conversations")
    assert response.status_code == 200
    conversations = response.json()["conversations"]
    assert [c["user"]["id"] for c in conversations] == [carol.account_id, alice.account_id]

    carol_entry, alice_entry = conversations
    assert carol_entry["channel"] == "private-chat-1002-1003"
    assert carol_entry["last_message"]["content"] == "c2"
    assert carol_entry["unread_count"] == 2
    assert alice_entry["user"]["name"] == "Alice"
    assert alice_entry["last_message"]["content"] == "b1"
    assert alice_entry["unread_count"] == 1

    alice_view = alice_client.get("/messages/conversations").json()["conversations"]
    assert len(alice_view) == 1
    assert alice_view[0]["last_message"]["id"] == hidden_id
    assert alice_view[0]["unread_count"] == 1

    page = bob_client.get("/messages/conversations?limit=1&offset=1").json()["conversations"]
    assert [c["user"]["id"] for c in page] == [alice.account_id]


def test_conversation_list_survives_corrupt_last_message(alice_client, bob_client, test_db, alice, bob):
    _send(alice_client, bob.account_id, "fine")
    last_id = _send(alice_client, bob.account_id, "broken").json()["message"]["id"]
    test_db.query(Message).filter(Message.id == last_id).update(
        {Message.content: "not-a-fernet-token"}, synchronize_session=False
    )
    test_db.commit()

    response = bob_client.get("/messages/conversations")
    assert response.status_code == 200
    entry = response.json()["conversations"][0]
    assert entry["last_message"]["id"] == last_id
    assert entry["last_message"]["content"] == DECRYPTION_FAILED_PLACEHOLDER


def test_conversation_is_oldest_first_and_paginates(alice_client, bob_client, alice, bob):
    ids = [_send(alice_client, bob.account_id, f"m{i}").json()["message"]["id"] for i in range(4)]

    body = bob_client.get(f"/messages/conversation/{alice.account_id}").json()
    assert body["channel"] == "private-chat-1001-1002"
    assert body["user"]["name"] == "Alice"
    assert [m["id"] for m in body["messages"]] == ids
    assert [m["content"] for m in body["messages"]] == ["m0", "m1", "m2", "m3"]

    page = bob_client.get(f"/messages/conversation/{alice.account_id}?limit=2&before={ids[3]}").json()
    assert [m["id"] for m in page["messages"]] == ids[1:3]

    assert bob_client.get("/messages/conversation/999999").status_code == 404


def test_corrupt_message_does_not_break_history(alice_client, bob_client, test_db, alice, bob):
    ids = [_send(alice_client, bob.account_id, text).json()["message"]["id"] for text in ("one", "two", "three")]
    test_db.query(Message).filter(Message.id == ids[1]).update(
        {Message.content: "not-a-fernet-token"}, synchronize_session=False
    )
    test_db.commit()

    body = bob_client.get(f"/messages/conversation/{alice.account_id}").json()
    assert [m["content"] for m in body["messages"]] == ["one", DECRYPTION_FAILED_PLACEHOLDER, "three"]


def test_delete_for_everyone_tombstones_both_sides(alice_client, bob_client, broadcaster, alice, bob):
    message_id = _send(alice_client, bob.account_id, "oops").json()["message"]["id"]

    assert bob_client.post(f"/messages/{message_id}/delete", json={"scope": "everyone"}).status_code == 403

    response = alice_client.post(f"/messages/{message_id}/delete", json={"scope": "everyone"})
    assert response.status_code == 200
    assert response.json()["changed"] is True

    for client, other in ((alice_client, bob), (bob_client, alice)):
        messages = client.get(f"/messages/conversation/{other.account_id}").json()["messages"]
        assert len(messages) == 1
        assert messages[0]["content"] == MESSAGE_TOMBSTONE
        assert messages[0]["is_deleted"] is True

    events = broadcaster.events("private-chat-1001-1002", "message-deleted")
    assert len(events) == 1
    assert events[0][2] == {"messageId": message_id, "deletedBy": alice.account_id, "scope": "everyone"}

    repeat = alice_client.post(f"/messages/{message_id}/delete", json={"scope": "everyone"}).json()
    assert repeat["changed"] is False


def test_delete_for_self_hides_only_for_requester(alice_client, bob_client, carol_client, broadcaster, alice, bob):
    message_id = _send(alice_client, bob.account_id, "keep for alice").json()["message"]["id"]

    assert carol_client.post(f"/messages/{message_id}/delete", json={"scope": "self"}).status_code == 403

    response = bob_client.post(f"/messages/{message_id}/delete", json={"scope": "self"})
    assert response.status_code == 200
    assert response.json()["changed"] is True

    assert bob_client.get(f"/messages/conversation/{alice.account_id}").json()["messages"] == []
    alice_view = alice_client.get(f"/messages/conversation/{bob.account_id}").json()["messages"]
    assert [m["content"] for m in alice_view] == ["keep for alice"]
    assert broadcaster.events(event="message-deleted") == []


def test_private_typing_event(alice_client, broadcaster, alice, bob):
    response = alice_client.post("/messages/typing", json={"receiver_id": bob.account_id, "is_typing": True})
    assert response.status_code == 200
    assert response.json() == {"channel": "private-chat-1001-1002", "is_typing": True, "broadcast": True}

    events = broadcaster.events("private-chat-1001-1002", "typing")
    assert events[0][2] == {"userId": alice.account_id, "userName": "Alice", "isTyping": True}

    assert alice_client.post("/messages/typing", json={"receiver_id": alice.account_id}).status_code == 400
