from datetime import datetime, timedelta

import pytest

from models import Block, Call
from routers.notifications import pusher_auth as pusher_auth_router


class _PusherStub:
    def __init__(self):
        self.calls = []

    def authenticate(self, channel, socket_id, custom_data=None):
        self.calls.append((channel, socket_id, custom_data))
        return {"auth": "key:token"}


@pytest.fixture
def stub():
    return _PusherStub()


@pytest.fixture
def client(client_for, alice, stub):
    return client_for(alice, pusher_auth_router.router, broadcaster_override=stub)


@pytest.fixture
def carol_client(client_for, carol, stub):
    return client_for(carol, pusher_auth_router.router, broadcaster_override=stub)


def _auth(client, channel_name):
    return client.post("/pusher/auth", data={"socket_id": "123.456", "channel_name": channel_name})


def test_chat_channel_for_participant_is_signed(client, stub):
    response = _auth(client, "private-chat-1001-1002")
    assert response.status_code == 200
    assert response.json() == {"auth": "key:token"}
    assert stub.calls == [("private-chat-1001-1002", "123.456", None)]


def test_chat_channel_for_outsider_is_forbidden(carol_client, stub):
    assert _auth(carol_client, "private-chat-1001-1002").status_code == 403
    assert stub.calls == []


def test_chat_channel_blocked_pair(client, test_db, stub, alice, bob):
    test_db.add(Block(blocker_id=bob.account_id, blocked_id=alice.account_id))
    test_db.commit()
    assert _auth(client, "private-chat-1001-1002").status_code == 403
    assert stub.calls == []


@pytest.mark.parametrize(
    "channel_name",
    ["private-chat-1002-1001", "private-chat-1001", "private-chat-1001-abc", "private-chat-1001-1001"],
)
def test_malformed_or_non_canonical_pair_channel(client, channel_name):
    assert _auth(client, channel_name).status_code == 400


def test_call_channel_requires_active_call(client, test_db, stub, alice, bob):
    assert _auth(client, "private-call-1001-1002").status_code == 403

    call = Call(
        caller_id=bob.account_id,
        receiver_id=alice.account_id,
        call_type="voice",
        status="ringing",
        caller_peer_id="peer-bob",
        created_at=datetime.utcnow(),
    )
    test_db.add(call)
    test_db.commit()
    response = _auth(client, "private-call-1001-1002")
    assert response.status_code == 200
    assert response.json()["auth"] == "key:token"

    call.status = "ended"
    test_db.commit()
    assert _auth(client, "private-call-1001-1002").status_code == 403


def test_stale_ringing_call_does_not_authorize(client, test_db, alice, bob):
    test_db.add(
        Call(
            caller_id=alice.account_id,
            receiver_id=bob.account_id,
            status="ringing",
            caller_peer_id="peer-alice",
            created_at=datetime.utcnow() - timedelta(minutes=5),
        )
    )
    test_db.commit()
    assert _auth(client, "private-call-1001-1002").status_code == 403


def test_user_channels_are_owner_only(client, stub):
    assert _auth(client, "user-1001").json() == {"status": "authorized"}
    assert _auth(client, "user-notifications:1001").json() == {"status": "authorized"}
    assert _auth(client, "user-1002").status_code == 403
    assert _auth(client, "user-notifications:1002").status_code == 403
    assert _auth(client, "user-abc").status_code == 400
    assert stub.calls == []


def test_group_channel_requires_membership(client, carol_client, group):
    assert _auth(client, "group-1").json() == {"status": "authorized"}
    assert _auth(carol_client, "group-1").status_code == 403
    assert _auth(client, "group-x").status_code == 400


def test_unknown_channel_type(client):
    assert _auth(client, "presence-lobby").status_code == 400
    assert _auth(client, "global-chat").status_code == 400


def test_missing_form_fields(client):
    assert client.post("/pusher/auth", data={"socket_id": "1.1"}).status_code == 422
