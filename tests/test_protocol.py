from __future__ import annotations

import json

import pytest

from redgram.protocol import (
    ChatMessage,
    InitState,
    MessageStatus,
    Presence,
    Profile,
    ProtocolError,
    ReadReceipt,
    Register,
    SendMessage,
    decode_client_event,
    decode_hub_event,
    encode,
)


def test_register_frame_uses_camel_case_keys():
    profile = Profile(id="u1", username="alice", name="Alice", avatar_color="bg-red-500", is_premium=True)
    frame = json.loads(encode(Register(profile)))

    assert frame["type"] == "REGISTER"
    assert frame["profile"]["avatarColor"] == "bg-red-500"
    assert frame["profile"]["isPremium"] is True
    assert "privacy" not in frame["profile"]


def test_decode_send_message_from_browser_client():
    raw = json.dumps({
        "type": "SEND_MESSAGE",
        "message": {
            "id": "1700000000000",
            "chatId": "u2",
            "text": "hi",
            "sender": "me",
            "senderId": "u1",
            "timestamp": 1700000000000,
            "status": "sent",
        },
        "isGroup": False,
    })
    event = decode_client_event(raw)

    assert isinstance(event, SendMessage)
    assert event.message.chat_id == "u2"
    assert event.message.sender_id == "u1"
    assert event.message.status is MessageStatus.SENT
    assert event.is_group is False


def test_profile_keeps_unknown_fields():
    raw = {"id": "u1", "username": "alice", "lastSeen": 123, "privacy": {"phoneNumber": "nobody"}}
    profile = Profile.from_dict(raw)

    assert profile.extra == {"lastSeen": 123}
    out = profile.to_dict()
    assert out["lastSeen"] == 123
    assert out["privacy"] == {"phoneNumber": "nobody"}


def test_message_keeps_unknown_fields_and_fractional_timestamp():
    raw = {"id": "1", "chatId": "c", "text": "x", "timestamp": 1700000000000.25, "replyTo": "0"}
    message = ChatMessage.from_dict(raw)

    assert message.timestamp == 1700000000000.25
    assert message.extra == {"replyTo": "0"}
    out = message.to_dict()
    assert out["replyTo"] == "0"
    assert out["timestamp"] == 1700000000000.25


def test_read_receipt_allows_null_reader():
    event = decode_client_event('{"type": "READ_RECEIPT", "chatId": "c", "messageIds": ["m1"], "readerId": null}')
    assert event == ReadReceipt("c", ("m1",), None)


def test_presence_and_bytes_frames():
    event = decode_client_event(b'{"type": "PRESENCE", "userId": "u1"}')
    assert event == Presence("u1")


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2, 3]",
    '{"no": "type"}',
    '{"type": "DELETE_EVERYTHING"}',
    '{"type": "REGISTER", "profile": {"id": "u1"}}',
    '{"type": "REGISTER", "profile": "alice"}',
    '{"type": "SEND_MESSAGE", "message": {"id": "1", "chatId": "c", "text": "x", "status": "lost"}}',
    '{"type": "SEND_MESSAGE", "message": {"id": "1", "chatId": "c", "text": "x"}, "isGroup": "yes"}',
    '{"type": "SEND_MESSAGE", "message": {"id": "1", "chatId": "c", "text": "x", "timestamp": 1e999}}',
    '{"type": "READ_RECEIPT", "chatId": "c", "messageIds": "m1"}',
    b"\xff\xfe",
    pytest.param("[" * 100000, id="nested-list"),
    pytest.param('{"a": ' * 100000, id="nested-object"),
])
def test_malformed_client_frames_raise(raw):
    with pytest.raises(ProtocolError):
        decode_client_event(raw)


def test_directions_are_closed_sets():
    register = encode(Register(Profile(id="u1", username="alice")))
    init = encode(InitState(()))

    with pytest.raises(ProtocolError):
        decode_hub_event(register)
    with pytest.raises(ProtocolError):
        decode_client_event(init)


def test_init_state_decodes_users_in_order():
    frame = encode(InitState((Profile(id="1", username="b"), Profile(id="2", username="a"))))
    event = decode_hub_event(frame)
    assert [u.username for u in event.users] == ["b", "a"]


def test_message_without_sender_omits_key():
    msg = ChatMessage(id="1", chat_id="c", text="x", sender_id=None, timestamp=5)
    assert msg.to_dict() == {
        "id": "1", "chatId": "c", "text": "x", "senderId": None, "timestamp": 5, "status": "sent",
    }
