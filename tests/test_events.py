import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from chat_relay.schemas.events import (
    NEW_MESSAGE,
    JoinEvent,
    MarkReadEvent,
    SendMessageEvent,
    StopTypingEvent,
    encode_event,
    parse_inbound,
)
from chat_relay.schemas.message import MessagePublic


def test_send_message_frame_is_parsed():
    event = parse_inbound(json.dumps({
        "event": "sendMessage",
        "data": {"receiver_id": "b", "message": "hi", "client_message_id": "k"},
    }))

    assert isinstance(event, SendMessageEvent)
    assert event.data.receiver_id == "b"
    assert event.data.sender_id is None
    assert event.data.client_message_id == "k"


def test_join_accepts_numeric_and_null_ids():
    assert parse_inbound('{"event": "join", "data": {"user_id": 42}}').data.user_id == "42"
    joined = parse_inbound('{"event": "join", "data": {"user_id": null}}')
    assert isinstance(joined, JoinEvent)
    assert joined.data.user_id == ""


def test_stop_typing_and_mark_read_are_distinct_variants():
    assert isinstance(parse_inbound('{"event": "stopTyping", "data": {"receiver_id": "b"}}'), StopTypingEvent)
    assert isinstance(parse_inbound('{"event": "markMessageAsRead", "data": {"message_id": "m"}}'), MarkReadEvent)


@pytest.mark.parametrize("raw", [
    "",
    "[]",
    '{"event": "sendMessage"}',
    '{"event": "typing", "data": {}}',
    '{"event": "getOnlineUsers", "data": []}',
    '{"data": {"receiver_id": "b"}}',
])
def test_malformed_frames_are_rejected(raw):
    with pytest.raises(ValidationError):
        parse_inbound(raw)


def test_encode_event_serializes_models():
    at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    message = MessagePublic(id="m", sender_id="a", receiver_id="b", message="hi", created_at=at, updated_at=at)

    frame = json.loads(encode_event(NEW_MESSAGE, message))

    assert frame["event"] == "newMessage"
    assert frame["data"]["id"] == "m"
    assert frame["data"]["created_at"].startswith("2024-01-01T00:00:00")
