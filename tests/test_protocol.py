"""Unit tests for the chat wire protocol: decode inbound, encode outbound."""
import json
from datetime import datetime

import pytest
from bazaar.core.websocket.protocol import (
    MAX_FRAME_SIZE,
    AuthFrame,
    ChatMessageFrame,
    ProtocolDecodeError,
    auth_result,
    decode_frame,
    encode_frame,
    message_accepted,
    message_delivered,
    protocol_error,
)
from bazaar.core.websocket.types import PersistedMessage


def _message() -> PersistedMessage:
    return PersistedMessage(
        id=7,
        chat_id="chat-1",
        sender_id="user-a",
        body="hello",
        created_at=datetime(2026, 3, 1, 9, 30, 0),
    )


def test_decode_auth():
    frame = decode_frame('{"type":"auth","token":"abc"}')
    assert isinstance(frame, AuthFrame)
    assert frame.token == "abc"


def test_decode_chat_message():
    frame = decode_frame('{"type":"chat_message","chatId":"chat-1","content":"  hello  "}')
    assert isinstance(frame, ChatMessageFrame)
    assert frame.chat_id == "chat-1"
    assert frame.content == "hello"


def test_decode_ignores_extra_fields():
    frame = decode_frame('{"type":"auth","token":"abc","client":"web"}')
    assert isinstance(frame, AuthFrame)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("not json at all", "Invalid message format"),
        ("[" * 5000, "Invalid message format"),
        ('{"type":"auth","token":"x","n":' + "1" * 5000 + "}", "Invalid message format"),
        ("[1, 2]", "Frame must be a JSON object"),
        ('{"token":"abc"}', "Missing message type"),
        ('{"type":"typing","chatId":"chat-1"}', "Unknown message type: typing"),
        ('{"type":"auth"}', "token"),
        ('{"type":"chat_message","content":"hi"}', "chatId"),
        ('{"type":"chat_message","chatId":"chat-1"}', "content"),
        ('{"type":"chat_message","chatId":"chat-1","content":"   "}', "content"),
        ('{"type":"chat_message","chatId":"chat-1","content":42}', "content"),
    ],
)
def test_decode_rejects_malformed_frames(raw, expected):
    with pytest.raises(ProtocolDecodeError) as exc:
        decode_frame(raw)
    assert expected in str(exc.value)


def test_decode_rejects_oversized_frame():
    raw = json.dumps({"type": "chat_message", "chatId": "chat-1", "content": "x" * MAX_FRAME_SIZE})
    with pytest.raises(ProtocolDecodeError) as exc:
        decode_frame(raw)
    assert str(exc.value) == "Frame too large"


def test_encode_auth_results():
    assert json.loads(encode_frame(auth_result(True))) == {"type": "auth", "status": "success"}
    assert json.loads(encode_frame(auth_result(False))) == {"type": "auth", "status": "failed"}


def test_encode_new_message_uses_camel_case_payload():
    data = json.loads(encode_frame(message_delivered(_message())))
    assert data["type"] == "new_message"
    assert data["chatId"] == "chat-1"
    assert data["message"] == {
        "id": 7,
        "chatId": "chat-1",
        "senderId": "user-a",
        "message": "hello",
        "isRead": False,
        "createdAt": "2026-03-01T09:30:00",
    }


def test_encode_message_sent_and_error():
    sent = json.loads(encode_frame(message_accepted(_message())))
    assert sent["type"] == "message_sent"
    assert sent["message"]["id"] == 7
    assert json.loads(encode_frame(protocol_error("Chat not found"))) == {
        "type": "error",
        "message": "Chat not found",
    }


def test_decode_passes_empty_token_through_to_verification():
    frame = decode_frame('{"type":"auth","token":""}')
    assert isinstance(frame, AuthFrame)
    assert frame.token == ""
