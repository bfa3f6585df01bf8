"""
Wire protocol for the chat socket.

Every frame is one UTF-8 JSON object with a `type` discriminator. Inbound
frames are decoded once, here, into a closed set of pydantic models;
outbound frames are built from models and encoded to text.
"""
import json
from typing import Annotated, Any, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from bazaar.core.websocket.types import PersistedMessage

# Max JSON frame size (bytes)
MAX_FRAME_SIZE = 64 * 1024


class ProtocolDecodeError(Exception):
    """Raised for frames that cannot be decoded; reported as an `error` frame."""


# Client -> server

class AuthFrame(BaseModel):
    """First meaningful frame on a connection. An empty token is left to the verifier to reject."""
    type: Literal["auth"]
    token: str


class ChatMessageFrame(BaseModel):
    """A message to relay into a conversation."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["chat_message"]
    chat_id: str = Field(alias="chatId", min_length=1)
    content: str = Field(min_length=1)


InboundFrame = Annotated[Union[AuthFrame, ChatMessageFrame], Field(discriminator="type")]

INBOUND_TYPES = ("auth", "chat_message")

_inbound_adapter = TypeAdapter(InboundFrame)


# Server -> client

class AuthResultFrame(BaseModel):
    type: Literal["auth"] = "auth"
    status: Literal["success", "failed"]


class NewMessageFrame(BaseModel):
    """Pushed to the recipient of a relayed message."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["new_message"] = "new_message"
    chat_id: str = Field(alias="chatId")
    message: Dict[str, Any]


class MessageSentFrame(BaseModel):
    """Pushed to the sender once the message is stored."""
    type: Literal["message_sent"] = "message_sent"
    message: Dict[str, Any]


class ErrorFrame(BaseModel):
    type: Literal["error"] = "error"
    message: str


OutboundFrame = Union[AuthResultFrame, NewMessageFrame, MessageSentFrame, ErrorFrame]


def _describe_validation_error(msg_type: str, exc: ValidationError) -> str:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != msg_type]
        if loc:
            fields.append(loc[-1])
    if fields:
        return f"Invalid {msg_type} frame: missing or invalid {', '.join(sorted(set(fields)))}"
    return f"Invalid {msg_type} frame"


def decode_frame(raw: str) -> Union[AuthFrame, ChatMessageFrame]:
    """
    Decode one text frame. Pure; raises ProtocolDecodeError on anything that
    is not a well-formed known frame.
    """
    if len(raw.encode("utf-8")) > MAX_FRAME_SIZE:
        raise ProtocolDecodeError("Frame too large")
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        # JSONDecodeError, oversized int literals and deep nesting
        raise ProtocolDecodeError("Invalid message format")
    if not isinstance(data, dict):
        raise ProtocolDecodeError("Frame must be a JSON object")
    msg_type = data.get("type")
    if not msg_type or not isinstance(msg_type, str):
        raise ProtocolDecodeError("Missing message type")
    if msg_type not in INBOUND_TYPES:
        raise ProtocolDecodeError(f"Unknown message type: {msg_type}")
    if msg_type == "chat_message" and isinstance(data.get("content"), str):
        data = {**data, "content": data["content"].strip()}
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolDecodeError(_describe_validation_error(msg_type, e))


def encode_frame(frame: OutboundFrame) -> str:
    """Serialize an outbound frame to its JSON text form."""
    return frame.model_dump_json(by_alias=True)


def auth_result(success: bool) -> AuthResultFrame:
    return AuthResultFrame(status="success" if success else "failed")


def message_delivered(message: PersistedMessage) -> NewMessageFrame:
    return NewMessageFrame(chat_id=message.chat_id, message=message.to_payload())


def message_accepted(message: PersistedMessage) -> MessageSentFrame:
    return MessageSentFrame(message=message.to_payload())


def protocol_error(description: str) -> ErrorFrame:
    return ErrorFrame(message=description)
