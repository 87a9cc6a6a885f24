"""Event vocabulary of the live channel.

Every frame is ``{"event": <name>, "data": <payload>}``. Inbound frames are
parsed into a closed union before anything in the core sees them.
"""

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


# outbound
NEW_MESSAGE = "newMessage"
MESSAGE_UPDATED = "messageUpdated"
MESSAGE_READ = "messageRead"
UNREAD_COUNTS = "unreadCounts"
TYPING = "typing"
STOP_TYPING = "stopTyping"
ONLINE_USERS = "getOnlineUsers"
ERROR = "error"


def encode_event(event: str, payload: Any) -> str:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    return json.dumps({"event": event, "data": payload}, default=str)


class JoinData(BaseModel):

    user_id: str

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> Any:
        # socket clients sometimes send a bare id or the string "undefined"
        return "" if v is None else str(v)


class SendMessageData(BaseModel):

    receiver_id: str
    message: str
    sender_id: Optional[str] = None
    client_message_id: Optional[str] = None


class TypingData(BaseModel):

    receiver_id: str


class MarkReadData(BaseModel):

    message_id: str


class JoinEvent(BaseModel):
    event: Literal["join"]
    data: JoinData


class SendMessageEvent(BaseModel):
    event: Literal["sendMessage"]
    data: SendMessageData


class TypingEvent(BaseModel):
    event: Literal["typing"]
    data: TypingData


class StopTypingEvent(BaseModel):
    event: Literal["stopTyping"]
    data: TypingData


class MarkReadEvent(BaseModel):
    event: Literal["markMessageAsRead"]
    data: MarkReadData


InboundEvent = Annotated[
    Union[JoinEvent, SendMessageEvent, TypingEvent, StopTypingEvent, MarkReadEvent],
    Field(discriminator="event"),
]

_inbound_adapter = TypeAdapter(InboundEvent)


def parse_inbound(raw: str) -> InboundEvent:
    """Validate one inbound frame; raises ``pydantic.ValidationError``."""
    return _inbound_adapter.validate_json(raw)
