from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class MessageCreate(BaseModel):

    message: str
    client_message_id: Optional[str] = None


class MessageUpdate(BaseModel):

    message: str


class MessagePublic(BaseModel):

    id: str
    conversation_id: Optional[str] = None
    sender_id: str
    receiver_id: str
    message: str
    read: bool = False
    created_at: datetime
    updated_at: datetime
    client_message_id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "MessagePublic":
        conversation_id = doc.get("conversation_id")
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(conversation_id) if conversation_id is not None else None,
            sender_id=str(doc["sender_id"]),
            receiver_id=str(doc["receiver_id"]),
            message=doc["message"],
            read=bool(doc.get("read", False)),
            created_at=doc["created_at"],
            updated_at=doc.get("updated_at") or doc["created_at"],
            client_message_id=doc.get("client_message_id"),
        )
