from datetime import datetime
from typing import Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    # opaque payload, may be ciphertext
    message: str
    # false -> true only
    read: bool
    created_at: datetime
    updated_at: datetime
    # client ack
    client_message_id: Optional[str]
