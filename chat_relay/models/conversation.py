from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    # "a:b" of the sorted participant ids, unique
    pair_key: str
    # always sorted so one pair maps to one document
    participants: List[str]
    # message ids, insertion order is chronological order
    messages: List[str]
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime
    last_message_preview: Optional[str]
