"""Visible message list of one client, with optimistic sends.

An outgoing message goes ``optimistic(tmp id) -> confirmed(server id)`` or is
removed when the send fails. The server copy can arrive twice (HTTP response
and the live echo) and in either order; both paths converge on one entry
carrying the server id.
"""

import itertools
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from chat_relay.errors import InvalidMessage


TEMP_PREFIX = "tmp-"


class EntryStatus(str, Enum):
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"


@dataclass
class MessageEntry:
    id: str
    sender_id: str
    receiver_id: str
    message: str
    status: EntryStatus = EntryStatus.CONFIRMED
    read: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    client_message_id: Optional[str] = None

    @classmethod
    def from_server(cls, data: Dict[str, Any]) -> "MessageEntry":
        return cls(
            id=str(data["id"]),
            sender_id=str(data["sender_id"]),
            receiver_id=str(data["receiver_id"]),
            message=data["message"],
            read=bool(data.get("read", False)),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            client_message_id=data.get("client_message_id"),
        )

    @property
    def optimistic(self) -> bool:
        return self.status is EntryStatus.OPTIMISTIC


class MessageList:

    def __init__(self, current_user_id: str) -> None:
        self.current_user_id = current_user_id
        self.peer_id: Optional[str] = None
        self._entries: List[MessageEntry] = []
        self._ids: Set[str] = set()
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    @property
    def entries(self) -> List[MessageEntry]:
        return list(self._entries)

    def get(self, message_id: str) -> Optional[MessageEntry]:
        index = self._index_of(message_id)
        return self._entries[index] if index is not None else None

    def open(self, peer_id: Optional[str], messages: Iterable[Dict[str, Any]] = ()) -> None:
        self.reset()
        self.peer_id = peer_id
        for data in messages:
            entry = MessageEntry.from_server(data)
            if entry.id not in self._ids:
                self._append(entry)

    def reset(self) -> None:
        self.peer_id = None
        self._entries = []
        self._ids = set()

    # -- outgoing -----------------------------------------------------------

    def add_optimistic(self, receiver_id: str, text: str, client_message_id: Optional[str] = None) -> MessageEntry:
        if not text or not text.strip():
            raise InvalidMessage()
        now = time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime())
        entry = MessageEntry(
            id=f"{TEMP_PREFIX}{int(time.time() * 1000)}-{next(self._counter)}",
            sender_id=self.current_user_id,
            receiver_id=receiver_id,
            message=text,
            status=EntryStatus.OPTIMISTIC,
            created_at=now,
            updated_at=now,
            client_message_id=client_message_id,
        )
        self._append(entry)
        return entry

    def confirm(self, temp_id: str, server_message: Dict[str, Any]) -> MessageEntry:
        confirmed = MessageEntry.from_server(server_message)
        index = self._index_of(temp_id)
        if confirmed.id in self._ids:
            # the live echo got here first and already took the optimistic slot
            if index is not None:
                self._remove_at(index)
            return self.get(confirmed.id)
        if index is None:
            self._append(confirmed)
        else:
            self._replace_at(index, confirmed)
        return confirmed

    def fail(self, temp_id: str) -> bool:
        index = self._index_of(temp_id)
        if index is None:
            return False
        self._remove_at(index)
        return True

    # -- incoming -----------------------------------------------------------

    def is_relevant(self, data: Dict[str, Any]) -> bool:
        sender, receiver = str(data.get("sender_id")), str(data.get("receiver_id"))
        me = self.current_user_id
        if me not in (sender, receiver):
            return False
        if self.peer_id is None:
            return True
        return (sender, receiver) in ((me, self.peer_id), (self.peer_id, me))

    def apply_incoming(self, data: Dict[str, Any]) -> bool:
        """Merge a pushed message; returns False when it was ignored."""
        if not self.is_relevant(data):
            return False
        entry = MessageEntry.from_server(data)
        if entry.id in self._ids:
            return False
        index = self._match_optimistic(entry)
        if index is not None:
            self._replace_at(index, entry)
        else:
            self._append(entry)
        return True

    def apply_update(self, data: Dict[str, Any]) -> bool:
        index = self._index_of(str(data.get("id")))
        if index is None:
            return False
        self._replace_at(index, MessageEntry.from_server(data))
        return True

    def mark_read(self, message_id: str) -> bool:
        index = self._index_of(message_id)
        if index is None:
            return False
        self._entries[index] = replace(self._entries[index], read=True)
        return True

    def remove(self, message_id: str) -> bool:
        index = self._index_of(message_id)
        if index is None:
            return False
        self._remove_at(index)
        return True

    # -- internals ----------------------------------------------------------

    def _match_optimistic(self, entry: MessageEntry) -> Optional[int]:
        candidates = [
            (i, e) for i, e in enumerate(self._entries)
            if e.optimistic and e.sender_id == entry.sender_id
        ]
        if entry.client_message_id:
            for i, e in candidates:
                if e.client_message_id == entry.client_message_id:
                    return i
        for i, e in candidates:
            if e.client_message_id and entry.client_message_id:
                # both keyed and the keys differ: a different send
                continue
            if e.message == entry.message:
                return i
        return None

    def _index_of(self, message_id: str) -> Optional[int]:
        if message_id not in self._ids:
            return None
        for i, e in enumerate(self._entries):
            if e.id == message_id:
                return i
        return None

    def _append(self, entry: MessageEntry) -> None:
        self._entries.append(entry)
        self._ids.add(entry.id)

    def _replace_at(self, index: int, entry: MessageEntry) -> None:
        self._ids.discard(self._entries[index].id)
        self._entries[index] = entry
        self._ids.add(entry.id)

    def _remove_at(self, index: int) -> None:
        self._ids.discard(self._entries.pop(index).id)
