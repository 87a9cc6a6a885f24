import logging
from typing import Dict, List, Optional

from pymongo.errors import PyMongoError

from chat_relay.errors import AggregationFailure, persistence_errors
from chat_relay.repositories.conversation_repository import ConversationRepository
from chat_relay.repositories.message_repository import MessageRepository
from chat_relay.schemas.events import MESSAGE_READ, UNREAD_COUNTS
from chat_relay.schemas.message import MessagePublic
from chat_relay.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)


class ReadReceiptService:
    """Marks messages read, notifies their senders and keeps unread counts live.

    The unread-count push runs after the read flags are committed and is
    best-effort: a failed aggregation is logged and never undoes or fails the
    read marking.
    """

    def __init__(self, message_repo: MessageRepository, conversation_repo: ConversationRepository, connections: ConnectionManager) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._connections = connections

    async def fetch_conversation(self, reader_id: str, other_user_id: str) -> List[MessagePublic]:
        with persistence_errors("fetching conversation"):
            convo = await self._conversation_repo.find_by_participants(reader_id, other_user_id)
            if convo is None:
                return []
            docs = await self._message_repo.get_for_conversation(convo["_id"], convo.get("messages", []))
            newly_read = []
            for doc in docs:
                if doc.get("read") or doc["receiver_id"] != reader_id:
                    continue
                if await self._message_repo.mark_read(doc["_id"]):
                    newly_read.append(doc)
                doc["read"] = True

        for doc in newly_read:
            await self._connections.emit_to_user(doc["sender_id"], MESSAGE_READ, doc["_id"])
        await self.push_unread_counts(reader_id)
        return [MessagePublic.from_document(doc) for doc in docs]

    async def acknowledge(self, message_id: str, reader_id: str) -> bool:
        with persistence_errors("acknowledging message"):
            doc = await self._message_repo.get_by_id(message_id)
            if doc is None:
                logger.info("Read ack for unknown message %s ignored", message_id)
                return False
            if doc["receiver_id"] != reader_id:
                logger.warning("User %s tried to ack message %s addressed to %s", reader_id, message_id, doc["receiver_id"])
                return False
            flipped = await self._message_repo.mark_read(doc["_id"])

        if flipped:
            await self._connections.emit_to_user(doc["sender_id"], MESSAGE_READ, doc["_id"])
        await self.push_unread_counts(reader_id)
        return flipped

    async def unread_counts(self, user_id: str) -> Dict[str, int]:
        try:
            return await self._message_repo.aggregate_unread_by_sender(user_id)
        except PyMongoError as exc:
            raise AggregationFailure("Could not compute unread counts") from exc

    async def unread_from(self, reader_id: str, sender_id: str) -> int:
        with persistence_errors("counting unread messages"):
            return await self._message_repo.count_unread(reader_id, sender_id)

    async def push_unread_counts(self, user_id: str) -> Optional[Dict[str, int]]:
        try:
            counts = await self.unread_counts(user_id)
        except AggregationFailure:
            logger.warning("Unread count recompute failed for %s", user_id, exc_info=True)
            return None
        await self._connections.emit_to_user(user_id, UNREAD_COUNTS, counts)
        return counts
