import logging
from typing import Any, Dict, List, Optional, Tuple

from chat_relay.errors import Forbidden, InvalidMessage, NotFound, persistence_errors
from chat_relay.repositories.conversation_repository import ConversationRepository
from chat_relay.repositories.message_repository import MessageRepository
from chat_relay.schemas.events import MESSAGE_UPDATED, NEW_MESSAGE
from chat_relay.schemas.message import MessagePublic
from chat_relay.services.read_receipt_service import ReadReceiptService
from chat_relay.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


def _require_text(content: Optional[str]) -> str:
    if not content or not content.strip():
        raise InvalidMessage()
    return content


class ChatService:
    """Persist-then-broadcast pipeline for direct messages.

    Both entry points (HTTP create-message and the live ``sendMessage`` event)
    end up in ``send_message``. Nothing is pushed unless the message was
    stored first.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        connections: ConnectionManager,
        receipts: Optional[ReadReceiptService] = None,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._connections = connections
        self._receipts = receipts or ReadReceiptService(message_repo, conversation_repo, connections)

    @property
    def receipts(self) -> ReadReceiptService:
        return self._receipts

    async def send_message(self, sender_id: str, receiver_id: str, content: str, client_message_id: Optional[str] = None) -> MessagePublic:
        content = _require_text(content)
        if sender_id == receiver_id:
            raise InvalidMessage("Cannot send a message to yourself")

        with persistence_errors("sending message"):
            convo = await self._conversation_repo.get_or_create_one_to_one(sender_id, receiver_id)
            # the message carries conversation_id, so it stays reachable even if the append below is lost
            saved = await self._message_repo.save_message(
                conversation_id=convo["_id"],
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                client_message_id=client_message_id,
            )
            await self._conversation_repo.append_message(convo["_id"], saved["_id"], content[:PREVIEW_LENGTH])

        message = MessagePublic.from_document(saved)
        logger.info("Message %s stored (%s -> %s)", message.id, sender_id, receiver_id)
        await self._connections.emit_to_user(receiver_id, NEW_MESSAGE, message)
        # echo, so the sender's other tabs converge on the server id
        await self._connections.emit_to_user(sender_id, NEW_MESSAGE, message)
        await self._receipts.push_unread_counts(receiver_id)
        return message

    async def update_message(self, message_id: str, requester_id: str, content: str) -> MessagePublic:
        content = _require_text(content)
        with persistence_errors("updating message"):
            existing = await self._message_repo.get_by_id(message_id)
            if existing is None:
                raise NotFound("Message not found")
            if existing["sender_id"] != requester_id:
                raise Forbidden("Forbidden - only sender can edit a message")
            updated = await self._message_repo.update_text(message_id, content)
        if updated is None:
            raise NotFound("Message not found")

        message = MessagePublic.from_document(updated)
        await self._connections.emit_to_user(message.receiver_id, MESSAGE_UPDATED, message)
        await self._connections.emit_to_user(message.sender_id, MESSAGE_UPDATED, message)
        return message

    async def delete_message(self, message_id: str, requester_id: str) -> None:
        with persistence_errors("deleting message"):
            existing = await self._message_repo.get_by_id(message_id)
            if existing is None:
                raise NotFound("Message not found")
            if existing["sender_id"] != requester_id:
                raise Forbidden("Forbidden - only sender can delete a message")
            await self._message_repo.delete_message(message_id)
            await self._conversation_repo.pull_message(message_id)
        logger.info("Message %s deleted by %s", message_id, requester_id)

    async def delete_conversation(self, user_id: str, other_user_id: str) -> int:
        with persistence_errors("deleting conversation"):
            convo = await self._conversation_repo.find_by_participants(user_id, other_user_id)
            if convo is None:
                raise NotFound("Conversation not found")
            deleted = await self._message_repo.delete_many(convo.get("messages", []), conversation_id=convo["_id"])
            await self._conversation_repo.delete(convo["_id"])
        logger.info("Conversation %s deleted by %s (%d messages)", convo["_id"], user_id, deleted)
        return deleted

    async def get_messages(self, reader_id: str, other_user_id: str) -> List[MessagePublic]:
        return await self._receipts.fetch_conversation(reader_id, other_user_id)

    async def list_conversations(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        with persistence_errors("listing conversations"):
            return await self._conversation_repo.list_for_user(user_id, limit=limit, cursor=cursor)
