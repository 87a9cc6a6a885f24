from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from chat_relay.models.message import MessageDocument
from chat_relay.utils.ids import to_object_id


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("read", ASCENDING), ("sender_id", ASCENDING)])

    @staticmethod
    def _normalize(doc: Dict[str, Any]) -> MessageDocument:
        doc["_id"] = str(doc["_id"])
        if doc.get("conversation_id") is not None:
            doc["conversation_id"] = str(doc["conversation_id"])
        return doc

    async def save_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        client_message_id: Optional[str] = None,
    ) -> MessageDocument:
        now = datetime.now(timezone.utc)
        doc: Dict[str, Any] = {
            "conversation_id": to_object_id(conversation_id),
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "message": content,
            "read": False,
            "created_at": now,
            "updated_at": now,
            "client_message_id": client_message_id,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return self._normalize(doc)

    async def get_by_id(self, message_id: str) -> Optional[MessageDocument]:
        oid = to_object_id(message_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return self._normalize(doc) if doc else None

    async def get_for_conversation(self, conversation_id: str, message_ids: Iterable[str] = ()) -> List[MessageDocument]:
        # the conversation's id list and each message's conversation_id are both honoured
        oids = [oid for oid in (to_object_id(m) for m in message_ids) if oid is not None]
        query: Dict[str, Any] = {
            "$or": [
                {"_id": {"$in": oids}},
                {"conversation_id": to_object_id(conversation_id)},
            ]
        }
        cursor = self.collection.find(query).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        return [self._normalize(it) async for it in cursor]

    async def update_text(self, message_id: str, content: str) -> Optional[MessageDocument]:
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(message_id)},
            {"$set": {"message": content, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        return self._normalize(doc) if doc else None

    async def mark_read(self, message_id: str) -> bool:
        # the filter on read=False keeps the flag monotonic
        result = await self.collection.update_one(
            {"_id": to_object_id(message_id), "read": False},
            {"$set": {"read": True}},
        )
        return bool(result.modified_count)

    async def delete_message(self, message_id: str) -> bool:
        oid = to_object_id(message_id)
        if oid is None:
            return False
        result = await self.collection.delete_one({"_id": oid})
        return result.deleted_count > 0

    async def delete_many(self, message_ids: Iterable[str], conversation_id: Optional[str] = None) -> int:
        clauses: List[Dict[str, Any]] = [
            {"_id": {"$in": [oid for oid in (to_object_id(m) for m in message_ids) if oid is not None]}}
        ]
        if conversation_id is not None:
            clauses.append({"conversation_id": to_object_id(conversation_id)})
        result = await self.collection.delete_many({"$or": clauses})
        return result.deleted_count or 0

    async def count_unread(self, receiver_id: str, sender_id: str) -> int:
        return await self.collection.count_documents(
            {"receiver_id": receiver_id, "sender_id": sender_id, "read": False}
        )

    async def aggregate_unread_by_sender(self, receiver_id: str) -> Dict[str, int]:
        pipeline = [
            {"$match": {"receiver_id": receiver_id, "read": False}},
            {"$group": {"_id": "$sender_id", "count": {"$sum": 1}}},
        ]
        rows = await self.collection.aggregate(pipeline).to_list(length=None)
        return {str(row["_id"]): row["count"] for row in rows}
