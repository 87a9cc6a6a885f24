from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from chat_relay.models.conversation import ConversationDocument
from chat_relay.utils.ids import pair_key, to_object_id


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        # one document per unordered pair
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("messages", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])

    @staticmethod
    def _normalize(doc: Dict[str, Any]) -> ConversationDocument:
        doc["_id"] = str(doc["_id"])
        doc["messages"] = [str(m) for m in doc.get("messages", [])]
        return doc

    async def find_by_participants(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"pair_key": pair_key(user_a, user_b)})
        return self._normalize(doc) if doc else None

    async def get_or_create_one_to_one(self, user_a: str, user_b: str) -> ConversationDocument:
        key = pair_key(user_a, user_b)
        now = datetime.now(timezone.utc)
        try:
            doc = await self.collection.find_one_and_update(
                {"pair_key": key},
                {
                    "$setOnInsert": {
                        "participants": sorted([str(user_a), str(user_b)]),
                        "messages": [],
                        "created_at": now,
                        "updated_at": now,
                        "last_message_at": now,
                        "last_message_preview": None,
                    }
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # lost the race against the other participant's first send
            doc = await self.collection.find_one({"pair_key": key})
        return self._normalize(doc)

    async def append_message(self, conversation_id: str, message_id: str, preview: Optional[str] = None) -> None:
        now = datetime.now(timezone.utc)
        await self.collection.update_one(
            {"_id": to_object_id(conversation_id)},
            {
                "$push": {"messages": to_object_id(message_id)},
                "$set": {
                    "updated_at": now,
                    "last_message_at": now,
                    "last_message_preview": preview,
                },
            },
        )

    async def pull_message(self, message_id: str) -> int:
        oid = to_object_id(message_id)
        result = await self.collection.update_many({"messages": oid}, {"$pull": {"messages": oid}})
        return result.modified_count or 0

    async def delete(self, conversation_id: str) -> bool:
        oid = to_object_id(conversation_id)
        if oid is None:
            return False
        result = await self.collection.delete_one({"_id": oid})
        return result.deleted_count > 0

    async def list_for_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> Tuple[List[ConversationDocument], Optional[str]]:
        query: Dict[str, Any] = {"participants": user_id}
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # Cursor format: timestamp_ms:object_id_hex
            ts_str, _, oid_hex = cursor.partition(":")
            oid = to_object_id(oid_hex)
            if ts_str.isdigit() and oid is not None:
                ts = datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc)
                query["$or"] = [
                    {"last_message_at": {"$lt": ts}},
                    {"last_message_at": ts, "_id": {"$lt": oid}},
                ]

        cursor_db = self.collection.find(query).sort(sort).limit(limit)
        items = [self._normalize(it) for it in await cursor_db.to_list(length=limit)]
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            last_at = last["last_message_at"]
            # Motor returns naive datetimes unless the client is tz_aware; they are UTC
            if last_at.tzinfo is None:
                last_at = last_at.replace(tzinfo=timezone.utc)
            last_ts = int(last_at.timestamp() * 1000)
            next_cursor = f"{last_ts}:{last['_id']}"
        return items, next_cursor
