from typing import Any, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from chat_relay.models.user import UserDocument
from chat_relay.utils.ids import to_object_id


# never leave the store
_HIDDEN_FIELDS = {"password": 0, "hashed_password": 0}


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    @staticmethod
    def _id_query(user_id: str) -> Any:
        # users are created by the auth service, which may use ObjectIds or plain strings
        return to_object_id(user_id) or user_id

    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:
        user = await self._collection.find_one({"_id": self._id_query(user_id)}, _HIDDEN_FIELDS)
        if user:
            user["_id"] = str(user["_id"])
        return user

    async def list_users_except(self, user_id: str) -> List[UserDocument]:
        cursor = self._collection.find({"_id": {"$ne": self._id_query(user_id)}}, _HIDDEN_FIELDS)
        results = []
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            results.append(doc)
        return results
