from typing import Any, Dict, Optional

from pydantic import BaseModel


class UserPublic(BaseModel):

    id: str
    full_name: Optional[str] = None
    username: Optional[str] = None
    image: Optional[str] = None
    public_key: Optional[str] = None


class SidebarUser(UserPublic):

    unread_count: int = 0

    @classmethod
    def from_document(cls, doc: Dict[str, Any], unread_count: int = 0) -> "SidebarUser":
        return cls(
            id=str(doc["_id"]),
            full_name=doc.get("full_name"),
            username=doc.get("username"),
            image=doc.get("image"),
            public_key=doc.get("public_key"),
            unread_count=unread_count,
        )
