from typing import List

from fastapi import APIRouter, Depends

from chat_relay.errors import persistence_errors
from chat_relay.repositories.user_repository import UserRepository
from chat_relay.schemas.user import SidebarUser
from chat_relay.services.read_receipt_service import ReadReceiptService
from chat_relay.utils.dependencies import get_current_user, get_read_receipt_service, get_user_repository


router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[SidebarUser])
async def sidebar_users(current_user: dict = Depends(get_current_user), users: UserRepository = Depends(get_user_repository), receipts: ReadReceiptService = Depends(get_read_receipt_service)):
    """
    Every other user with the number of unread messages they sent to the caller.
    """
    with persistence_errors("listing users"):
        others = await users.list_users_except(current_user["_id"])
    counts = await receipts.unread_counts(current_user["_id"])
    return [SidebarUser.from_document(u, counts.get(u["_id"], 0)) for u in others]


@router.get("/unread")
async def unread_counts(current_user: dict = Depends(get_current_user), receipts: ReadReceiptService = Depends(get_read_receipt_service)):
    return await receipts.unread_counts(current_user["_id"])
