from typing import List

from fastapi import APIRouter, Depends, status

from chat_relay.schemas.message import MessageCreate, MessagePublic, MessageUpdate
from chat_relay.services.chat_service import ChatService
from chat_relay.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("/send/{receiver_id}", response_model=MessagePublic, status_code=status.HTTP_201_CREATED)
async def send_message(receiver_id: str, body: MessageCreate, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.send_message(current_user["_id"], receiver_id, body.message, body.client_message_id)


@router.get("/unread/{other_user_id}")
async def unread_from(other_user_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    count = await service.receipts.unread_from(current_user["_id"], other_user_id)
    return {"sender_id": other_user_id, "count": count}


@router.get("/{other_user_id}", response_model=List[MessagePublic])
async def get_messages(other_user_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    # fetching a conversation marks everything addressed to the reader as read
    return await service.get_messages(current_user["_id"], other_user_id)


@router.patch("/message/{message_id}", response_model=MessagePublic)
async def update_message(message_id: str, body: MessageUpdate, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.update_message(message_id, current_user["_id"], body.message)


@router.delete("/message/{message_id}")
async def delete_message(message_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    await service.delete_message(message_id, current_user["_id"])
    return {"message": "Message deleted"}


@router.delete("/conversation/{other_user_id}")
async def delete_conversation(other_user_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    deleted = await service.delete_conversation(current_user["_id"], other_user_id)
    return {"message": "Conversation and messages deleted", "deleted_messages": deleted}
