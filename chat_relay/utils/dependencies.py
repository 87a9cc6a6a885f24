from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from starlette.requests import HTTPConnection

from chat_relay.database.connection import mongo_db_dependency
from chat_relay.repositories.conversation_repository import ConversationRepository
from chat_relay.repositories.message_repository import MessageRepository
from chat_relay.repositories.user_repository import UserRepository
from chat_relay.services.chat_service import ChatService
from chat_relay.services.read_receipt_service import ReadReceiptService
from chat_relay.services.typing_service import TypingChannel
from chat_relay.utils.security import decode_access_token
from chat_relay.utils.websocket_manager import ConnectionManager


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def get_connection_manager(connection: HTTPConnection) -> ConnectionManager:
    return connection.app.state.connections


def get_user_repository(db = Depends(mongo_db_dependency)) -> UserRepository:
    return UserRepository(db)


def get_message_repository(db = Depends(mongo_db_dependency)) -> MessageRepository:
    return MessageRepository(db)


def get_conversation_repository(db = Depends(mongo_db_dependency)) -> ConversationRepository:
    return ConversationRepository(db)


def get_read_receipt_service(
    message_repo: MessageRepository = Depends(get_message_repository),
    convo_repo: ConversationRepository = Depends(get_conversation_repository),
    connections: ConnectionManager = Depends(get_connection_manager),
) -> ReadReceiptService:
    return ReadReceiptService(message_repo, convo_repo, connections)


def get_chat_service(
    message_repo: MessageRepository = Depends(get_message_repository),
    convo_repo: ConversationRepository = Depends(get_conversation_repository),
    connections: ConnectionManager = Depends(get_connection_manager),
    receipts: ReadReceiptService = Depends(get_read_receipt_service),
) -> ChatService:
    return ChatService(message_repo, convo_repo, connections, receipts)


def get_typing_channel(connections: ConnectionManager = Depends(get_connection_manager)) -> TypingChannel:
    return TypingChannel(connections)


def _token_from(connection: HTTPConnection, bearer: Optional[str]) -> Optional[str]:
    # the web client sends the session cookie, other clients a bearer header
    return bearer or connection.cookies.get("jwt")


async def get_current_user(
    connection: HTTPConnection,
    bearer: Optional[str] = Depends(oauth2_scheme),
    users: UserRepository = Depends(get_user_repository),
) -> dict:
    token = _token_from(connection, bearer)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized - no token provided")
    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized - invalid token")
    user = await users.get_user_by_id(payload["sub"])
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized - user not found")
    return user
