import asyncio
import logging
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chat_relay.config import get_settings
from chat_relay.errors import ChatError
from chat_relay.schemas.events import (
    ERROR,
    ONLINE_USERS,
    JoinEvent,
    MarkReadEvent,
    SendMessageEvent,
    StopTypingEvent,
    TypingEvent,
    encode_event,
    parse_inbound,
)
from chat_relay.services.chat_service import ChatService
from chat_relay.services.typing_service import TypingChannel
from chat_relay.utils.dependencies import get_chat_service, get_connection_manager, get_typing_channel
from chat_relay.utils.security import decode_access_token
from chat_relay.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# close codes used before the socket is accepted
WS_UNAUTHORIZED = 4401


async def _presence_heartbeat(connections: ConnectionManager, connection_id: str, ttl_seconds: int) -> None:
    while True:
        user_id = connections.user_of(connection_id)
        if user_id:
            await connections.bus.set_presence(user_id, ttl_seconds=ttl_seconds)
        await asyncio.sleep(max(ttl_seconds / 2, 1))


async def _send_error(connections: ConnectionManager, connection_id: str, detail: str, event: Optional[str] = None) -> None:
    await connections.send_to_connection(connection_id, encode_event(ERROR, {"detail": detail, "event": event}))


async def _dispatch(
    raw: str,
    connection_id: str,
    token_user: Optional[str],
    connections: ConnectionManager,
    service: ChatService,
    typing: TypingChannel,
) -> None:
    try:
        event = parse_inbound(raw)
    except ValidationError:
        logger.info("Rejected malformed frame on %s", connection_id)
        await _send_error(connections, connection_id, "Invalid event payload")
        return

    if isinstance(event, JoinEvent):
        joined = event.data.user_id
        if token_user and joined != token_user:
            logger.warning("Connection %s of %s tried to join as %s", connection_id, token_user, joined)
            await _send_error(connections, connection_id, "Cannot join as another user", event.event)
            return
        await connections.register(joined, connection_id)
        return

    current = connections.user_of(connection_id)
    if current is None:
        await _send_error(connections, connection_id, "Join before sending events", event.event)
        return

    try:
        if isinstance(event, SendMessageEvent):
            data = event.data
            if data.sender_id and data.sender_id != current:
                await _send_error(connections, connection_id, "Sender does not match connection", event.event)
                return
            await service.send_message(current, data.receiver_id, data.message, data.client_message_id)
        elif isinstance(event, TypingEvent):
            await typing.emit_typing(current, event.data.receiver_id)
        elif isinstance(event, StopTypingEvent):
            await typing.emit_stop_typing(current, event.data.receiver_id)
        elif isinstance(event, MarkReadEvent):
            await service.receipts.acknowledge(event.data.message_id, current)
    except ChatError as exc:
        await _send_error(connections, connection_id, exc.detail, event.event)


@router.websocket("/ws")
async def live_channel(
    websocket: WebSocket,
    service: ChatService = Depends(get_chat_service),
    typing: TypingChannel = Depends(get_typing_channel),
    connections: ConnectionManager = Depends(get_connection_manager),
):
    settings = get_settings()
    token = websocket.query_params.get("token")
    token_user = None
    if token:
        try:
            token_user = decode_access_token(token)["sub"]
        except jwt.InvalidTokenError:
            await websocket.close(code=WS_UNAUTHORIZED)
            return
    elif settings.ws_require_token:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    connection_id = await connections.connect(websocket)
    logger.info("Connection %s opened", connection_id)
    # identity may arrive now or later through "join"
    registered = await connections.register(token_user or websocket.query_params.get("user_id"), connection_id)
    if not registered:
        await connections.send_to_connection(connection_id, encode_event(ONLINE_USERS, connections.online_users()))

    heartbeat = None
    if connections.bus.enabled:
        heartbeat = asyncio.create_task(_presence_heartbeat(connections, connection_id, settings.presence_ttl_seconds))

    # kept across a dead-socket drop, which clears the registry entry first
    user_id = connections.user_of(connection_id)
    try:
        while True:
            raw = await websocket.receive_text()
            await _dispatch(raw, connection_id, token_user, connections, service, typing)
            user_id = connections.user_of(connection_id) or user_id
    except WebSocketDisconnect:
        logger.info("Connection %s closed", connection_id)
    finally:
        if heartbeat is not None:
            heartbeat.cancel()
        user_id = connections.user_of(connection_id) or user_id
        await connections.disconnect(connection_id)
        if user_id and not connections.is_online(user_id):
            await connections.bus.clear_presence(user_id)
