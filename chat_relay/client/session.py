"""Client for one authenticated user.

A ``ChatSession`` owns its HTTP client, its live socket and the state built
from them. Create one per login; nothing here is process-wide.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

import httpx
import websockets

from chat_relay.client.reconciler import MessageEntry, MessageList
from chat_relay.client.typing_indicator import DEFAULT_TIMEOUT, TypingNotifier, TypingState
from chat_relay.errors import InvalidMessage, SendFailed
from chat_relay.schemas.events import (
    ERROR,
    MESSAGE_READ,
    MESSAGE_UPDATED,
    NEW_MESSAGE,
    ONLINE_USERS,
    STOP_TYPING,
    TYPING,
    UNREAD_COUNTS,
)


logger = logging.getLogger(__name__)

# events whose payload must be a JSON object
_OBJECT_EVENTS = {NEW_MESSAGE, MESSAGE_UPDATED, UNREAD_COUNTS, TYPING, STOP_TYPING, ERROR}


class ChatSession:

    def __init__(
        self,
        base_url: str,
        token: str,
        user_id: str,
        http: Optional[httpx.AsyncClient] = None,
        connect: Optional[Callable[[str], Any]] = None,
        typing_timeout: float = DEFAULT_TIMEOUT,
        resend_typing: bool = True,
    ) -> None:
        self.user_id = user_id
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=self._base_url, headers={"Authorization": f"Bearer {token}"})
        self._connect = connect or websockets.connect
        self._socket = None
        self._reader: Optional[asyncio.Task] = None

        self.messages = MessageList(user_id)
        self.typing = TypingState()
        self.notifier = TypingNotifier(self._emit_typing, timeout=typing_timeout, resend=resend_typing)
        self.online_users: List[str] = []
        self.unread_counts: Dict[str, int] = {}
        self.last_error: Optional[str] = None

    async def __aenter__(self) -> "ChatSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def ws_url(self) -> str:
        scheme, _, rest = self._base_url.partition("://")
        ws_scheme = "wss" if scheme == "https" else "ws"
        return f"{ws_scheme}://{rest}/ws?token={self._token}"

    @property
    def peer_is_typing(self) -> bool:
        return self.typing.is_typing(self.messages.peer_id)

    async def start(self) -> None:
        self._socket = await self._connect(self.ws_url)
        await self._send_event("join", {"user_id": self.user_id})
        self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        self.notifier.cancel()
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None
        if self._socket is not None:
            await self._socket.close()
            self._socket = None
        if self._owns_http:
            await self._http.aclose()

    # -- conversations ------------------------------------------------------

    async def open_conversation(self, peer_id: str) -> List[MessageEntry]:
        previous = self.messages.peer_id
        self.notifier.switch_peer(peer_id)
        if previous is not None and previous != peer_id:
            self.typing.discard(previous)
        response = await self._http.get(f"/messages/{peer_id}")
        response.raise_for_status()
        self.messages.open(peer_id, response.json())
        self.unread_counts.pop(peer_id, None)
        return self.messages.entries

    async def send(self, text: str) -> MessageEntry:
        peer_id = self._require_peer()
        client_message_id = uuid.uuid4().hex
        entry = self.messages.add_optimistic(peer_id, text, client_message_id)
        try:
            response = await self._http.post(
                f"/messages/send/{peer_id}",
                json={"message": text, "client_message_id": client_message_id},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.messages.fail(entry.id)
            logger.warning("Send to %s failed: %s", peer_id, exc)
            raise SendFailed() from exc
        confirmed = self.messages.confirm(entry.id, response.json())
        await self.notifier.on_submit(peer_id)
        return confirmed

    async def send_live(self, text: str) -> MessageEntry:
        """Push-first send: the echo of ``newMessage`` confirms the entry."""
        peer_id = self._require_peer()
        client_message_id = uuid.uuid4().hex
        entry = self.messages.add_optimistic(peer_id, text, client_message_id)
        await self._send_event("sendMessage", {
            "receiver_id": peer_id,
            "message": text,
            "sender_id": self.user_id,
            "client_message_id": client_message_id,
        })
        await self.notifier.on_submit(peer_id)
        return entry

    async def edit(self, message_id: str, text: str) -> MessageEntry:
        if not text or not text.strip():
            raise InvalidMessage()
        response = await self._http.patch(f"/messages/message/{message_id}", json={"message": text})
        response.raise_for_status()
        data = response.json()
        self.messages.apply_update(data)
        return MessageEntry.from_server(data)

    async def delete(self, message_id: str) -> None:
        response = await self._http.delete(f"/messages/message/{message_id}")
        response.raise_for_status()
        self.messages.remove(message_id)

    async def delete_conversation(self, peer_id: str) -> None:
        response = await self._http.delete(f"/messages/conversation/{peer_id}")
        response.raise_for_status()
        if self.messages.peer_id == peer_id:
            self.messages.open(peer_id, [])

    async def input_changed(self, text: str) -> None:
        await self.notifier.on_input(self._require_peer(), text)

    async def mark_read(self, message_id: str) -> None:
        await self._send_event("markMessageAsRead", {"message_id": message_id})

    # -- live channel -------------------------------------------------------

    def handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring non-JSON frame")
            return
        if not isinstance(frame, dict):
            return
        event, data = frame.get("event"), frame.get("data")
        if event in _OBJECT_EVENTS and not isinstance(data, dict):
            logger.debug("Ignoring %s frame with malformed data", event)
            return

        if event == NEW_MESSAGE:
            self.messages.apply_incoming(data)
        elif event == MESSAGE_UPDATED:
            self.messages.apply_update(data)
        elif event == MESSAGE_READ:
            self.messages.mark_read(str(data))
        elif event == UNREAD_COUNTS:
            self.unread_counts = dict(data)
        elif event in (TYPING, STOP_TYPING):
            self.typing.apply(event, data.get("sender_id"))
        elif event == ONLINE_USERS:
            self.online_users = list(data) if isinstance(data, list) else []
        elif event == ERROR:
            self.last_error = data.get("detail")
            logger.warning("Relay reported an error: %s", self.last_error)
        else:
            logger.debug("Unhandled event %s", event)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._socket:
                try:
                    self.handle_frame(raw)
                except Exception:
                    logger.exception("Failed to apply live frame")
        except websockets.ConnectionClosed:
            logger.info("Live channel closed")

    async def _send_event(self, event: str, data: Any) -> None:
        if self._socket is None:
            return
        await self._socket.send(json.dumps({"event": event, "data": data}))

    async def _emit_typing(self, event: str, receiver_id: str) -> None:
        await self._send_event(event, {"receiver_id": receiver_id})

    def _require_peer(self) -> str:
        if self.messages.peer_id is None:
            raise InvalidMessage("No conversation selected")
        return self.messages.peer_id
