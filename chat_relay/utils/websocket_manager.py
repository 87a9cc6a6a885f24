"""Presence registry and live-connection transport.

One ``ConnectionManager`` is built per application and shared through
``app.state``. It maps user ids to the *set* of connection ids they hold, so a
second tab or device closing does not take the user offline.

All registry mutations are synchronous (no await between read and write), so
they are atomic with respect to other tasks on the event loop.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple

from fastapi import WebSocket

from chat_relay.schemas.events import ONLINE_USERS, encode_event
from chat_relay.utils.realtime_bus import NoopBus


logger = logging.getLogger(__name__)

# identities that socket clients send when they have none
_ABSENT_IDS = {"", "undefined", "null", "None"}


class ConnectionManager:

    def __init__(self, bus=None) -> None:
        self._bus = bus or NoopBus()
        self._sockets: Dict[str, WebSocket] = {}
        self._users: Dict[str, Set[str]] = {}
        self._owners: Dict[str, str] = {}
        self._subscriptions: Dict[str, Tuple[Any, asyncio.Task]] = {}

    @property
    def bus(self):
        return self._bus

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.attach(connection_id, websocket)
        return connection_id

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    async def disconnect(self, connection_id: str) -> None:
        await self.unregister(connection_id)
        self.detach(connection_id)

    # -- registry -----------------------------------------------------------

    async def register(self, user_id: Optional[str], connection_id: str) -> bool:
        if user_id is None or str(user_id).strip() in _ABSENT_IDS:
            return False
        user_id = str(user_id)
        previous = self._owners.get(connection_id)
        if previous is not None and previous != user_id:
            # same socket re-joined under another identity: last writer wins
            self._remove(connection_id)
        self._owners[connection_id] = user_id
        self._users.setdefault(user_id, set()).add(connection_id)
        if previous != user_id:
            await self._subscribe(user_id, connection_id)
        logger.info("User %s registered on connection %s", user_id, connection_id)
        await self.broadcast_all(ONLINE_USERS, self.online_users())
        return True

    async def unregister(self, connection_id: str) -> bool:
        user_id = self._remove(connection_id)
        if user_id is None:
            return False
        await self._unsubscribe(connection_id)
        logger.info("User %s unregistered connection %s", user_id, connection_id)
        await self.broadcast_all(ONLINE_USERS, self.online_users())
        return True

    def _remove(self, connection_id: str) -> Optional[str]:
        user_id = self._owners.pop(connection_id, None)
        if user_id is None:
            return None
        connections = self._users.get(user_id)
        if connections is not None:
            connections.discard(connection_id)
            if not connections:
                del self._users[user_id]
        return user_id

    def lookup(self, user_id: str) -> Set[str]:
        return set(self._users.get(str(user_id), ()))

    def user_of(self, connection_id: str) -> Optional[str]:
        return self._owners.get(connection_id)

    def is_online(self, user_id: str) -> bool:
        return str(user_id) in self._users

    def online_users(self) -> List[str]:
        return sorted(self._users)

    # -- transport ----------------------------------------------------------

    async def emit_to_user(self, user_id: str, event: str, payload: Any) -> None:
        frame = encode_event(event, payload)
        if self._bus.enabled:
            await self._bus.publish(f"user:{user_id}", frame)
            return
        for connection_id in self.lookup(user_id):
            await self.send_to_connection(connection_id, frame)

    async def broadcast_all(self, event: str, payload: Any) -> None:
        frame = encode_event(event, payload)
        await asyncio.gather(*(self.send_to_connection(cid, frame) for cid in list(self._sockets)))

    async def send_to_connection(self, connection_id: str, frame: str) -> bool:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_text(frame)
            return True
        except Exception:
            logger.warning("Dropping dead connection %s", connection_id, exc_info=True)
            self.detach(connection_id)
            await self.unregister(connection_id)
            return False

    # -- bus fan-out --------------------------------------------------------

    async def _subscribe(self, user_id: str, connection_id: str) -> None:
        if not self._bus.enabled:
            return
        await self._unsubscribe(connection_id)

        async def forward(frame: str) -> None:
            await self.send_to_connection(connection_id, frame)

        subscription = await self._bus.subscribe(f"user:{user_id}", forward)
        task = asyncio.create_task(subscription.run())
        self._subscriptions[connection_id] = (subscription, task)

    async def _unsubscribe(self, connection_id: str) -> None:
        entry = self._subscriptions.pop(connection_id, None)
        if entry is None:
            return
        subscription, task = entry
        await subscription.cancel()
        # a dead send inside the forwarding task ends its own loop via cancel()
        if task is not asyncio.current_task():
            task.cancel()
