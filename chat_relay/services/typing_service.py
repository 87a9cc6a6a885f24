from typing import Optional

from chat_relay.schemas.events import STOP_TYPING, TYPING
from chat_relay.utils.websocket_manager import ConnectionManager


class TypingChannel:
    """Relays typing signals; nothing is stored and nothing is debounced here."""

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections

    async def emit_typing(self, sender_id: Optional[str], receiver_id: str) -> None:
        await self._relay(TYPING, sender_id, receiver_id)

    async def emit_stop_typing(self, sender_id: Optional[str], receiver_id: str) -> None:
        await self._relay(STOP_TYPING, sender_id, receiver_id)

    async def _relay(self, event: str, sender_id: Optional[str], receiver_id: str) -> None:
        if not sender_id or not receiver_id:
            return
        await self._connections.emit_to_user(receiver_id, event, {"sender_id": sender_id})
