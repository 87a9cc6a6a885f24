from fastapi import APIRouter, Depends

from chat_relay.utils.dependencies import get_connection_manager
from chat_relay.utils.websocket_manager import ConnectionManager


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("")
async def online_users(connections: ConnectionManager = Depends(get_connection_manager)):
    return {"online_users": connections.online_users()}


@router.get("/{user_id}")
async def presence(user_id: str, connections: ConnectionManager = Depends(get_connection_manager)):
    """
    Online status of one user. Connections held by this process are checked
    first; with Redis enabled, the presence keys of other processes count too.
    """
    online = connections.is_online(user_id)
    if not online and connections.bus.enabled:
        online = await connections.bus.is_online(user_id)
    return {"user_id": user_id, "online": bool(online)}
