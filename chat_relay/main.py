import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_relay.config import get_settings
from chat_relay.database.connection import close_mongo_connection, connect_to_mongo, get_database
from chat_relay.errors import ChatError
from chat_relay.repositories.conversation_repository import ConversationRepository
from chat_relay.repositories.message_repository import MessageRepository
from chat_relay.routers.chat import router as chat_router
from chat_relay.routers.conversations import router as conversations_router
from chat_relay.routers.presence import router as presence_router
from chat_relay.routers.realtime import router as realtime_router
from chat_relay.routers.users import router as users_router
from chat_relay.utils.realtime_bus import create_bus
from chat_relay.utils.websocket_manager import ConnectionManager


logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

for _noisy in ("pymongo", "httpx", "httpcore", "websockets"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    try:
        yield
    finally:
        await app.state.connections.bus.close()
        await close_mongo_connection()


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        # never leak store internals
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Chat relay", lifespan=lifespan)
    # one registry per process, reached through app.state
    app.state.connections = ConnectionManager(create_bus(settings.redis_url))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ChatError, chat_error_handler)

    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(users_router)
    app.include_router(presence_router)
    app.include_router(realtime_router)

    @app.get("/")
    async def root():
        return {"message": "Chat relay is running", "online": len(app.state.connections.online_users())}

    return app


app = create_app()
