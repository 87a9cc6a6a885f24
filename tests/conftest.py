"""Shared fixtures: an in-memory store wired into the FastAPI app."""
from contextlib import asynccontextmanager

import jwt
import pytest
from fastapi.testclient import TestClient

from chat_relay.config import get_settings
from chat_relay.main import create_app
from chat_relay.services.chat_service import ChatService
from chat_relay.utils.dependencies import get_conversation_repository, get_message_repository, get_user_repository
from chat_relay.utils.websocket_manager import ConnectionManager
from tests.fakes import FakeConversationRepository, FakeMessageRepository, FakeUserRepository, InMemoryStore


def make_token(user_id: str) -> str:
    settings = get_settings()
    return jwt.encode({"sub": user_id}, settings.jwt_secret.get_secret_value(), algorithm=settings.jwt_algorithm)


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def alice(store):
    return store.add_user("Alice Liddell", "alice")


@pytest.fixture
def bob(store):
    return store.add_user("Bob Builder", "bob")


@pytest.fixture
def connections():
    return ConnectionManager()


@pytest.fixture
def service(store, connections):
    return ChatService(FakeMessageRepository(store), FakeConversationRepository(store), connections)


@pytest.fixture
def app(store):
    app = create_app()
    app.dependency_overrides[get_user_repository] = lambda: FakeUserRepository(store)
    app.dependency_overrides[get_message_repository] = lambda: FakeMessageRepository(store)
    app.dependency_overrides[get_conversation_repository] = lambda: FakeConversationRepository(store)
    return app


@asynccontextmanager
async def _no_store_lifespan(app):
    yield


@pytest.fixture
def client(app):
    # the real lifespan connects to MongoDB; one portal keeps every socket on the same loop
    app.router.lifespan_context = _no_store_lifespan
    with TestClient(app) as client:
        yield client
