import uuid

import pytest
import pytest_asyncio
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from fakes import RecordingNotifier
from screech_messaging.core.config import Settings
from screech_messaging.repositories.conversation_repository import ConversationRepository
from screech_messaging.repositories.message_repository import MessageRepository
from screech_messaging.repositories.user_repository import UserRepository
from screech_messaging.services.messaging_service import MessagingService
from screech_messaging.utils.websocket_manager import DeliveryCoordinator


USERS = [
    ("alice", "amber", "🦉"),
    ("bob", "blue", "🐺"),
    ("carol", "green", "🦊"),
]


async def seed_users(db):
    ids = {}
    for name, color, emoji in USERS:
        oid = ObjectId()
        await db["users"].insert_one(
            {"_id": oid, "username": name, "avatar_color": color, "clan": {"name": name.title(), "emoji": emoji}}
        )
        ids[name] = str(oid)
    return ids


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", write_timeout=2.0, push_timeout=0.2)


@pytest.fixture
def db():
    """A fresh in-memory database for each test."""
    return AsyncMongoMockClient()[f"screech_{uuid.uuid4().hex}"]


@pytest_asyncio.fixture
async def users(db):
    return await seed_users(db)


@pytest_asyncio.fixture
async def message_repo(db):
    repo = MessageRepository(db)
    await repo.ensure_indexes()
    return repo


@pytest_asyncio.fixture
async def conversation_repo(db, message_repo):
    repo = ConversationRepository(db, message_repo)
    await repo.ensure_indexes()
    return repo


@pytest.fixture
def coordinator(settings):
    return DeliveryCoordinator(push_timeout=settings.push_timeout)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(db, message_repo, conversation_repo, coordinator, notifier, settings):
    return MessagingService(message_repo, conversation_repo, UserRepository(db), coordinator, notifier, settings)
