import asyncio

import jwt
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import seed_users
from fakes import RecordingBus
from screech_messaging.core.config import get_settings
from screech_messaging.database.connection import mongo_db_dependency
from screech_messaging.main import create_app
from screech_messaging.repositories.conversation_repository import ConversationRepository
from screech_messaging.repositories.message_repository import MessageRepository
from screech_messaging.repositories.user_repository import UserRepository
from screech_messaging.routers.chat import chat_socket
from screech_messaging.services.messaging_service import MessagingService
from screech_messaging.utils import realtime_bus
from screech_messaging.utils.websocket_manager import DeliveryCoordinator


def token_for(user_id):
    return jwt.encode({"sub": user_id}, "test-secret", algorithm="HS256")


def auth(user_id):
    return {"Authorization": f"Bearer {token_for(user_id)}"}


@pytest.fixture
def ids(db):
    return asyncio.run(seed_users(db))


@pytest.fixture
def app(db, settings, ids, monkeypatch):
    monkeypatch.setattr(realtime_bus, "_bus", None)
    messages = MessageRepository(db)
    coordinator = DeliveryCoordinator(push_timeout=settings.push_timeout)
    service = MessagingService(
        messages, ConversationRepository(db, messages), UserRepository(db), coordinator, None, settings
    )
    app = create_app(use_lifespan=False)
    app.state.coordinator = coordinator
    app.state.messaging_service = service
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[mongo_db_dependency] = lambda: db
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def test_send_then_list_and_open(client, ids):
    alice, bob = ids["alice"], ids["bob"]

    sent = client.post("/messages", json={"recipient_id": bob, "content": " hi "}, headers=auth(alice))
    assert sent.status_code == 201
    body = sent.json()
    assert body["message"]["content"] == "hi"
    conversation_id = body["conversation_id"]

    assert client.get("/messages/unread/count", headers=auth(bob)).json() == {"unread_count": 1}

    listing = client.get("/conversations", headers=auth(bob)).json()
    assert listing["total"] == 1
    summary = listing["conversations"][0]
    assert summary["my_unread_count"] == 1
    assert summary["last_message"]["content"] == "hi"
    assert summary["other_user"]["username"] == "alice"

    opened = client.get(f"/conversations/{conversation_id}", headers=auth(bob))
    assert opened.status_code == 200
    assert [m["content"] for m in opened.json()["messages"]["messages"]] == ["hi"]
    assert client.get("/messages/unread/count", headers=auth(bob)).json() == {"unread_count": 0}


def test_error_kinds_map_to_status_codes(client, ids):
    alice, bob, carol = ids["alice"], ids["bob"], ids["carol"]
    sent = client.post("/messages", json={"recipient_id": bob, "content": "secret"}, headers=auth(alice)).json()

    assert client.get(f"/conversations/{sent['conversation_id']}", headers=auth(carol)).status_code == 403
    assert client.post("/messages", json={"recipient_id": bob, "content": "   "}, headers=auth(alice)).status_code == 400
    missing = client.post("/messages", json={"recipient_id": str(ObjectId()), "content": "hello"}, headers=auth(alice))
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"
    assert client.delete(f"/messages/{sent['message']['id']}", headers=auth(bob)).status_code == 403


def test_requests_need_a_valid_token(client, ids):
    assert client.get("/conversations").status_code == 401
    assert client.get("/conversations", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_get_or_create_mark_read_and_delete(client, ids):
    alice, bob = ids["alice"], ids["bob"]

    created = client.post(f"/conversations/with/{bob}", headers=auth(alice))
    assert created.status_code == 200
    conversation_id = created.json()["conversation"]["id"]
    again = client.post(f"/conversations/with/{alice}", headers=auth(bob)).json()
    assert again["conversation"]["id"] == conversation_id

    assert client.put(f"/conversations/{conversation_id}/read", headers=auth(bob)).status_code == 200
    assert client.delete(f"/conversations/{conversation_id}", headers=auth(alice)).status_code == 200
    assert client.get(f"/conversations/{conversation_id}", headers=auth(bob)).status_code == 404


def test_register_device(client, ids, db):
    response = client.post("/devices/register", json={"platform": "fcm", "token": "abc"}, headers=auth(ids["bob"]))

    assert response.status_code == 200
    assert response.json()["device"] == {"platform": "fcm", "token": "abc"}
    assert client.post("/devices/register", json={"platform": "pager", "token": "abc"}, headers=auth(ids["bob"])).status_code == 422


def test_websocket_rejects_missing_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/messages/ws") as ws:
            ws.receive_json()


def test_websocket_receives_pushes(client, app, ids):
    alice, bob = ids["alice"], ids["bob"]

    with client.websocket_connect(f"/messages/ws?token={token_for(bob)}") as ws:
        assert ws.receive_json() == {"event": "connected", "data": {"userId": bob}}
        assert app.state.coordinator.is_reachable(bob)
        assert client.get(f"/presence/{bob}").json() == {"user_id": bob, "online": True}

        client.post("/messages", json={"recipient_id": bob, "content": "live"}, headers=auth(alice))
        frame = ws.receive_json()
        assert frame["event"] == "message:received"
        assert frame["data"]["message"]["content"] == "live"
        assert frame["data"]["from"]["username"] == "alice"

        ws.send_text("not json")
        assert ws.receive_json()["event"] == "error"
        ws.send_json({"event": "message:unknown", "data": {}})
        assert ws.receive_json()["data"]["detail"] == "Unsupported event: message:unknown"


def test_typing_frames_are_relayed(client, ids):
    alice, bob = ids["alice"], ids["bob"]
    conversation_id = client.post(f"/conversations/with/{bob}", headers=auth(alice)).json()["conversation"]["id"]

    with client.websocket_connect(f"/messages/ws?token={token_for(alice)}") as alice_ws, \
            client.websocket_connect(f"/messages/ws?token={token_for(bob)}") as bob_ws:
        alice_ws.receive_json()
        bob_ws.receive_json()

        alice_ws.send_json({"event": "message:typing", "data": {"recipient_id": bob, "conversation_id": conversation_id, "is_typing": True}})
        frame = bob_ws.receive_json()

        assert frame == {
            "event": "message:typing",
            "data": {"conversationId": conversation_id, "userId": alice, "username": "alice", "isTyping": True},
        }

        alice_ws.send_json({"event": "message:typing", "data": {"recipient_id": bob}})
        assert alice_ws.receive_json()["data"]["detail"] == "conversation_id is required"


class DroppedSocket:
    """Accepts, then fails on the first frame as if the client hung up."""

    def __init__(self, token):
        self.query_params = {"token": token}
        self.closed_with = None

    async def accept(self):
        return None

    async def close(self, code=1000):
        self.closed_with = code

    async def send_json(self, data):
        raise RuntimeError("Cannot call send once a close message has been sent")

    async def receive_text(self):
        raise WebSocketDisconnect(code=1006)


async def test_socket_dropped_before_greeting_is_unregistered(service, coordinator, settings, users, monkeypatch):
    bus = RecordingBus()
    monkeypatch.setattr(realtime_bus, "_bus", bus)
    bob = users["bob"]

    with pytest.raises(RuntimeError):
        await chat_socket(DroppedSocket(token_for(bob)), service, coordinator, settings)

    assert not coordinator.is_reachable(bob)
    assert coordinator.online_count() == 0
    assert bus.cleared == [bob]
    await asyncio.sleep(0)
    assert not await bus.is_present(bob)


async def test_socket_with_bad_token_is_closed(service, coordinator, settings, users):
    socket = DroppedSocket("garbage")

    await chat_socket(socket, service, coordinator, settings)

    assert socket.closed_with == 4401
    assert coordinator.online_count() == 0
