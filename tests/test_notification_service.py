from fakes import RecordingPush
from screech_messaging.repositories.device_repository import DeviceRepository
from screech_messaging.services.notification_service import NotificationService


async def test_new_message_notification_is_stored(db):
    service = NotificationService(db)

    await service.notify_new_message("u2", "u1", "alice")

    doc = await db["notifications"].find_one({"recipient": "u2"})
    assert doc["sender"] == "u1"
    assert doc["type"] == "message"
    assert doc["message"] == "alice sent you a message"
    assert doc["read"] is False


async def test_missing_display_name_falls_back(db):
    await NotificationService(db).notify_new_message("u2", "u1", None)

    doc = await db["notifications"].find_one({"recipient": "u2"})
    assert doc["message"] == "Someone sent you a message"


async def test_push_goes_to_recipient_fcm_devices_only(db):
    devices = DeviceRepository(db)
    await devices.register("u2", "fcm", "token-a")
    await devices.register("u2", "webpush", "endpoint-b")
    await devices.register("u3", "fcm", "token-c")
    push = RecordingPush()

    await NotificationService(db, push=push).notify_new_message("u2", "u1", "alice")

    [(tokens, title, body, data)] = push.sent
    assert tokens == ["token-a"]
    assert title == "New message"
    assert body == "alice sent you a message"
    assert data == {"type": "message", "sender_id": "u1"}


async def test_no_push_without_devices(db):
    push = RecordingPush()

    await NotificationService(db, push=push).notify_new_message("u2", "u1", "alice")

    assert push.sent == []


async def test_reregistered_token_moves_to_new_owner(db):
    devices = DeviceRepository(db)
    await devices.ensure_indexes()
    await devices.register("u1", "fcm", "shared-phone")
    await devices.register("u2", "fcm", "shared-phone")

    assert await devices.get_tokens("u1", platform="fcm") == []
    assert await devices.get_tokens("u2", platform="fcm") == ["shared-phone"]
    assert await db["devices"].count_documents({}) == 1
