from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from screech_messaging.repositories.device_repository import DeviceRepository
from screech_messaging.repositories.notification_repository import MESSAGE, NotificationRepository
from screech_messaging.utils.notifications import NoopPush, get_push


class NotificationService:
    """Records a "new message" notification and pushes it to the recipient's devices."""

    def __init__(self, db: AsyncIOMotorDatabase, push=None) -> None:
        self._notifications = NotificationRepository(db)
        self._devices = DeviceRepository(db)
        self._push = push if push is not None else NoopPush()

    @classmethod
    def from_settings(cls, db: AsyncIOMotorDatabase, settings=None) -> "NotificationService":
        return cls(db, push=get_push(settings))

    async def notify_new_message(self, recipient_id: str, sender_id: str, sender_display_name: Optional[str]) -> None:
        text = f"{sender_display_name or 'Someone'} sent you a message"
        await self._notifications.create(recipient_id, sender_id, MESSAGE, text)
        if not getattr(self._push, "enabled", False):
            return
        tokens = await self._devices.get_tokens(recipient_id, platform="fcm")
        if tokens:
            await self._push.send_fcm(tokens, "New message", text, {"type": MESSAGE, "sender_id": sender_id})
