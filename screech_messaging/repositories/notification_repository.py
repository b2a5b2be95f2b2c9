from datetime import datetime, timezone
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING


MESSAGE = "message"


class NotificationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["notifications"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("recipient", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("recipient", ASCENDING), ("read", ASCENDING)])

    async def create(self, recipient: str, sender: Optional[str], type_: str, message: str) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "recipient": recipient,
            "sender": sender,
            "type": type_,
            "message": message,
            "read": False,
            "created_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc
