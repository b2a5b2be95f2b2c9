from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING


MAX_DEVICES_PER_USER = 100


class DeviceRepository:
    """Push tokens per user; a token belongs to whichever user registered it last."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["devices"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("platform", ASCENDING), ("token", ASCENDING)], unique=True)
        await self.collection.create_index([("user_id", ASCENDING), ("platform", ASCENDING)])

    async def register(self, user_id: str, platform: str, token: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        # a shared phone that switches accounts keeps one token, now owned by the new user
        await self.collection.update_one(
            {"platform": platform, "token": token},
            {"$set": {"user_id": str(user_id), "last_seen_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True,
        )
        return {"user_id": str(user_id), "platform": platform, "token": token}

    async def get_tokens(self, user_id: str, platform: Optional[str] = None) -> List[str]:
        query: Dict[str, Any] = {"user_id": str(user_id)}
        if platform:
            query["platform"] = platform
        cursor = self.collection.find(query, {"token": 1}).sort("last_seen_at", -1)
        items = await cursor.to_list(length=MAX_DEVICES_PER_USER)
        return [item["token"] for item in items]
