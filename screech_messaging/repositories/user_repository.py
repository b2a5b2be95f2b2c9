from typing import Dict, Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase

from screech_messaging.schemas.user import DisplayInfo


class UserRepository:
    """Read-only view of the user directory owned by the accounts service."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    @staticmethod
    def _oid(user_id: str) -> Optional[ObjectId]:
        try:
            return ObjectId(str(user_id))
        except (InvalidId, TypeError):
            return None

    @staticmethod
    def _to_display(doc: dict) -> DisplayInfo:
        clan = doc.get("clan") or {}
        return DisplayInfo(
            id=str(doc["_id"]),
            username=doc.get("username") or "",
            avatar_color=doc.get("avatar_color"),
            clan_emoji=clan.get("emoji"),
        )

    async def exists(self, user_id: str) -> bool:
        oid = self._oid(user_id)
        if oid is None:
            return False
        return await self._collection.find_one({"_id": oid}, {"_id": 1}) is not None

    async def display_info(self, user_id: str) -> Optional[DisplayInfo]:
        oid = self._oid(user_id)
        if oid is None:
            return None
        user = await self._collection.find_one({"_id": oid}, {"username": 1, "avatar_color": 1, "clan": 1})
        return self._to_display(user) if user else None

    async def display_info_many(self, user_ids: Iterable[str]) -> Dict[str, DisplayInfo]:
        oids = [oid for oid in (self._oid(u) for u in set(user_ids)) if oid is not None]
        if not oids:
            return {}
        cursor = self._collection.find({"_id": {"$in": oids}}, {"username": 1, "avatar_color": 1, "clan": 1})
        users = await cursor.to_list(length=len(oids))
        return {str(u["_id"]): self._to_display(u) for u in users}
