import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from screech_messaging.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from screech_messaging.models.conversation import Conversation, canonical_pair, pair_key
from screech_messaging.repositories.message_repository import MessageRepository
from screech_messaging.utils.ids import to_object_id
from screech_messaging.utils.pagination import paginate


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class ConversationRepository:
    """Two-party conversations with their last-message pointer and unread counters.

    Counters live in ``unread_counters.<user_id>`` and are only ever changed
    with single-document ``$inc``/``$set`` updates, never read-modify-write.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        messages: Optional[MessageRepository] = None,
        retries: int = 3,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._db = db
        self._messages = messages or MessageRepository(db)
        self._retries = max(1, retries)
        self._max_page_size = max_page_size

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])

    async def get(self, conversation_id) -> Optional[Conversation]:
        doc = await self.collection.find_one({"_id": to_object_id(conversation_id, "conversation_id")})
        return Conversation.from_document(doc) if doc else None

    async def get_or_create(self, user_a: str, user_b: str) -> Conversation:
        if not user_a or not user_b:
            raise ValidationError("Missing participant id(s)")
        if str(user_a) == str(user_b):
            raise ValidationError("You cannot message yourself")
        participants = list(canonical_pair(user_a, user_b))
        key = pair_key(user_a, user_b)
        for attempt in range(1, self._retries + 1):
            try:
                doc = await self._upsert_pair(key, participants)
                return Conversation.from_document(doc)
            except DuplicateKeyError:
                # another caller inserted the pair between our lookup and insert
                logger.debug("get_or_create race on %s (attempt %d)", key, attempt)
                existing = await self.collection.find_one({"pair_key": key})
                if existing:
                    return Conversation.from_document(existing)
        raise ConflictError(f"Could not create conversation for {key}")

    async def _upsert_pair(self, key: str, participants: List[str]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return await self.collection.find_one_and_update(
            {"pair_key": key},
            {
                "$setOnInsert": {
                    "participants": participants,
                    "last_message_id": None,
                    "last_message_at": now,
                    "unread_counters": {p: 0 for p in participants},
                    "created_at": now,
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    async def list_for_user(
        self, user_id: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE
    ) -> Tuple[List[Conversation], int, int, int]:
        """Return ``(conversations, total, page, limit)``, most recently active first."""
        page, limit, skip = paginate(page, page_size, DEFAULT_PAGE_SIZE, self._max_page_size)
        query = {"participants": str(user_id)}
        cursor = (
            self.collection.find(query)
            .sort([("last_message_at", DESCENDING), ("_id", DESCENDING)])
            .skip(skip)
            .limit(limit)
        )
        items = await cursor.to_list(length=limit)
        total = await self.collection.count_documents(query)
        return [Conversation.from_document(doc) for doc in items], total, page, limit

    async def record_new_message(self, conversation_id, message_id, recipient_id: str, at: datetime | None = None) -> None:
        result = await self.collection.update_one(
            {"_id": to_object_id(conversation_id, "conversation_id"), "participants": str(recipient_id)},
            {
                "$set": {
                    "last_message_id": to_object_id(message_id, "message_id"),
                    "last_message_at": at or datetime.now(timezone.utc),
                },
                "$inc": {f"unread_counters.{recipient_id}": 1},
            },
        )
        if not result.matched_count:
            raise NotFoundError("Conversation not found")

    async def release_unread(self, conversation_id, user_id: str, count: int) -> None:
        """Take ``count`` acknowledged messages off the user's counter, never going below zero.

        Sends recorded while the reader was marking keep their own increments.
        """
        if count <= 0:
            return
        oid = to_object_id(conversation_id, "conversation_id")
        field = f"unread_counters.{user_id}"
        for _ in range(self._retries):
            result = await self.collection.update_one(
                {"_id": oid, "participants": str(user_id), field: {"$gte": count}},
                {"$inc": {field: -count}},
            )
            if result.matched_count:
                return
            result = await self.collection.update_one(
                {"_id": oid, "participants": str(user_id), field: {"$lt": count}},
                {"$set": {field: 0}},
            )
            if result.matched_count:
                return
        logger.warning("Unread counter for %s on %s not released", user_id, conversation_id)

    async def decrement_unread(self, conversation_id, user_id: str) -> bool:
        result = await self.collection.update_one(
            {
                "_id": to_object_id(conversation_id, "conversation_id"),
                f"unread_counters.{user_id}": {"$gt": 0},
            },
            {"$inc": {f"unread_counters.{user_id}": -1}},
        )
        return bool(result.modified_count)

    async def repoint_last_message(self, conversation_id, removed_message_id, replacement_id=None) -> bool:
        """Move the last-message pointer off a removed message, if it pointed there."""
        result = await self.collection.update_one(
            {
                "_id": to_object_id(conversation_id, "conversation_id"),
                "last_message_id": to_object_id(removed_message_id, "message_id"),
            },
            {"$set": {"last_message_id": to_object_id(replacement_id, "message_id") if replacement_id else None}},
        )
        return bool(result.modified_count)

    @staticmethod
    def other_participant(conversation: Conversation, user_id: str) -> str:
        other = conversation.other_participant(user_id)
        if other is None:
            raise AuthorizationError("Not a participant of this conversation")
        return other

    async def delete(self, conversation_id, requester_id: str) -> Conversation:
        conversation = await self.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if not conversation.has_participant(requester_id):
            raise AuthorizationError("Not authorized to delete this conversation")
        # messages first: a failure here leaves the conversation in place to retry
        await self._messages.delete_all_for_conversation(conversation.id)
        await self.collection.delete_one({"_id": to_object_id(conversation.id)})
        return conversation
