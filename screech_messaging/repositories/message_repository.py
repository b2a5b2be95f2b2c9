from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from screech_messaging.core.errors import AuthorizationError, NotFoundError, ValidationError
from screech_messaging.models.message import Message
from screech_messaging.schemas.messaging import MessagePage
from screech_messaging.utils.ids import to_object_id
from screech_messaging.utils.pagination import page_count, paginate


MESSAGE_MAX_LENGTH = 1000
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class MessageRepository:
    """Append-only store of messages, scoped to a conversation."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        max_length: int = MESSAGE_MAX_LENGTH,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._db = db
        self._max_length = max_length
        self._max_page_size = max_page_size

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("recipient_id", ASCENDING), ("read", ASCENDING)])
        await self.collection.create_index([("sender_id", ASCENDING), ("recipient_id", ASCENDING)])

    def validate(self, sender_id: str, recipient_id: str, content: Optional[str]) -> str:
        """Return the trimmed content or raise ``ValidationError``."""
        if not sender_id or not recipient_id:
            raise ValidationError("sender_id and recipient_id are required")
        if str(sender_id) == str(recipient_id):
            raise ValidationError("You cannot message yourself")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content cannot be empty or whitespace")
        content = content.strip()
        if len(content) > self._max_length:
            raise ValidationError(f"Message cannot exceed {self._max_length} characters")
        return content

    async def append(self, conversation_id, sender_id: str, recipient_id: str, content: str) -> Message:
        content = self.validate(sender_id, recipient_id, content)
        doc: Dict[str, Any] = {
            "conversation_id": to_object_id(conversation_id, "conversation_id"),
            "sender_id": str(sender_id),
            "recipient_id": str(recipient_id),
            "content": content,
            "created_at": datetime.now(timezone.utc),
            "read": False,
            "read_at": None,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return Message.from_document(doc)

    async def page(self, conversation_id, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> MessagePage:
        page, limit, skip = paginate(page, page_size, DEFAULT_PAGE_SIZE, self._max_page_size)
        query = {"conversation_id": to_object_id(conversation_id, "conversation_id")}
        # newest first so that page 1 is the most recent window
        cursor = self.collection.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).skip(skip).limit(limit)
        items = await cursor.to_list(length=limit)
        total = await self.collection.count_documents(query)
        messages = [Message.from_document(doc) for doc in reversed(items)]
        return MessagePage(
            messages=messages,
            total=total,
            page=page,
            pages=page_count(total, limit),
            has_more=skip + len(items) < total,
        )

    async def get(self, message_id) -> Optional[Message]:
        doc = await self.collection.find_one({"_id": to_object_id(message_id, "message_id")})
        return Message.from_document(doc) if doc else None

    async def get_many(self, message_ids: Iterable[str]) -> Dict[str, Message]:
        oids = [to_object_id(mid, "message_id") for mid in message_ids if mid]
        if not oids:
            return {}
        cursor = self.collection.find({"_id": {"$in": oids}})
        items = await cursor.to_list(length=len(oids))
        return {str(doc["_id"]): Message.from_document(doc) for doc in items}

    async def latest_for_conversation(self, conversation_id) -> Optional[Message]:
        cursor = (
            self.collection.find({"conversation_id": to_object_id(conversation_id, "conversation_id")})
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .limit(1)
        )
        items: List[Dict[str, Any]] = await cursor.to_list(length=1)
        return Message.from_document(items[0]) if items else None

    async def mark_conversation_read(self, conversation_id, reader_id: str, up_to=None) -> int:
        """Mark messages to ``reader_id`` as read, optionally only those with ``_id <= up_to``.

        Returns how many messages changed state.
        """
        query: Dict[str, Any] = {
            "conversation_id": to_object_id(conversation_id, "conversation_id"),
            "recipient_id": str(reader_id),
            "read": False,
        }
        if up_to is not None:
            query["_id"] = {"$lte": to_object_id(up_to, "message_id")}
        result = await self.collection.update_many(
            query,
            {"$set": {"read": True, "read_at": datetime.now(timezone.utc)}},
        )
        return result.modified_count or 0

    async def unread_count_for(self, user_id: str) -> int:
        return await self.collection.count_documents({"recipient_id": str(user_id), "read": False})

    async def delete(self, message_id, requester_id: str) -> Message:
        message = await self.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.sender_id != str(requester_id):
            raise AuthorizationError("Not authorized to delete this message")
        await self.collection.delete_one({"_id": ObjectId(message.id)})
        return message

    async def discard(self, message_id) -> bool:
        """Remove a message unconditionally; used to undo a half-finished send."""
        result = await self.collection.delete_one({"_id": to_object_id(message_id, "message_id")})
        return bool(result.deleted_count)

    async def delete_all_for_conversation(self, conversation_id) -> int:
        result = await self.collection.delete_many({"conversation_id": to_object_id(conversation_id, "conversation_id")})
        return result.deleted_count or 0
