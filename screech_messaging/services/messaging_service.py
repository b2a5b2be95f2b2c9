"""Private messaging: one logical operation per request.

Each operation does its durable writes first (Message Store, Conversation
Registry), then the best-effort side effects (Coordinator pushes, outward
notification). Side effects never fail or roll back the durable part.

Per-message states are ``sent -> delivered -> read``; only ``read`` is
persisted, ``delivered`` is an ephemeral push to the sender.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from pymongo.errors import PyMongoError

from screech_messaging.core.config import Settings
from screech_messaging.core.errors import MessagingError, NotFoundError, TransientError
from screech_messaging.models.conversation import Conversation
from screech_messaging.models.message import Message
from screech_messaging.repositories.conversation_repository import ConversationRepository
from screech_messaging.repositories.message_repository import MessageRepository
from screech_messaging.repositories.user_repository import UserRepository
from screech_messaging.schemas.messaging import (
    ConversationPage,
    ConversationSummary,
    OpenedConversation,
)
from screech_messaging.schemas.user import DisplayInfo
from screech_messaging.utils.pagination import page_count
from screech_messaging.utils.websocket_manager import DeliveryCoordinator


logger = logging.getLogger(__name__)

MESSAGE_RECEIVED = "message:received"
MESSAGE_DELIVERED = "message:delivered"
MESSAGE_READ = "message:read"
MESSAGE_TYPING = "message:typing"


class UserDirectory(Protocol):

    async def exists(self, user_id: str) -> bool: ...

    async def display_info(self, user_id: str) -> Optional[DisplayInfo]: ...

    async def display_info_many(self, user_ids) -> Dict[str, DisplayInfo]: ...


class Notifier(Protocol):

    async def notify_new_message(self, recipient_id: str, sender_id: str, sender_display_name: Optional[str]) -> None: ...


class MessagingService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        users: UserDirectory,
        coordinator: DeliveryCoordinator,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._users = users
        self._coordinator = coordinator
        self._notifier = notifier
        self._settings = settings or Settings()
        self._background: Set[asyncio.Task] = set()

    @classmethod
    def from_database(
        cls,
        db,
        coordinator: DeliveryCoordinator,
        settings: Settings,
        notifier: Optional[Notifier] = None,
    ) -> "MessagingService":
        message_repo = MessageRepository(db, max_length=settings.message_max_length, max_page_size=settings.max_page_size)
        conversation_repo = ConversationRepository(
            db, message_repo, retries=settings.get_or_create_retries, max_page_size=settings.max_page_size
        )
        return cls(message_repo, conversation_repo, UserRepository(db), coordinator, notifier, settings)

    async def ensure_indexes(self) -> None:
        await self._message_repo.ensure_indexes()
        await self._conversation_repo.ensure_indexes()

    async def _durable(self, awaitable):
        """Await a storage call, mapping timeouts and driver errors to ``TransientError``."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._settings.write_timeout)
        except asyncio.TimeoutError:
            logger.error("Storage call timed out after %.1fs", self._settings.write_timeout)
            raise TransientError("Storage operation timed out") from None
        except PyMongoError as exc:
            logger.error("Storage call failed: %s", exc)
            raise TransientError("Storage unavailable") from exc

    async def _authorized(self, user_id: str, conversation_id: str) -> Conversation:
        conversation = await self._durable(self._conversation_repo.get(conversation_id))
        if conversation is None:
            raise NotFoundError("Conversation not found")
        # raises AuthorizationError for non-participants
        self._conversation_repo.other_participant(conversation, user_id)
        return conversation

    async def display_info(self, user_id: str) -> Optional[DisplayInfo]:
        # decoration only; a failed lookup must not fail an already-persisted write
        try:
            return await self._durable(self._users.display_info(user_id))
        except TransientError:
            return None

    # sending

    async def send(self, sender_id: str, recipient_id: str, content: str) -> Message:
        content = self._message_repo.validate(sender_id, recipient_id, content)
        if not await self._durable(self._users.exists(recipient_id)):
            raise NotFoundError("Recipient not found")

        conversation = await self._durable(self._conversation_repo.get_or_create(sender_id, recipient_id))
        message = await self._durable(
            self._message_repo.append(conversation.id, sender_id, recipient_id, content)
        )
        try:
            await self._durable(
                self._conversation_repo.record_new_message(conversation.id, message.id, recipient_id, message.created_at)
            )
        except MessagingError:
            await self._discard(message)
            raise
        logger.info("Message sent from %s to %s (%s)", sender_id, recipient_id, message.id)

        sender = await self.display_info(sender_id)
        delivered = await self._coordinator.push(
            recipient_id,
            MESSAGE_RECEIVED,
            {
                "message": message.model_dump(mode="json"),
                "conversationId": conversation.id,
                "from": {
                    "id": sender_id,
                    "username": sender.username if sender else None,
                    "avatarColor": sender.avatar_color if sender else None,
                },
            },
        )
        if delivered:
            await self._coordinator.push(
                sender_id, MESSAGE_DELIVERED, {"messageId": message.id, "conversationId": conversation.id}
            )
        self._notify_in_background(recipient_id, sender_id, sender.username if sender else None)
        return message

    async def _discard(self, message: Message) -> None:
        logger.warning("Conversation update failed; discarding message %s", message.id)
        try:
            await self._durable(self._message_repo.discard(message.id))
        except TransientError:
            logger.error("Could not discard message %s after a failed send", message.id)

    def _notify_in_background(self, recipient_id: str, sender_id: str, sender_name: Optional[str]) -> None:
        if self._notifier is None:
            return
        task = asyncio.create_task(self._notify(recipient_id, sender_id, sender_name))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _notify(self, recipient_id: str, sender_id: str, sender_name: Optional[str]) -> None:
        try:
            await self._notifier.notify_new_message(recipient_id, sender_id, sender_name)
        except Exception as exc:
            logger.warning("Message notification for %s failed: %s", recipient_id, exc)

    async def drain_side_effects(self) -> None:
        """Wait for pending notifications, e.g. on shutdown."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # reading

    async def _summarize(
        self,
        conversation: Conversation,
        user_id: str,
        users: Optional[Dict[str, DisplayInfo]] = None,
        last_messages: Optional[Dict[str, Message]] = None,
    ) -> ConversationSummary:
        other = self._conversation_repo.other_participant(conversation, user_id)
        if users is None:
            info = await self.display_info(other)
        else:
            info = users.get(other)
        if last_messages is None and conversation.last_message_id:
            last_message = await self._durable(self._message_repo.get(conversation.last_message_id))
        else:
            last_message = (last_messages or {}).get(conversation.last_message_id)
        return ConversationSummary(
            conversation=conversation,
            other_participant=other,
            other_user=info,
            my_unread_count=conversation.unread_for(user_id),
            last_message=last_message,
        )

    async def list_conversations(self, user_id: str, page: int = 1, page_size: Optional[int] = None) -> ConversationPage:
        conversations, total, page, limit = await self._durable(
            self._conversation_repo.list_for_user(user_id, page, page_size or self._settings.conversations_page_size)
        )
        others = [self._conversation_repo.other_participant(c, user_id) for c in conversations]
        users = await self._durable(self._users.display_info_many(others))
        last_messages = await self._durable(
            self._message_repo.get_many(c.last_message_id for c in conversations if c.last_message_id)
        )
        summaries = [await self._summarize(c, user_id, users, last_messages) for c in conversations]
        return ConversationPage(
            conversations=summaries,
            total=total,
            page=page,
            pages=page_count(total, limit),
            has_more=(page - 1) * limit + len(conversations) < total,
        )

    async def get_or_create_conversation(self, user_id: str, other_user_id: str) -> ConversationSummary:
        if str(user_id) != str(other_user_id) and not await self._durable(self._users.exists(other_user_id)):
            raise NotFoundError("User not found")
        conversation = await self._durable(self._conversation_repo.get_or_create(user_id, other_user_id))
        return await self._summarize(conversation, user_id)

    async def open_conversation(
        self, user_id: str, conversation_id: str, page: int = 1, page_size: Optional[int] = None
    ) -> OpenedConversation:
        conversation = await self._authorized(user_id, conversation_id)
        messages = await self._durable(
            self._message_repo.page(conversation.id, page, page_size or self._settings.messages_page_size)
        )
        conversation = await self._mark_read(conversation, user_id)
        return OpenedConversation(conversation=await self._summarize(conversation, user_id), messages=messages)

    async def mark_read(self, user_id: str, conversation_id: str) -> None:
        conversation = await self._authorized(user_id, conversation_id)
        await self._mark_read(conversation, user_id)

    async def _mark_read(self, conversation: Conversation, user_id: str) -> Conversation:
        # acknowledge only what the conversation had recorded when it was loaded
        if conversation.last_message_id:
            marked = await self._durable(
                self._message_repo.mark_conversation_read(conversation.id, user_id, up_to=conversation.last_message_id)
            )
            await self._durable(self._conversation_repo.release_unread(conversation.id, user_id, marked))
        other = self._conversation_repo.other_participant(conversation, user_id)
        await self._coordinator.push(other, MESSAGE_READ, {"conversationId": conversation.id, "readBy": user_id})
        refreshed = await self._durable(self._conversation_repo.get(conversation.id))
        return refreshed or conversation

    async def unread_count(self, user_id: str) -> int:
        return await self._durable(self._message_repo.unread_count_for(user_id))

    # deleting

    async def delete_message(self, user_id: str, message_id: str) -> None:
        message = await self._durable(self._message_repo.delete(message_id, user_id))
        logger.info("Message %s deleted by %s", message.id, user_id)
        try:
            if not message.read:
                await self._durable(
                    self._conversation_repo.decrement_unread(message.conversation_id, message.recipient_id)
                )
            latest = await self._durable(self._message_repo.latest_for_conversation(message.conversation_id))
            await self._durable(
                self._conversation_repo.repoint_last_message(
                    message.conversation_id, message.id, latest.id if latest else None
                )
            )
        except TransientError:
            # counters are reset on the next open anyway
            logger.warning("Conversation rollup not adjusted after deleting message %s", message.id)

    async def delete_conversation(self, user_id: str, conversation_id: str) -> None:
        conversation = await self._durable(self._conversation_repo.delete(conversation_id, user_id))
        logger.info("Conversation %s deleted by %s", conversation.id, user_id)

    # ephemeral

    async def typing_indicator(
        self,
        from_user_id: str,
        to_user_id: Optional[str],
        conversation_id: str,
        is_typing: bool,
        username: Optional[str] = None,
    ) -> bool:
        """Relay a typing event to the other participant; returns whether it was pushed."""
        try:
            conversation = await self._authorized(from_user_id, conversation_id)
        except MessagingError as exc:
            logger.debug("Typing indicator from %s dropped: %s", from_user_id, exc.message)
            return False
        other = self._conversation_repo.other_participant(conversation, from_user_id)
        if to_user_id is not None and str(to_user_id) != other:
            logger.debug("Typing indicator from %s to non-participant %s dropped", from_user_id, to_user_id)
            return False
        to_user_id = other
        payload: Dict[str, Any] = {
            "conversationId": conversation.id,
            "userId": from_user_id,
            "username": username,
            "isTyping": bool(is_typing),
        }
        try:
            return await self._coordinator.push(to_user_id, MESSAGE_TYPING, payload)
        except Exception as exc:
            logger.warning("Typing indicator to %s dropped: %s", to_user_id, exc)
            return False
