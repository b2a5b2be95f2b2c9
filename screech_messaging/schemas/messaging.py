from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from screech_messaging.models.conversation import Conversation
from screech_messaging.models.message import Message
from screech_messaging.schemas.user import DisplayInfo


class SendMessageRequest(BaseModel):

    recipient_id: str
    content: str


class SentMessage(BaseModel):

    message: Message
    conversation_id: str


class MessagePage(BaseModel):
    """One window of a conversation, oldest to newest; page 1 is the latest window."""

    messages: List[Message]
    total: int
    page: int
    pages: int
    has_more: bool


class ConversationSummary(BaseModel):

    conversation: Conversation
    other_participant: str
    other_user: Optional[DisplayInfo] = None
    my_unread_count: int = 0
    last_message: Optional[Message] = None


class ConversationPage(BaseModel):

    conversations: List[ConversationSummary]
    total: int
    page: int
    pages: int
    has_more: bool


class OpenedConversation(BaseModel):

    conversation: ConversationSummary
    messages: MessagePage


class UnreadCount(BaseModel):

    unread_count: int


class DeviceRegistration(BaseModel):

    platform: Literal["fcm", "webpush"]
    token: str = Field(min_length=1)
