from datetime import datetime
from typing import Any, Dict, Optional, TypedDict

from bson import ObjectId
from pydantic import BaseModel

from screech_messaging.utils.ids import as_utc


class MessageDocument(TypedDict, total=False):
    _id: ObjectId
    conversation_id: ObjectId
    sender_id: str
    recipient_id: str
    content: str
    created_at: datetime
    # read state, the only mutable part of a message
    read: bool
    read_at: Optional[datetime]


class Message(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    recipient_id: str
    content: str
    created_at: datetime
    read: bool = False
    read_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Message":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=doc["sender_id"],
            recipient_id=doc["recipient_id"],
            content=doc["content"],
            created_at=as_utc(doc["created_at"]),
            read=bool(doc.get("read", False)),
            read_at=as_utc(doc.get("read_at")),
        )
