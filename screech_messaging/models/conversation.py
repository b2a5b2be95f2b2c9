from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, TypedDict

from bson import ObjectId
from pydantic import BaseModel, Field

from screech_messaging.utils.ids import as_utc


class ConversationDocument(TypedDict, total=False):
    _id: ObjectId
    # sorted pair, pair_key is "a:b" and carries the unique index
    participants: List[str]
    pair_key: str
    last_message_id: Optional[ObjectId]
    last_message_at: datetime
    # per-user unread counters (user_id -> count)
    unread_counters: Dict[str, int]
    created_at: datetime


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    first, second = sorted([str(user_a), str(user_b)])
    return first, second


def pair_key(user_a: str, user_b: str) -> str:
    return ":".join(canonical_pair(user_a, user_b))


class Conversation(BaseModel):

    id: str
    participants: Tuple[str, str]
    last_message_id: Optional[str] = None
    last_message_at: datetime
    unread_counts: Dict[str, int] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Conversation":
        participants = canonical_pair(*doc["participants"])
        counters = doc.get("unread_counters") or {}
        last_message_id = doc.get("last_message_id")
        return cls(
            id=str(doc["_id"]),
            participants=participants,
            last_message_id=str(last_message_id) if last_message_id else None,
            last_message_at=as_utc(doc["last_message_at"]),
            unread_counts={p: max(0, int(counters.get(p, 0))) for p in participants},
            created_at=as_utc(doc.get("created_at")),
        )

    def has_participant(self, user_id: str) -> bool:
        return str(user_id) in self.participants

    def other_participant(self, user_id: str) -> Optional[str]:
        if not self.has_participant(user_id):
            return None
        first, second = self.participants
        return second if first == str(user_id) else first

    def unread_for(self, user_id: str) -> int:
        return self.unread_counts.get(str(user_id), 0)
