from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId

from screech_messaging.core.errors import ValidationError


def to_object_id(value, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value:
        raise ValidationError(f"{label} is required")
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}: {value}") from None


def as_utc(value: datetime | None) -> datetime | None:
    # Mongo hands back naive datetimes unless the client is tz_aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
