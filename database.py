# database.py
import logging
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import MONGO_URI, MONGO_DB_NAME
from errors import ValidationError

logger = logging.getLogger(__name__)

client = MongoClient(MONGO_URI, tz_aware=False, connect=False)
db = client[MONGO_DB_NAME]


def get_db():
    """FastAPI dependency. Overridden in tests with an in-memory database."""
    return db


def utcnow() -> datetime:
    """Naive UTC timestamp, the form pymongo hands back from the server."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {field}: {value}")


def ensure_indexes(database) -> None:
    database.users.create_index([("email", ASCENDING)], unique=True)
    database.messages.create_index([("sender", ASCENDING), ("receiver", ASCENDING), ("createdAt", DESCENDING)])
    database.messages.create_index([("receiver", ASCENDING), ("read", ASCENDING)])
    database.meetings.create_index([("initiator", ASCENDING), ("participant", ASCENDING), ("scheduledDate", ASCENDING)])
    database.meetings.create_index([("status", ASCENDING), ("scheduledDate", ASCENDING)])
    logger.info("Indexes ensured on database %s", database.name)
