# chat.py
import logging
from typing import Dict, List

from bson import ObjectId

from config import CONVERSATION_LIMIT
from database import to_object_id, utcnow
from errors import ValidationError
from matches import require_match
from models import MessageOut, MessagePreview, MessageType, NewMessageEvent, PartyRef
from notifications import Notifier

logger = logging.getLogger(__name__)


def message_out(doc: dict) -> MessageOut:
    return MessageOut(
        id=str(doc["_id"]),
        sender=str(doc["sender"]),
        receiver=str(doc["receiver"]),
        content=doc["content"],
        messageType=doc.get("messageType", MessageType.TEXT.value),
        read=doc.get("read", False),
        createdAt=doc["createdAt"],
    )


def send_message(db, sender_id, receiver_id, content: str,
                 message_type: str = MessageType.TEXT.value, notifier: Notifier = None) -> MessageOut:
    """Persist a message between two matched users and push it to the receiver."""
    try:
        message_type = MessageType(message_type)
    except ValueError:
        raise ValidationError("messageType must be one of text, meeting_request, skill_offer")
    content = (content or "").strip()
    if not content:
        raise ValidationError("Message content is required")

    sender, receiver = require_match(db, sender_id, receiver_id, "You can only message matched users")

    now = utcnow()
    doc = {
        "_id": ObjectId(),
        "sender": sender["_id"],
        "receiver": receiver["_id"],
        "content": content,
        "messageType": message_type.value,
        "read": False,
        "createdAt": now,
        "updatedAt": now,
    }
    db.messages.insert_one(doc)
    message = message_out(doc)

    if notifier is not None:
        notifier.notify(receiver["_id"], NewMessageEvent(message=MessagePreview(
            id=message.id,
            content=message.content,
            messageType=message.messageType,
            sender=PartyRef(id=str(sender["_id"]), name=sender.get("name", "")),
            receiver=message.receiver,
            createdAt=message.createdAt,
        )))
        notifier.push_message_count(receiver["_id"])
    return message


def get_conversation(db, user_id, other_id, limit: int = CONVERSATION_LIMIT) -> List[MessageOut]:
    """The `limit` most recent messages between two matched users, oldest first."""
    me, other = require_match(db, user_id, other_id, "You can only view conversations with matched users")
    query = {
        "$or": [
            {"sender": me["_id"], "receiver": other["_id"]},
            {"sender": other["_id"], "receiver": me["_id"]},
        ]
    }
    cursor = db.messages.find(query).sort([("createdAt", -1), ("_id", -1)]).limit(limit)
    return [message_out(doc) for doc in reversed(list(cursor))]


def mark_read(db, receiver_id, sender_id, notifier: Notifier = None) -> int:
    """Mark everything `sender_id` sent to `receiver_id` as read. Returns the number updated."""
    receiver = to_object_id(receiver_id, "user id")
    sender = to_object_id(sender_id, "sender id")
    result = db.messages.update_many(
        {"sender": sender, "receiver": receiver, "read": False},
        {"$set": {"read": True, "updatedAt": utcnow()}},
    )
    if notifier is not None:
        notifier.push_message_count(receiver)
    return result.modified_count


def mark_all_read(db, receiver_id, partner_id=None, notifier: Notifier = None) -> int:
    """Mark one conversation (if `partner_id` is given) or every unread message as read."""
    if partner_id:
        return mark_read(db, receiver_id, partner_id, notifier)
    receiver = to_object_id(receiver_id, "user id")
    result = db.messages.update_many(
        {"receiver": receiver, "read": False},
        {"$set": {"read": True, "updatedAt": utcnow()}},
    )
    if notifier is not None:
        notifier.push_message_count(receiver)
    return result.modified_count


def get_unread_counts(db, receiver_id) -> Dict[str, int]:
    receiver = to_object_id(receiver_id, "user id")
    pipeline = [
        {"$match": {"receiver": receiver, "read": False}},
        {"$group": {"_id": "$sender", "count": {"$sum": 1}}},
    ]
    rows = db.messages.aggregate(pipeline)
    return dict(sorted((str(row["_id"]), row["count"]) for row in rows))
