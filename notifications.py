# notifications.py
"""
Real-time fan-out.

A process-wide registry keeps the live connections of each user. Publishing
never blocks and never raises into the caller: a user with no connection
simply misses the event, and the next call to get_notification_counts is the
source of truth. Counts are always recomputed from the messages and meetings
collections; nothing about notifications is stored.
"""
import asyncio
import logging
import threading
from collections import defaultdict
from typing import Dict, Set

from bson import ObjectId

from models import MeetingStatus, NotificationCounts, NotificationUpdateEvent, RealtimeEvent

logger = logging.getLogger(__name__)


class QueueConnection:
    """
    A live client connection as seen by the registry.

    `send` may be called from any thread (request handlers run in a worker
    pool); frames are handed to the owning event loop, where the socket task
    drains `queue`.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop = None):
        self.loop = loop or asyncio.get_running_loop()
        self.queue: asyncio.Queue = asyncio.Queue()

    def send(self, frame: dict) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, frame)

    async def next_frame(self) -> dict:
        return await self.queue.get()


class ConnectionRegistry:
    def __init__(self):
        self._rooms: Dict[str, Set] = defaultdict(set)
        self._lock = threading.Lock()

    def subscribe(self, user_id: str, connection) -> None:
        with self._lock:
            self._rooms[str(user_id)].add(connection)
        logger.debug("Connection joined room user_%s", user_id)

    def unsubscribe(self, user_id: str, connection) -> None:
        with self._lock:
            room = self._rooms.get(str(user_id))
            if room is None:
                return
            room.discard(connection)
            if not room:
                del self._rooms[str(user_id)]
        logger.debug("Connection left room user_%s", user_id)

    def connection_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(str(user_id), ()))

    def publish(self, user_id: str, frame: dict) -> int:
        """Send `frame` to every connection of `user_id`. Returns the number delivered."""
        with self._lock:
            connections = list(self._rooms.get(str(user_id), ()))
        delivered = 0
        for connection in connections:
            try:
                connection.send(frame)
                delivered += 1
            except Exception:
                logger.warning("Dropping %s event for user %s", frame.get("event"), user_id, exc_info=True)
        return delivered

    def clear(self) -> None:
        with self._lock:
            self._rooms.clear()


registry = ConnectionRegistry()


def count_unread_messages(db, user_id) -> int:
    return db.messages.count_documents({"receiver": ObjectId(str(user_id)), "read": False})


def count_pending_meetings(db, user_id) -> int:
    return db.meetings.count_documents({
        "participant": ObjectId(str(user_id)),
        "status": MeetingStatus.PENDING.value,
    })


def get_notification_counts(db, user_id) -> NotificationCounts:
    return NotificationCounts(
        messages=count_unread_messages(db, user_id),
        meetings=count_pending_meetings(db, user_id),
    )


class Notifier:
    """Fire-and-forget delivery of events to a user's live connections."""

    def __init__(self, db, connections: ConnectionRegistry = None):
        self.db = db
        self.connections = connections if connections is not None else registry

    def notify(self, user_id, event: RealtimeEvent) -> int:
        try:
            return self.connections.publish(str(user_id), event.to_frame())
        except Exception:
            logger.warning("Failed to deliver %s to user %s", event.event, user_id, exc_info=True)
            return 0

    def counts(self, user_id) -> NotificationCounts:
        return get_notification_counts(self.db, user_id)

    def push_message_count(self, user_id) -> None:
        try:
            count = count_unread_messages(self.db, user_id)
        except Exception:
            logger.warning("Could not recompute unread messages for user %s", user_id, exc_info=True)
            return
        self.notify(user_id, NotificationUpdateEvent(type="messages", count=count))

    def push_meeting_count(self, user_id) -> None:
        try:
            count = count_pending_meetings(self.db, user_id)
        except Exception:
            logger.warning("Could not recompute pending meetings for user %s", user_id, exc_info=True)
            return
        self.notify(user_id, NotificationUpdateEvent(type="meetings", count=count))
