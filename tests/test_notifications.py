"""
Connection registry, fire-and-forget delivery and recomputed counts.
"""

import asyncio
from datetime import timedelta


from chat import mark_read, send_message
from database import utcnow
from meetings import create_meeting, decline_meeting
from models import NotificationUpdateEvent
from notifications import ConnectionRegistry, Notifier, QueueConnection, get_notification_counts

from conftest import RecordingConnection


class TestConnectionRegistry:

    def test_publish_reaches_every_connection_of_user(self):
        registry = ConnectionRegistry()
        phone, laptop, other = RecordingConnection(), RecordingConnection(), RecordingConnection()
        registry.subscribe("u1", phone)
        registry.subscribe("u1", laptop)
        registry.subscribe("u2", other)

        assert registry.publish("u1", {"event": "ping", "data": {}}) == 2
        assert phone.frames == laptop.frames == [{"event": "ping", "data": {}}]
        assert other.frames == []

    def test_unsubscribe(self):
        registry = ConnectionRegistry()
        conn = RecordingConnection()
        registry.subscribe("u1", conn)
        registry.unsubscribe("u1", conn)

        assert registry.connection_count("u1") == 0
        assert registry.publish("u1", {"event": "ping", "data": {}}) == 0
        # unknown user/connection is a no-op
        registry.unsubscribe("u1", conn)

    def test_failing_connection_does_not_stop_others(self):
        registry = ConnectionRegistry()

        class Broken:
            def send(self, frame):
                raise ConnectionError("gone")

        healthy = RecordingConnection()
        registry.subscribe("u1", Broken())
        registry.subscribe("u1", healthy)

        assert registry.publish("u1", {"event": "ping", "data": {}}) == 1
        assert len(healthy.frames) == 1


class TestQueueConnection:

    def test_frames_sent_from_another_thread_reach_the_loop(self):
        async def scenario():
            connection = QueueConnection()
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, connection.send, {"event": "ping", "data": {}})
            return await asyncio.wait_for(connection.next_frame(), timeout=1)

        assert asyncio.run(scenario()) == {"event": "ping", "data": {}}


class TestNotifier:

    def test_notify_without_connection_is_dropped(self, notifier, make_user):
        user = make_user("Ann")
        assert notifier.notify(user["_id"], NotificationUpdateEvent(type="messages", count=3)) == 0

    def test_frame_shape(self, notifier, make_user, listen):
        user = make_user("Ann")
        conn = listen(user)
        notifier.notify(user["_id"], NotificationUpdateEvent(type="meetings", count=2))
        assert conn.frames == [{"event": "notification_update", "data": {"type": "meetings", "count": 2}}]

    def test_count_query_failure_is_swallowed(self, make_user, connections, listen):
        user = make_user("Ann")
        conn = listen(user)

        class BrokenDb:
            def __getattr__(self, name):
                raise RuntimeError("database unavailable")

        Notifier(BrokenDb(), connections).push_message_count(user["_id"])
        Notifier(BrokenDb(), connections).push_meeting_count(user["_id"])
        assert conn.frames == []


class TestNotificationCounts:

    def test_counts_start_at_zero(self, db, make_user):
        user = make_user("Ann")
        counts = get_notification_counts(db, user["_id"])
        assert (counts.messages, counts.meetings) == (0, 0)

    def test_messages_drop_to_zero_after_reading(self, db, matched_pair, notifier):
        alice, bob = matched_pair
        send_message(db, alice["_id"], bob["_id"], "one")
        send_message(db, alice["_id"], bob["_id"], "two")
        assert notifier.counts(bob["_id"]).messages == 2
        assert notifier.counts(alice["_id"]).messages == 0

        mark_read(db, bob["_id"], alice["_id"])

        assert notifier.counts(bob["_id"]).messages == 0

    def test_meetings_drop_to_zero_after_declining(self, db, matched_pair, notifier):
        alice, bob = matched_pair
        meeting = create_meeting(db, alice["_id"], bob["_id"], "Lesson", "JavaScript", "Python",
                                 scheduled_date=utcnow() + timedelta(days=1))
        assert notifier.counts(bob["_id"]).meetings == 1
        # only the participant counts a pending request
        assert notifier.counts(alice["_id"]).meetings == 0

        decline_meeting(db, meeting.id, bob["_id"])

        assert notifier.counts(bob["_id"]).meetings == 0
