"""
Meeting scheduler: creation rules, the status state machine and listings.
"""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from database import utcnow
from errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from meetings import (
    accept_meeting,
    cancel_meeting,
    complete_meeting,
    create_meeting,
    decline_meeting,
    list_my_meetings,
)


def schedule(db, initiator, participant, days=1, **kwargs):
    kwargs.setdefault("title", "Python basics")
    kwargs.setdefault("skill_to_teach", "JavaScript")
    kwargs.setdefault("skill_to_learn", "Python")
    return create_meeting(
        db, initiator["_id"], participant["_id"],
        scheduled_date=utcnow() + timedelta(days=days), **kwargs,
    )


class TestCreateMeeting:

    def test_creates_pending_meeting_with_defaults(self, db, matched_pair):
        alice, bob = matched_pair

        meeting = schedule(db, alice, bob)

        assert meeting.status.value == "pending"
        assert meeting.initiator == str(alice["_id"])
        assert meeting.participant == str(bob["_id"])
        assert meeting.duration == 60
        assert meeting.meetingType.value == "video_call"

    def test_past_date_rejected(self, db, matched_pair):
        alice, bob = matched_pair
        with pytest.raises(ValidationError):
            schedule(db, alice, bob, days=-1)
        assert db.meetings.count_documents({}) == 0

    def test_date_equal_to_now_rejected(self, db, matched_pair):
        alice, bob = matched_pair
        now = datetime(2030, 1, 1, 12, 0, 0)
        with pytest.raises(ValidationError):
            create_meeting(db, alice["_id"], bob["_id"], "Now", "JavaScript", "Python",
                           scheduled_date=now, now=now)

    def test_aware_datetimes_are_compared_in_utc(self, db, matched_pair):
        alice, bob = matched_pair
        now = datetime(2030, 1, 1, 12, 0, 0)
        # 13:30 at UTC+2 is 11:30 UTC, before `now`
        earlier = datetime(2030, 1, 1, 13, 30, tzinfo=timezone(timedelta(hours=2)))
        with pytest.raises(ValidationError):
            create_meeting(db, alice["_id"], bob["_id"], "Tz", "JavaScript", "Python",
                           scheduled_date=earlier, now=now)

    def test_unmatched_users_forbidden(self, db, make_user):
        a, b = make_user("Ann"), make_user("Ben")
        with pytest.raises(ForbiddenError):
            schedule(db, a, b)

    def test_unknown_participant(self, db, make_user):
        a = make_user("Ann")
        with pytest.raises(NotFoundError):
            schedule(db, a, {"_id": ObjectId()})

    def test_unknown_meeting_type(self, db, matched_pair):
        alice, bob = matched_pair
        with pytest.raises(ValidationError):
            schedule(db, alice, bob, meeting_type="carrier_pigeon")

    def test_missing_title(self, db, matched_pair):
        alice, bob = matched_pair
        with pytest.raises(ValidationError):
            schedule(db, alice, bob, title="  ")

    def test_participant_is_notified(self, db, matched_pair, notifier, listen):
        alice, bob = matched_pair
        bob_conn = listen(bob)

        meeting = schedule(db, alice, bob, notifier=notifier)

        request = bob_conn.events("meeting_request")[0]["data"]["meeting"]
        assert request["id"] == meeting.id
        assert request["initiator"] == {"id": str(alice["_id"]), "name": "Alice"}
        assert bob_conn.events("notification_update")[0]["data"] == {"type": "meetings", "count": 1}


class TestTransitions:

    def test_participant_accepts(self, db, matched_pair, notifier, listen):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)
        alice_conn = listen(alice)

        accepted = accept_meeting(db, meeting.id, bob["_id"], notifier=notifier)

        assert accepted.status.value == "accepted"
        assert alice_conn.events("meeting_accepted")[0]["data"]["meeting"]["id"] == meeting.id

    def test_initiator_cannot_accept_pending_meeting(self, db, matched_pair):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)
        with pytest.raises(ForbiddenError):
            accept_meeting(db, meeting.id, alice["_id"])

    def test_initiator_cannot_decline(self, db, matched_pair):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)
        with pytest.raises(ForbiddenError):
            decline_meeting(db, meeting.id, alice["_id"])

    def test_accept_twice_is_invalid(self, db, matched_pair):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)
        accept_meeting(db, meeting.id, bob["_id"])
        with pytest.raises(InvalidStateError):
            accept_meeting(db, meeting.id, bob["_id"])

    def test_decline_notifies_initiator(self, db, matched_pair, notifier, listen):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)
        alice_conn, bob_conn = listen(alice), listen(bob)

        declined = decline_meeting(db, meeting.id, bob["_id"], notifier=notifier)

        assert declined.status.value == "declined"
        assert alice_conn.events("meeting_declined")[0]["data"]["meeting"] == {"id": meeting.id, "title": "Python basics"}
        assert bob_conn.events("notification_update")[-1]["data"] == {"type": "meetings", "count": 0}

    def test_declined_meeting_is_terminal(self, db, matched_pair):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)
        decline_meeting(db, meeting.id, bob["_id"])
        for transition in (accept_meeting, decline_meeting, cancel_meeting):
            with pytest.raises(InvalidStateError):
                transition(db, meeting.id, bob["_id"])
        with pytest.raises(InvalidStateError):
            complete_meeting(db, meeting.id, bob["_id"])

    @pytest.mark.parametrize("who", ["initiator", "participant"])
    def test_either_party_cancels(self, db, matched_pair, notifier, listen, who):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)
        actor, other = (alice, bob) if who == "initiator" else (bob, alice)
        other_conn = listen(other)

        cancelled = cancel_meeting(db, meeting.id, actor["_id"], notifier=notifier)

        assert cancelled.status.value == "cancelled"
        assert other_conn.events("meeting_cancelled")[0]["data"]["meeting"]["id"] == meeting.id

    def test_cancel_accepted_meeting(self, db, matched_pair):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)
        accept_meeting(db, meeting.id, bob["_id"])
        assert cancel_meeting(db, meeting.id, alice["_id"]).status.value == "cancelled"

    def test_outsider_cannot_cancel(self, db, matched_pair, make_user):
        alice, bob = matched_pair
        carol = make_user("Carol")
        meeting = schedule(db, alice, bob)
        with pytest.raises(ForbiddenError):
            cancel_meeting(db, meeting.id, carol["_id"])

    def test_complete_requires_accepted(self, db, matched_pair):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)
        with pytest.raises(InvalidStateError):
            complete_meeting(db, meeting.id, alice["_id"])

        accept_meeting(db, meeting.id, bob["_id"])
        assert complete_meeting(db, meeting.id, alice["_id"]).status.value == "completed"

        with pytest.raises(InvalidStateError):
            cancel_meeting(db, meeting.id, alice["_id"])

    def test_unknown_meeting(self, db, matched_pair):
        alice, bob = matched_pair
        with pytest.raises(NotFoundError):
            accept_meeting(db, ObjectId(), bob["_id"])


class TestListMeetings:

    def test_both_parties_see_meeting_once(self, db, matched_pair):
        alice, bob = matched_pair
        meeting = schedule(db, alice, bob)

        for user in (alice, bob):
            ids = [m.id for m in list_my_meetings(db, user["_id"])]
            assert ids.count(meeting.id) == 1

    def test_sorted_by_scheduled_date(self, db, matched_pair):
        alice, bob = matched_pair
        later = schedule(db, alice, bob, days=5)
        sooner = schedule(db, bob, alice, days=2)

        assert [m.id for m in list_my_meetings(db, alice["_id"])] == [sooner.id, later.id]

    def test_status_filter(self, db, matched_pair):
        alice, bob = matched_pair
        kept = schedule(db, alice, bob, days=2)
        declined = schedule(db, alice, bob, days=3)
        decline_meeting(db, declined.id, bob["_id"])

        assert [m.id for m in list_my_meetings(db, alice["_id"], "pending")] == [kept.id]
        assert [m.id for m in list_my_meetings(db, alice["_id"], "declined")] == [declined.id]

    def test_unknown_status_filter(self, db, matched_pair):
        alice, _ = matched_pair
        with pytest.raises(ValidationError):
            list_my_meetings(db, alice["_id"], "postponed")

    def test_other_users_meetings_excluded(self, db, matched_pair, make_user):
        alice, bob = matched_pair
        schedule(db, alice, bob)
        carol = make_user("Carol")
        assert list_my_meetings(db, carol["_id"]) == []
