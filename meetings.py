# meetings.py
"""
Meeting scheduling between matched users.

    pending --accept--> accepted --complete--> completed
    pending --decline--> declined
    pending|accepted --cancel--> cancelled

declined, completed and cancelled are terminal. Only the participant may
accept or decline; either party may cancel or complete.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument

from config import DEFAULT_MEETING_DURATION
from database import as_naive_utc, to_object_id, utcnow
from errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from matches import require_match
from models import (
    MeetingAcceptedEvent,
    MeetingCancelledEvent,
    MeetingDeclinedEvent,
    MeetingOut,
    MeetingRef,
    MeetingRequestEvent,
    MeetingRequestRef,
    MeetingStatus,
    MeetingType,
    PartyRef,
    ScheduledMeetingRef,
)
from notifications import Notifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    allowed_from: FrozenSet[MeetingStatus]
    participant_only: bool
    forbidden_message: str
    invalid_message: str


TRANSITIONS = {
    MeetingStatus.ACCEPTED: Transition(
        frozenset({MeetingStatus.PENDING}), True,
        "You can only accept meetings sent to you", "Meeting is not pending"),
    MeetingStatus.DECLINED: Transition(
        frozenset({MeetingStatus.PENDING}), True,
        "You can only decline meetings sent to you", "Meeting is not pending"),
    MeetingStatus.CANCELLED: Transition(
        frozenset({MeetingStatus.PENDING, MeetingStatus.ACCEPTED}), False,
        "You can only cancel your own meetings", "Meeting cannot be cancelled"),
    MeetingStatus.COMPLETED: Transition(
        frozenset({MeetingStatus.ACCEPTED}), False,
        "You can only complete your own meetings", "Meeting must be accepted to complete"),
}


def meeting_out(doc: dict) -> MeetingOut:
    return MeetingOut(
        id=str(doc["_id"]),
        initiator=str(doc["initiator"]),
        participant=str(doc["participant"]),
        title=doc["title"],
        description=doc.get("description"),
        skillToTeach=doc["skillToTeach"],
        skillToLearn=doc["skillToLearn"],
        scheduledDate=doc["scheduledDate"],
        duration=doc.get("duration", DEFAULT_MEETING_DURATION),
        meetingType=doc.get("meetingType", MeetingType.VIDEO_CALL.value),
        location=doc.get("location"),
        meetingLink=doc.get("meetingLink"),
        notes=doc.get("notes"),
        status=doc["status"],
        createdAt=doc["createdAt"],
        updatedAt=doc["updatedAt"],
    )


def _required(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required")
    return value


def create_meeting(db, initiator_id, participant_id, title: str, skill_to_teach: str,
                   skill_to_learn: str, scheduled_date: datetime, description: str = None,
                   duration: int = None, meeting_type: str = MeetingType.VIDEO_CALL.value,
                   location: str = None, meeting_link: str = None, notes: str = None,
                   notifier: Notifier = None, now: datetime = None) -> MeetingOut:
    """Create a pending meeting request from `initiator_id` to `participant_id`."""
    title = _required(title, "title")
    skill_to_teach = _required(skill_to_teach, "skillToTeach")
    skill_to_learn = _required(skill_to_learn, "skillToLearn")
    try:
        meeting_type = MeetingType(meeting_type)
    except ValueError:
        raise ValidationError("meetingType must be one of video_call, in_person, chat_session")
    if duration is None:
        duration = DEFAULT_MEETING_DURATION
    if duration <= 0:
        raise ValidationError("duration must be a positive number of minutes")
    if scheduled_date is None:
        raise ValidationError("scheduledDate is required")

    initiator, participant = require_match(
        db, initiator_id, participant_id, "You can only schedule meetings with matched users")

    scheduled_date = as_naive_utc(scheduled_date)
    now = as_naive_utc(now) if now else utcnow()
    if scheduled_date <= now:
        raise ValidationError("Meeting date must be in the future")

    created = utcnow()
    doc = {
        "_id": ObjectId(),
        "initiator": initiator["_id"],
        "participant": participant["_id"],
        "title": title,
        "description": (description or "").strip() or None,
        "skillToTeach": skill_to_teach,
        "skillToLearn": skill_to_learn,
        "scheduledDate": scheduled_date,
        "duration": duration,
        "meetingType": meeting_type.value,
        "location": (location or "").strip() or None,
        "meetingLink": (meeting_link or "").strip() or None,
        "notes": (notes or "").strip() or None,
        "status": MeetingStatus.PENDING.value,
        "createdAt": created,
        "updatedAt": created,
    }
    db.meetings.insert_one(doc)
    logger.info("Meeting %s requested by %s with %s", doc["_id"], initiator["_id"], participant["_id"])

    if notifier is not None:
        notifier.notify(participant["_id"], MeetingRequestEvent(meeting=MeetingRequestRef(
            id=str(doc["_id"]),
            title=title,
            skillToTeach=skill_to_teach,
            skillToLearn=skill_to_learn,
            scheduledDate=scheduled_date,
            initiator=PartyRef(id=str(initiator["_id"]), name=initiator.get("name", "")),
        )))
        notifier.push_meeting_count(participant["_id"])
    return meeting_out(doc)


def get_meeting(db, meeting_id) -> dict:
    meeting = db.meetings.find_one({"_id": to_object_id(meeting_id, "meeting id")})
    if not meeting:
        raise NotFoundError("Meeting not found")
    return meeting


def _transition(db, meeting_id, actor_id, target: MeetingStatus) -> dict:
    rule = TRANSITIONS[target]
    meeting = get_meeting(db, meeting_id)
    actor = to_object_id(actor_id, "user id")

    if rule.participant_only:
        allowed = actor == meeting["participant"]
    else:
        allowed = actor in (meeting["initiator"], meeting["participant"])
    if not allowed:
        raise ForbiddenError(rule.forbidden_message)

    allowed_from = [s.value for s in rule.allowed_from]
    if meeting["status"] not in allowed_from:
        raise InvalidStateError(rule.invalid_message)

    # Conditional on the status just read, so a concurrent transition loses cleanly.
    updated = db.meetings.find_one_and_update(
        {"_id": meeting["_id"], "status": {"$in": allowed_from}},
        {"$set": {"status": target.value, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidStateError(rule.invalid_message)
    logger.info("Meeting %s %s -> %s by %s", meeting["_id"], meeting["status"], target.value, actor)
    return updated


def accept_meeting(db, meeting_id, actor_id, notifier: Notifier = None) -> MeetingOut:
    meeting = _transition(db, meeting_id, actor_id, MeetingStatus.ACCEPTED)
    if notifier is not None:
        notifier.notify(meeting["initiator"], MeetingAcceptedEvent(meeting=ScheduledMeetingRef(
            id=str(meeting["_id"]), title=meeting["title"], scheduledDate=meeting["scheduledDate"])))
        notifier.push_meeting_count(meeting["participant"])
    return meeting_out(meeting)


def decline_meeting(db, meeting_id, actor_id, notifier: Notifier = None) -> MeetingOut:
    meeting = _transition(db, meeting_id, actor_id, MeetingStatus.DECLINED)
    if notifier is not None:
        notifier.notify(meeting["initiator"], MeetingDeclinedEvent(
            meeting=MeetingRef(id=str(meeting["_id"]), title=meeting["title"])))
        notifier.push_meeting_count(meeting["participant"])
    return meeting_out(meeting)


def cancel_meeting(db, meeting_id, actor_id, notifier: Notifier = None) -> MeetingOut:
    meeting = _transition(db, meeting_id, actor_id, MeetingStatus.CANCELLED)
    if notifier is not None:
        actor = to_object_id(actor_id, "user id")
        other = meeting["participant"] if actor == meeting["initiator"] else meeting["initiator"]
        notifier.notify(other, MeetingCancelledEvent(
            meeting=MeetingRef(id=str(meeting["_id"]), title=meeting["title"])))
        notifier.push_meeting_count(other)
        notifier.push_meeting_count(actor)
    return meeting_out(meeting)


def complete_meeting(db, meeting_id, actor_id) -> MeetingOut:
    # Terminal; nobody else is notified.
    return meeting_out(_transition(db, meeting_id, actor_id, MeetingStatus.COMPLETED))


def list_my_meetings(db, user_id, status: str = None) -> List[MeetingOut]:
    user = to_object_id(user_id, "user id")
    query = {"$or": [{"initiator": user}, {"participant": user}]}
    if status:
        try:
            query["status"] = MeetingStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown meeting status: {status}")
    cursor = db.meetings.find(query).sort([("scheduledDate", 1), ("_id", 1)])
    return [meeting_out(doc) for doc in cursor]
