from datetime import datetime
from enum import Enum
from typing import ClassVar, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


class SwipeDirection(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class MessageType(str, Enum):
    TEXT = "text"
    MEETING_REQUEST = "meeting_request"
    SKILL_OFFER = "skill_offer"


class MeetingType(str, Enum):
    VIDEO_CALL = "video_call"
    IN_PERSON = "in_person"
    CHAT_SESSION = "chat_session"


class MeetingStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ----------------------
# Requests
# ----------------------
# Enum-valued fields are plain strings here; the core validates them so a bad
# value is reported as a 400 like every other validation failure.

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    skillsKnown: List[str] = Field(default_factory=list)
    skillsWanted: List[str] = Field(default_factory=list)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    skillsKnown: Optional[List[str]] = None
    skillsWanted: Optional[List[str]] = None


class SwipeRequest(BaseModel):
    targetUserId: str
    direction: str  # 'left' or 'right'


class SendMessageRequest(BaseModel):
    receiverId: str
    content: str
    messageType: str = MessageType.TEXT.value


class MarkMessagesReadRequest(BaseModel):
    chatPartnerId: Optional[str] = None


class CreateMeetingRequest(BaseModel):
    participantId: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    skillToTeach: str = Field(..., min_length=1)
    skillToLearn: str = Field(..., min_length=1)
    scheduledDate: datetime
    duration: Optional[int] = Field(None, gt=0, description="Minutes")
    meetingType: str = MeetingType.VIDEO_CALL.value
    location: Optional[str] = None
    meetingLink: Optional[str] = None
    notes: Optional[str] = None


# ----------------------
# Responses
# ----------------------

class UserSummary(BaseModel):
    id: str
    name: str
    skillsKnown: List[str] = Field(default_factory=list)
    skillsWanted: List[str] = Field(default_factory=list)


class UserProfile(UserSummary):
    email: str
    createdAt: Optional[datetime] = None


class MatchEntry(UserSummary):
    isPotentialMatch: bool = False


class SwipeResult(BaseModel):
    matched: bool
    matchedUser: Optional[UserSummary] = None


class SwipeResponse(BaseModel):
    message: str
    isMatch: bool
    matchedUser: Optional[UserSummary] = None


class MessageOut(BaseModel):
    id: str
    sender: str
    receiver: str
    content: str
    messageType: MessageType
    read: bool
    createdAt: datetime


class SendMessageResponse(BaseModel):
    message: str
    data: MessageOut


class UnreadCount(BaseModel):
    senderId: str
    count: int


class MeetingOut(BaseModel):
    id: str
    initiator: str
    participant: str
    title: str
    description: Optional[str] = None
    skillToTeach: str
    skillToLearn: str
    scheduledDate: datetime
    duration: int
    meetingType: MeetingType
    location: Optional[str] = None
    meetingLink: Optional[str] = None
    notes: Optional[str] = None
    status: MeetingStatus
    createdAt: datetime
    updatedAt: datetime


class NotificationCounts(BaseModel):
    messages: int
    meetings: int


# ----------------------
# Real-time events
# ----------------------
# One model per socket event name. `event` is the channel event name,
# `type` is carried in the payload for clients that multiplex on it.

class PartyRef(BaseModel):
    id: str
    name: str


class MessagePreview(BaseModel):
    id: str
    content: str
    messageType: MessageType
    sender: PartyRef
    receiver: str
    createdAt: datetime


class MeetingRef(BaseModel):
    id: str
    title: str


class ScheduledMeetingRef(MeetingRef):
    scheduledDate: datetime


class MeetingRequestRef(ScheduledMeetingRef):
    skillToTeach: str
    skillToLearn: str
    initiator: PartyRef


class RealtimeEvent(BaseModel):
    event: ClassVar[str] = ""

    def to_frame(self) -> dict:
        return {"event": self.event, "data": self.model_dump(mode="json")}


class MatchEvent(RealtimeEvent):
    event: ClassVar[str] = "match"
    type: Literal["new_match"] = "new_match"
    message: str = "It's a match!"
    matchedUser: UserSummary


class NewMessageEvent(RealtimeEvent):
    event: ClassVar[str] = "new_message"
    type: Literal["new_message"] = "new_message"
    message: MessagePreview


class NotificationUpdateEvent(RealtimeEvent):
    event: ClassVar[str] = "notification_update"
    type: Literal["messages", "meetings"]
    count: int


class MeetingRequestEvent(RealtimeEvent):
    event: ClassVar[str] = "meeting_request"
    type: Literal["meeting_request"] = "meeting_request"
    meeting: MeetingRequestRef


class MeetingAcceptedEvent(RealtimeEvent):
    event: ClassVar[str] = "meeting_accepted"
    type: Literal["meeting_accepted"] = "meeting_accepted"
    meeting: ScheduledMeetingRef


class MeetingDeclinedEvent(RealtimeEvent):
    event: ClassVar[str] = "meeting_declined"
    type: Literal["meeting_declined"] = "meeting_declined"
    meeting: MeetingRef


class MeetingCancelledEvent(RealtimeEvent):
    event: ClassVar[str] = "meeting_cancelled"
    type: Literal["meeting_cancelled"] = "meeting_cancelled"
    meeting: MeetingRef
