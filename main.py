import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pymongo.errors import PyMongoError

import chat
import meetings
import swipes
import users
from auth import create_access_token, decode_access_token, get_current_user, get_password_hash, verify_password
from config import LOG_LEVEL
from database import ensure_indexes, get_db
from errors import AuthenticationError, SkillSwapError
from matches import list_matches, reconcile_matches
from models import (
    CreateMeetingRequest,
    MarkMessagesReadRequest,
    MatchEntry,
    MeetingOut,
    MessageOut,
    NotificationCounts,
    ProfileUpdate,
    RegisterRequest,
    SendMessageRequest,
    SwipeRequest,
    SwipeResponse,
    UnreadCount,
    UserProfile,
    UserSummary,
)
from notifications import Notifier, QueueConnection, registry

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = app.dependency_overrides.get(get_db, get_db)()
    try:
        ensure_indexes(database)
        reconcile_matches(database)
    except PyMongoError as exc:
        # Keep serving; requests will fail individually until the store is back.
        logger.error("Start-up database maintenance failed: %s", exc)
    yield
    registry.clear()


app = FastAPI(title="Skill Swap API", lifespan=lifespan)


def get_notifier(db=Depends(get_db)) -> Notifier:
    return Notifier(db, registry)


@app.exception_handler(SkillSwapError)
async def skill_swap_error_handler(request: Request, exc: SkillSwapError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.get("/")
def root():
    return {"message": "Skill Swap API is running!"}


# ----------------------
# Auth
# ----------------------

@app.post("/auth/register", status_code=status.HTTP_201_CREATED)
def register_user(payload: RegisterRequest, db=Depends(get_db)):
    user = users.create_user(
        db,
        name=payload.name,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
        skills_known=payload.skillsKnown,
        skills_wanted=payload.skillsWanted,
    )
    token = create_access_token(data={"sub": str(user["_id"])})
    return {
        "message": "User registered successfully",
        "token": token,
        "user": users.to_profile(user),
    }


@app.post("/auth/login")
def login(form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    user = users.find_by_email(db, form_data.username)
    if not user or not verify_password(form_data.password, user["password"]):
        raise AuthenticationError("Invalid email or password")

    access_token = create_access_token(data={"sub": str(user["_id"])})
    return {"access_token": access_token, "token_type": "bearer"}


# ----------------------
# Users
# ----------------------

@app.get("/users", response_model=List[UserSummary])
def get_users(db=Depends(get_db)):
    return users.list_users(db)


@app.get("/users/skills", response_model=List[UserSummary])
def get_users_by_skills(skills: str = Query(..., description="Comma-separated skill names"), db=Depends(get_db)):
    return users.find_users_by_skills(db, skills.split(","))


@app.get("/users/me", response_model=UserProfile)
def get_me(current_user: dict = Depends(get_current_user)):
    return users.to_profile(current_user)


@app.put("/users/profile", response_model=UserProfile)
def update_profile(payload: ProfileUpdate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    user = users.update_profile(
        db,
        current_user["_id"],
        name=payload.name,
        skills_known=payload.skillsKnown,
        skills_wanted=payload.skillsWanted,
    )
    return users.to_profile(user)


# ----------------------
# Swipes and matches
# ----------------------

@app.post("/swipe", response_model=SwipeResponse)
def swipe_user(payload: SwipeRequest, current_user: dict = Depends(get_current_user),
               db=Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    result = swipes.swipe(db, current_user["_id"], payload.targetUserId, payload.direction, notifier=notifier)
    if result.matched:
        return SwipeResponse(message="It's a match!", isMatch=True, matchedUser=result.matchedUser)
    return SwipeResponse(message=f"Swiped {payload.direction}", isMatch=False)


@app.get("/swipe/candidates", response_model=List[UserSummary])
def get_swipe_candidates(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return swipes.list_swipe_candidates(db, current_user["_id"])


@app.get("/swipe/matches", response_model=List[MatchEntry])
def get_matches(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return list_matches(db, current_user["_id"])


# ----------------------
# Chat
# ----------------------

@app.post("/chat/send", status_code=status.HTTP_201_CREATED)
def send_message(payload: SendMessageRequest, current_user: dict = Depends(get_current_user),
                 db=Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    message = chat.send_message(
        db, current_user["_id"], payload.receiverId, payload.content,
        message_type=payload.messageType, notifier=notifier,
    )
    return {"message": "Message sent successfully", "data": message}


@app.get("/chat/conversation/{user_id}", response_model=List[MessageOut])
def get_conversation(user_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return chat.get_conversation(db, current_user["_id"], user_id)


@app.put("/chat/read/{sender_id}")
def mark_as_read(sender_id: str, current_user: dict = Depends(get_current_user),
                 db=Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    updated = chat.mark_read(db, current_user["_id"], sender_id, notifier=notifier)
    return {"message": "Messages marked as read", "updated": updated}


@app.get("/chat/unread", response_model=List[UnreadCount])
def get_unread(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    counts = chat.get_unread_counts(db, current_user["_id"])
    return [UnreadCount(senderId=sender_id, count=count) for sender_id, count in counts.items()]


# ----------------------
# Meetings
# ----------------------

@app.post("/meetings", response_model=MeetingOut, status_code=status.HTTP_201_CREATED)
def create_meeting(payload: CreateMeetingRequest, current_user: dict = Depends(get_current_user),
                   db=Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    return meetings.create_meeting(
        db,
        current_user["_id"],
        payload.participantId,
        title=payload.title,
        skill_to_teach=payload.skillToTeach,
        skill_to_learn=payload.skillToLearn,
        scheduled_date=payload.scheduledDate,
        description=payload.description,
        duration=payload.duration,
        meeting_type=payload.meetingType,
        location=payload.location,
        meeting_link=payload.meetingLink,
        notes=payload.notes,
        notifier=notifier,
    )


@app.get("/meetings/mine", response_model=List[MeetingOut])
def get_my_meetings(status_filter: Optional[str] = Query(None, alias="status"), current_user: dict = Depends(get_current_user),
                    db=Depends(get_db)):
    return meetings.list_my_meetings(db, current_user["_id"], status_filter)


@app.put("/meetings/{meeting_id}/accept", response_model=MeetingOut)
def accept_meeting(meeting_id: str, current_user: dict = Depends(get_current_user),
                   db=Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    return meetings.accept_meeting(db, meeting_id, current_user["_id"], notifier=notifier)


@app.put("/meetings/{meeting_id}/decline", response_model=MeetingOut)
def decline_meeting(meeting_id: str, current_user: dict = Depends(get_current_user),
                    db=Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    return meetings.decline_meeting(db, meeting_id, current_user["_id"], notifier=notifier)


@app.put("/meetings/{meeting_id}/cancel", response_model=MeetingOut)
def cancel_meeting(meeting_id: str, current_user: dict = Depends(get_current_user),
                   db=Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    return meetings.cancel_meeting(db, meeting_id, current_user["_id"], notifier=notifier)


@app.put("/meetings/{meeting_id}/complete", response_model=MeetingOut)
def complete_meeting(meeting_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return meetings.complete_meeting(db, meeting_id, current_user["_id"])


# ----------------------
# Notifications
# ----------------------

@app.get("/notifications/counts", response_model=NotificationCounts)
def get_notification_counts(current_user: dict = Depends(get_current_user),
                            notifier: Notifier = Depends(get_notifier)):
    return notifier.counts(current_user["_id"])


@app.put("/notifications/messages/read")
def mark_message_notifications_read(payload: MarkMessagesReadRequest,
                                    current_user: dict = Depends(get_current_user),
                                    db=Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    updated = chat.mark_all_read(db, current_user["_id"], payload.chatPartnerId, notifier=notifier)
    return {"message": "Message notifications marked as read", "updated": updated}


@app.put("/notifications/meetings/read")
def mark_meeting_notifications_read(current_user: dict = Depends(get_current_user)):
    # Counts are derived from meeting state; there is nothing to store.
    return {"message": "Meeting notifications marked as seen"}


# ----------------------
# Real-time channel
# ----------------------

async def forward_events(websocket: WebSocket, connection: QueueConnection, rooms: set):
    """Send queued frames until the socket refuses one, then drop the connection's rooms."""
    while True:
        frame = await connection.next_frame()
        try:
            await websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError, ConnectionError) as exc:
            logger.debug("Stopped forwarding events: %r", exc)
            for room in rooms:
                registry.unsubscribe(room, connection)
            return


@app.websocket("/ws")
async def realtime_channel(websocket: WebSocket, token: str = Query(...)):
    """
    Per-user event channel. After connecting, the client sends
    {"event": "join", "userId": "<own id>"} to start receiving its events.
    """
    user_id = decode_access_token(token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = QueueConnection()
    joined = set()

    forwarder = asyncio.create_task(forward_events(websocket, connection, joined))
    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                connection.queue.put_nowait({"event": "error", "data": {"detail": "Invalid frame"}})
                continue
            if not isinstance(data, dict) or data.get("event") != "join":
                continue
            room = str(data.get("userId") or user_id)
            if room != user_id:
                connection.queue.put_nowait({"event": "error", "data": {"detail": "You can only join your own room"}})
                continue
            registry.subscribe(room, connection)
            joined.add(room)
            logger.info("User %s joined room user_%s", user_id, room)
            connection.queue.put_nowait({"event": "joined", "data": {"userId": room}})
    except WebSocketDisconnect:
        logger.info("User %s disconnected", user_id)
    finally:
        for room in joined:
            registry.unsubscribe(room, connection)
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
