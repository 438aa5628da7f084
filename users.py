# users.py
# User directory: profile documents, skill lists, swipe history and match sets.
import logging
from typing import Iterable, List, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from database import to_object_id, utcnow
from errors import ConflictError, NotFoundError
from models import UserProfile, UserSummary

logger = logging.getLogger(__name__)

# Fields that never leave the directory.
PRIVATE_FIELDS = {"password": 0, "swipes": 0, "matches": 0}


def normalize_skills(skills: Optional[Iterable[str]]) -> List[str]:
    """Strip, drop empties and de-duplicate while keeping first-seen order."""
    seen = []
    for skill in skills or []:
        skill = (skill or "").strip()
        if skill and skill not in seen:
            seen.append(skill)
    return seen


def get_user(db, user_id, projection: dict = None) -> dict:
    oid = to_object_id(user_id, "user id")
    user = db.users.find_one({"_id": oid}, projection)
    if not user:
        raise NotFoundError("User not found")
    return user


def find_by_email(db, email: str) -> Optional[dict]:
    return db.users.find_one({"email": email.lower()})


def create_user(db, name: str, email: str, password_hash: str,
                skills_known: Iterable[str] = (), skills_wanted: Iterable[str] = ()) -> dict:
    """Insert a new user. The password must already be hashed."""
    email = email.lower()
    if db.users.find_one({"email": email}):
        raise ConflictError("User already exists")

    now = utcnow()
    user = {
        "_id": ObjectId(),
        "name": name.strip(),
        "email": email,
        "password": password_hash,
        "skillsKnown": normalize_skills(skills_known),
        "skillsWanted": normalize_skills(skills_wanted),
        "swipes": [],
        "matches": [],
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        db.users.insert_one(user)
    except DuplicateKeyError:
        raise ConflictError("User already exists")
    logger.info("Registered user %s", user["_id"])
    return user


def update_profile(db, user_id, name: str = None, skills_known: Iterable[str] = None,
                   skills_wanted: Iterable[str] = None) -> dict:
    changes = {}
    if name is not None:
        changes["name"] = name.strip()
    if skills_known is not None:
        changes["skillsKnown"] = normalize_skills(skills_known)
    if skills_wanted is not None:
        changes["skillsWanted"] = normalize_skills(skills_wanted)
    changes["updatedAt"] = utcnow()

    oid = to_object_id(user_id, "user id")
    result = db.users.update_one({"_id": oid}, {"$set": changes})
    if result.matched_count == 0:
        raise NotFoundError("User not found")
    return get_user(db, oid)


def list_users(db) -> List[UserSummary]:
    return [to_summary(u) for u in db.users.find({}, PRIVATE_FIELDS).sort("_id", 1)]


def find_users_by_skills(db, skills: Iterable[str]) -> List[UserSummary]:
    """Users who know at least one of `skills`."""
    wanted = normalize_skills(skills)
    if not wanted:
        return []
    cursor = db.users.find({"skillsKnown": {"$in": wanted}}, PRIVATE_FIELDS).sort("_id", 1)
    return [to_summary(u) for u in cursor]


def to_summary(user: dict) -> UserSummary:
    return UserSummary(
        id=str(user["_id"]),
        name=user.get("name", ""),
        skillsKnown=list(user.get("skillsKnown") or []),
        skillsWanted=list(user.get("skillsWanted") or []),
    )


def to_profile(user: dict) -> UserProfile:
    summary = to_summary(user)
    return UserProfile(**summary.model_dump(), email=user.get("email", ""), createdAt=user.get("createdAt"))
