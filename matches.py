# matches.py
"""
Match consistency.

A match lives in two user documents. The store offers no multi-document
transaction, so every commit first records a match intent keyed by the
sorted pair, then adds each user to the other's `matches` set. Writes are
retried; a pair that still ends up half-applied keeps its intent `pending`
and is repaired by reconcile_matches (run at start-up).
"""
import logging
from typing import List, Tuple

from bson import ObjectId
from pymongo.errors import PyMongoError

from config import MATCH_WRITE_RETRIES
from database import to_object_id, utcnow
from errors import ForbiddenError, NotFoundError, ServerError, ValidationError
from matching import complementary_both
from models import MatchEntry
from users import get_user, to_summary

logger = logging.getLogger(__name__)

INTENT_PENDING = "pending"
INTENT_APPLIED = "applied"


def pair_key(user_a: ObjectId, user_b: ObjectId) -> str:
    low, high = sorted([str(user_a), str(user_b)])
    return f"{low}:{high}"


def _add_match(db, user_id: ObjectId, other_id: ObjectId) -> bool:
    """Add `other_id` to the match set of `user_id`. Returns True if the set changed."""
    attempts = max(MATCH_WRITE_RETRIES, 1)
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            result = db.users.update_one({"_id": user_id}, {"$addToSet": {"matches": other_id}})
        except PyMongoError as exc:
            last_error = exc
            logger.warning("Match write %s -> %s failed (attempt %d/%d): %s",
                           user_id, other_id, attempt, attempts, exc)
            continue
        if result.matched_count == 0:
            raise NotFoundError("User not found")
        return result.modified_count > 0
    raise last_error


def _apply_pair(db, user_a: ObjectId, user_b: ObjectId) -> bool:
    key = pair_key(user_a, user_b)
    applied = []
    changed = False
    try:
        for user_id, other_id in ((user_a, user_b), (user_b, user_a)):
            changed = _add_match(db, user_id, other_id) or changed
            applied.append(str(user_id))
    except NotFoundError:
        logger.error("Match %s left half-applied (written for %s); a user is gone, intent kept pending",
                     key, applied or "nobody")
        raise
    except PyMongoError as exc:
        logger.error("Match %s left half-applied (written for %s); intent kept pending",
                     key, applied or "nobody")
        raise ServerError("Could not record match") from exc

    try:
        db.match_intents.update_one(
            {"_id": key},
            {"$set": {"status": INTENT_APPLIED, "appliedAt": utcnow()}},
        )
    except PyMongoError:
        # Both documents are consistent; the pending intent is re-applied harmlessly later.
        logger.warning("Could not mark match intent %s as applied", key, exc_info=True)
    return changed


def commit_match(db, user_a, user_b) -> bool:
    """
    Put each user in the other's match set.

    Idempotent: committing an existing match changes nothing. Returns True if
    either side was newly written.
    """
    a = to_object_id(user_a, "user id")
    b = to_object_id(user_b, "user id")
    if a == b:
        raise ValidationError("A user cannot match with themselves")
    if db.users.count_documents({"_id": {"$in": [a, b]}}) != 2:
        raise NotFoundError("User not found")

    key = pair_key(a, b)
    now = utcnow()
    db.match_intents.update_one(
        {"_id": key},
        {
            "$set": {"status": INTENT_PENDING, "updatedAt": now},
            "$setOnInsert": {"users": [a, b], "createdAt": now},
        },
        upsert=True,
    )
    changed = _apply_pair(db, a, b)
    if changed:
        logger.info("Match committed between %s and %s", a, b)
    return changed


def reconcile_matches(db) -> int:
    """
    Repair asymmetric match state. Re-applies every pending intent, then
    mirrors any one-sided entry found in user documents. Returns the number
    of pairs that needed a write.
    """
    repaired = 0
    for intent in list(db.match_intents.find({"status": INTENT_PENDING})):
        user_a, user_b = intent["users"]
        try:
            if _apply_pair(db, user_a, user_b):
                repaired += 1
        except (NotFoundError, ServerError):
            logger.error("Match intent %s could not be reconciled", intent["_id"])

    for user in list(db.users.find({}, {"matches": 1})):
        for other_id in user.get("matches") or []:
            result = db.users.update_one(
                {"_id": other_id, "matches": {"$ne": user["_id"]}},
                {"$addToSet": {"matches": user["_id"]}},
            )
            if result.modified_count:
                logger.warning("Repaired one-sided match %s -> %s", user["_id"], other_id)
                db.match_intents.update_one(
                    {"_id": pair_key(user["_id"], other_id)},
                    {
                        "$set": {"status": INTENT_APPLIED, "appliedAt": utcnow()},
                        "$setOnInsert": {"users": [user["_id"], other_id], "createdAt": utcnow()},
                    },
                    upsert=True,
                )
                repaired += 1

    if repaired:
        logger.info("Reconciled %d match pair(s)", repaired)
    return repaired


def are_matched(user_a: dict, user_b: dict) -> bool:
    """Both directions must be present."""
    return (user_b["_id"] in (user_a.get("matches") or [])
            and user_a["_id"] in (user_b.get("matches") or []))


def require_match(db, user_a, user_b, message: str) -> Tuple[dict, dict]:
    """Load both users and raise ForbiddenError unless they are matched."""
    first = get_user(db, user_a)
    second = get_user(db, user_b)
    if not are_matched(first, second):
        raise ForbiddenError(message)
    return first, second


def list_matches(db, user_id) -> List[MatchEntry]:
    """
    Confirmed matches first, in the order they were made, followed by
    potential matches: users this user swiped right on whose skills are
    complementary in both directions but who are not confirmed yet.
    """
    user = get_user(db, user_id)
    matched_ids = list(user.get("matches") or [])
    matched = set(matched_ids)

    docs = {u["_id"]: u for u in db.users.find({"_id": {"$in": matched_ids}}, {"password": 0, "swipes": 0})}
    entries = [MatchEntry(**to_summary(docs[oid]).model_dump()) for oid in matched_ids if oid in docs]

    right_swiped = [s["userId"] for s in user.get("swipes") or []
                    if s.get("direction") == "right" and s.get("userId") not in matched]
    if right_swiped:
        targets = {u["_id"]: u for u in db.users.find({"_id": {"$in": right_swiped}}, {"password": 0, "swipes": 0})}
        for oid in right_swiped:
            target = targets.get(oid)
            if target and complementary_both(user, target):
                entries.append(MatchEntry(**to_summary(target).model_dump(), isPotentialMatch=True))

    logger.debug("User %s: %d confirmed, %d potential matches",
                 user["_id"], len(entries) - sum(e.isPotentialMatch for e in entries),
                 sum(e.isPotentialMatch for e in entries))
    return entries
