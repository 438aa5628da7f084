# swipes.py
import logging
from typing import List

from database import to_object_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from matches import commit_match
from matching import MatchPolicy, get_policy
from models import MatchEvent, SwipeDirection, SwipeResult, UserSummary
from notifications import Notifier
from users import PRIVATE_FIELDS, get_user, to_summary

logger = logging.getLogger(__name__)


def swipe(db, actor_id, target_id, direction: str,
          notifier: Notifier = None, policy: MatchPolicy = None) -> SwipeResult:
    """
    Record a swipe by `actor_id` on `target_id` and, for a right swipe,
    evaluate the match policy. Every swipe is recorded; a second swipe on the
    same target is rejected whatever its direction.
    """
    try:
        direction = SwipeDirection(direction)
    except ValueError:
        raise ValidationError("Direction must be left or right")

    actor_oid = to_object_id(actor_id, "user id")
    target_oid = to_object_id(target_id, "target user id")
    if actor_oid == target_oid:
        raise ValidationError("You cannot swipe on yourself")

    try:
        target = get_user(db, target_oid)
    except NotFoundError:
        raise NotFoundError("Target user not found")
    actor = get_user(db, actor_oid)

    # Check-and-append in one conditional write so duplicates cannot slip in.
    record = {"userId": target_oid, "direction": direction.value, "createdAt": utcnow()}
    result = db.users.update_one(
        {"_id": actor_oid, "swipes.userId": {"$ne": target_oid}},
        {"$push": {"swipes": record}},
    )
    if result.modified_count == 0:
        raise ConflictError("Already swiped on this user")
    logger.debug("User %s swiped %s on %s", actor_oid, direction.value, target_oid)

    if direction is SwipeDirection.LEFT:
        return SwipeResult(matched=False)

    policy = policy or get_policy()
    if not policy.is_match(actor, target):
        logger.debug("No match between %s and %s under %s policy", actor_oid, target_oid, policy.name)
        return SwipeResult(matched=False)

    changed = commit_match(db, actor_oid, target_oid)
    if changed and notifier is not None:
        notifier.notify(actor_oid, MatchEvent(matchedUser=to_summary(target)))
        notifier.notify(target_oid, MatchEvent(matchedUser=to_summary(actor)))
    return SwipeResult(matched=True, matchedUser=to_summary(target))


def list_swipe_candidates(db, user_id) -> List[UserSummary]:
    """Everyone except the user, users already swiped on and current matches. Ordered by id."""
    user = get_user(db, user_id)
    excluded = [user["_id"]]
    excluded.extend(s["userId"] for s in user.get("swipes") or [])
    excluded.extend(user.get("matches") or [])

    cursor = db.users.find({"_id": {"$nin": excluded}}, PRIVATE_FIELDS).sort("_id", 1)
    return [to_summary(u) for u in cursor]
