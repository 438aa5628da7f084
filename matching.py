# matching.py
"""
Complementary-skill predicates and the match policies built on them.

A policy decides whether a right swipe by `actor` on `target` confirms a
match. Both user arguments are user documents as stored in the directory.
"""
import logging
from typing import Dict

from config import MATCH_POLICY

logger = logging.getLogger(__name__)


def _skills(user: dict, field: str) -> set:
    return set(user.get(field) or [])


def can_teach(teacher: dict, learner: dict) -> bool:
    """True if `teacher` knows at least one skill `learner` wants."""
    return bool(_skills(teacher, "skillsKnown") & _skills(learner, "skillsWanted"))


def complementary_either(a: dict, b: dict) -> bool:
    return can_teach(a, b) or can_teach(b, a)


def complementary_both(a: dict, b: dict) -> bool:
    return can_teach(a, b) and can_teach(b, a)


def has_swiped_right(swiper: dict, target_id) -> bool:
    return any(
        s.get("userId") == target_id and s.get("direction") == "right"
        for s in swiper.get("swipes") or []
    )


class MatchPolicy:
    name = ""

    def is_match(self, actor: dict, target: dict) -> bool:
        raise NotImplementedError


class LenientPolicy(MatchPolicy):
    """Any right swipe with skills complementary in at least one direction matches instantly."""
    name = "lenient"

    def is_match(self, actor: dict, target: dict) -> bool:
        return complementary_either(actor, target)


class MutualPolicy(MatchPolicy):
    """The target must already have swiped right on the actor, plus complementary skills."""
    name = "mutual"

    def is_match(self, actor: dict, target: dict) -> bool:
        return has_swiped_right(target, actor["_id"]) and complementary_either(actor, target)


POLICIES: Dict[str, MatchPolicy] = {
    LenientPolicy.name: LenientPolicy(),
    MutualPolicy.name: MutualPolicy(),
}


def get_policy(name: str = None) -> MatchPolicy:
    name = name or MATCH_POLICY
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown match policy {name!r}; expected one of {sorted(POLICIES)}")
