from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import BlockReason, Participant, Profile


@dataclass(frozen=True)
class ScoreTable:
    grade_by_distance: Tuple[int, ...] = (20, 10, 5)
    fitness_by_distance: Tuple[int, ...] = (20, 10)
    school: int = 10
    ideal_evening: int = 15
    decision_style: int = 15
    planning_style: int = 15
    core_value: int = 20
    reading_habit: int = 10


DEFAULT_TABLE = ScoreTable()
MAX_SCORE = 130

_EXACT_FIELDS = ("school", "ideal_evening", "decision_style", "planning_style", "core_value", "reading_habit")


def _by_distance(a: Optional[int], b: Optional[int], points: Tuple[int, ...]) -> int:
    if a is None or b is None:
        return 0
    gap = abs(int(a) - int(b))
    return points[gap] if gap < len(points) else 0


def _exact(a: Optional[str], b: Optional[str], points: int) -> int:
    if not a or not b:
        return 0
    return points if a == b else 0


def score_pair(a: Participant, b: Participant, table: ScoreTable = DEFAULT_TABLE) -> Tuple[int, Dict[str, int]]:
    """Compatibility of two participants with the per-category breakdown.

    Every category is independent and contributes nothing when either side
    left the question blank, so the result is symmetric.
    """
    pa: Profile = a.profile
    pb: Profile = b.profile
    parts = {
        "grade": _by_distance(a.grade, b.grade, table.grade_by_distance),
        "fitness_importance": _by_distance(pa.fitness_importance, pb.fitness_importance, table.fitness_by_distance),
    }
    for name in _EXACT_FIELDS:
        parts[name] = _exact(getattr(pa, name), getattr(pb, name), getattr(table, name))
    return sum(parts.values()), parts


def score(a: Participant, b: Participant, table: ScoreTable = DEFAULT_TABLE) -> int:
    total, _ = score_pair(a, b, table)
    return total


# ---- Eligibility filters ----
def gender_compatible(a: Participant, b: Participant) -> bool:
    if not a.gender or not b.gender:
        return False
    return a.gender in b.gender_preferences and b.gender in a.gender_preferences


def grade_compatible(a: Participant, b: Participant) -> bool:
    # unknown grades never block; only the full 3-year gap does
    if a.grade is None or b.grade is None:
        return True
    return abs(a.grade - b.grade) < 3


def already_matched(a: Participant, b: Participant) -> bool:
    return b.key in a.match_history or a.key in b.match_history


def can_match(a: Participant, b: Participant, romantic: bool = True) -> bool:
    if not (a.checked_in and b.checked_in):
        return False
    if not (a.has_usable_phone and b.has_usable_phone):
        return False
    if a.key == b.key:
        return False
    if already_matched(a, b):
        return False
    if romantic:
        return gender_compatible(a, b) and grade_compatible(a, b)
    return True


def romantic_block_reason(a: Participant, b: Participant) -> Optional[BlockReason]:
    """Which hard constraint keeps the pair from a romantic match, if any."""
    if not gender_compatible(a, b):
        return BlockReason.GENDER_PREFERENCE
    if not grade_compatible(a, b):
        return BlockReason.GRADE_INCOMPATIBILITY
    return None
