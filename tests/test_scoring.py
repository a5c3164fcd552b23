import pytest

from pubmatch.models import BlockReason
from pubmatch.scoring import (
    MAX_SCORE,
    already_matched,
    can_match,
    gender_compatible,
    grade_compatible,
    romantic_block_reason,
    score,
    score_pair,
)

FULL_PROFILE = dict(
    school="Engineering",
    ideal_evening="Board games",
    decision_style="Logic",
    planning_style="Plan",
    fitness_importance=3,
    core_value="Honesty",
    reading_habit="Often",
)


def test_identical_profiles_hit_every_category(person):
    a = person(1, grade=2, **FULL_PROFILE)
    b = person(2, grade=2, **FULL_PROFILE)

    total, parts = score_pair(a, b)

    assert total == 125
    assert total <= MAX_SCORE
    assert parts["grade"] == 20
    assert parts["fitness_importance"] == 20
    assert parts["core_value"] == 20
    assert parts["ideal_evening"] == 15


@pytest.mark.parametrize("grade_b,expected", [(1, 20), (2, 10), (3, 5), (4, 0)])
def test_grade_points_fall_off_with_distance(person, grade_b, expected):
    _, parts = score_pair(person(1, grade=1), person(2, grade=grade_b))
    assert parts["grade"] == expected


@pytest.mark.parametrize("fit_b,expected", [(2, 20), (3, 10), (4, 0), (1, 10)])
def test_fitness_points_fall_off_with_distance(person, fit_b, expected):
    _, parts = score_pair(person(1, fitness_importance=2), person(2, fitness_importance=fit_b))
    assert parts["fitness_importance"] == expected


def test_blank_answers_score_nothing(person):
    a = person(1, grade=None)
    b = person(2, grade=None, **FULL_PROFILE)
    assert score(a, b) == 0


def test_score_is_symmetric(person):
    a = person(1, grade=1, school="Arts", core_value="Honesty", fitness_importance=4)
    b = person(2, grade=3, school="Arts", core_value="Kindness", fitness_importance=3)
    assert score(a, b) == score(b, a)
    assert 0 <= score(a, b) <= MAX_SCORE


def test_gender_compatibility_must_be_mutual(person):
    a = person(1, gender="Female", prefs=("Male",))
    b = person(2, gender="Male", prefs=("Male",))
    c = person(3, gender="Male", prefs=("Female", "Non-binary"))

    assert not gender_compatible(a, b)
    assert gender_compatible(a, c)
    assert gender_compatible(c, a)


def test_missing_gender_is_never_compatible(person):
    a = person(1, gender=None, prefs=("Male",))
    b = person(2, gender="Male", prefs=("Female", "Male"))
    assert not gender_compatible(a, b)


def test_grade_gap_of_three_blocks(person):
    assert not grade_compatible(person(1, grade=1), person(2, grade=4))
    assert grade_compatible(person(1, grade=1), person(2, grade=3))
    assert grade_compatible(person(1, grade=None), person(2, grade=4))


def test_can_match_basic_checks(person):
    a = person(1, gender="Female", prefs=("Male",))
    b = person(2, gender="Male", prefs=("Female",))
    assert can_match(a, b)

    away = person(3, gender="Male", prefs=("Female",), checked_in=False)
    assert not can_match(a, away)

    no_phone = person(4, gender="Male", prefs=("Female",))
    no_phone.phone = "555"
    assert not can_match(a, no_phone)

    assert not can_match(a, a)


def test_history_blocks_either_direction(person):
    a = person(1, gender="Female", prefs=("Male",))
    b = person(2, gender="Male", prefs=("Female",), history=[a.key])

    assert already_matched(a, b)
    assert already_matched(b, a)
    assert not can_match(a, b)
    assert not can_match(a, b, romantic=False)


def test_block_reason_reports_gender_before_grade(person):
    a = person(1, gender="Male", prefs=("Female",), grade=1)
    b = person(2, gender="Male", prefs=("Female",), grade=4)
    c = person(3, gender="Female", prefs=("Male",), grade=4)

    assert romantic_block_reason(a, b) == BlockReason.GENDER_PREFERENCE
    assert romantic_block_reason(a, c) == BlockReason.GRADE_INCOMPATIBILITY
    assert romantic_block_reason(c, person(4, gender="Male", prefs=("Female",), grade=3)) is None
