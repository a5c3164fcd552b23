from typing import Iterable, Optional

import pytest

from pubmatch.models import Participant, Profile, SystemState


def make_participant(
    n: int,
    name: Optional[str] = None,
    gender: Optional[str] = "Male",
    prefs: Iterable[str] = ("Female",),
    grade: Optional[int] = 2,
    checked_in: bool = True,
    wristband: Optional[int] = None,
    history: Iterable[str] = (),
    **profile,
) -> Participant:
    phone = f"617555{n:04d}"
    if wristband is None and checked_in:
        wristband = n
    return Participant(
        key=phone,
        name=name or f"Person {n}",
        phone=phone,
        email=f"person{n}@example.edu",
        gender=gender,
        gender_preferences=set(prefs),
        grade=grade,
        profile=Profile(**profile),
        checked_in=checked_in,
        wristband_number=wristband,
        match_history=set(history),
    )


def make_state(*people: Participant) -> SystemState:
    numbers = [p.wristband_number for p in people if p.wristband_number is not None and p.wristband_number < 250]
    return SystemState(
        participants={p.key: p for p in people},
        next_standard=max(numbers, default=0) + 1,
    )


@pytest.fixture
def person():
    return make_participant


@pytest.fixture
def state_of():
    return make_state


@pytest.fixture
def couple():
    """Two checked-in people who can be romantically matched."""
    alice = make_participant(1, name="Alice Smith", gender="Female", prefs=("Male",), grade=3)
    bob = make_participant(2, name="Bob Jones", gender="Male", prefs=("Female",), grade=4)
    return alice, bob
