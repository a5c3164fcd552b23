# pydantic models for the check-in and matching state
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, model_validator


WALKIN_START = 250
SPECIAL_SCORE = 999  # display sentinel, not an affinity


class Lane(str, Enum):
    STANDARD = "standard"
    WALKIN = "walkin"


class MatchKind(str, Enum):
    SPECIAL = "special"
    ROMANTIC = "romantic"
    FRIEND = "friend"
    FRIEND_GROUP = "friend_group"


FRIEND_KINDS = frozenset({MatchKind.FRIEND, MatchKind.FRIEND_GROUP})


class BlockReason(str, Enum):
    GENDER_PREFERENCE = "gender_preference"
    GRADE_INCOMPATIBILITY = "grade_incompatibility"


class OperationKind(str, Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"


class Profile(BaseModel):
    """Self-reported answers that only feed the compatibility score."""

    school: Optional[str] = None
    ideal_evening: Optional[str] = None
    decision_style: Optional[str] = None
    planning_style: Optional[str] = None
    fitness_importance: Optional[int] = Field(default=None, ge=1, le=4)
    core_value: Optional[str] = None
    reading_habit: Optional[str] = None


class RosterEntry(BaseModel):
    """One deduplicated roster row, as produced by ingestion.

    Fields:
        key: Stable identity (10-digit phone, or lower-cased email when no phone).
        gender_preferences: Genders this person accepts as a romantic match.
        grade: Ordinal academic year, 1 (first year) to 4 (final year).
    """

    key: str
    name: str
    phone: str = ""
    email: Optional[str] = None
    gender: Optional[str] = None
    gender_preferences: Set[str] = Field(default_factory=set)
    grade: Optional[int] = Field(default=None, ge=1, le=4)
    profile: Profile = Field(default_factory=Profile)

    @field_serializer("gender_preferences")
    def _sorted_prefs(self, value: Set[str]) -> List[str]:
        return sorted(value)

    @property
    def has_usable_phone(self) -> bool:
        return len(self.phone) == 10 and self.phone.isdigit()


class Participant(RosterEntry):
    """A roster entry plus the event state the store owns."""

    checked_in: bool = False
    wristband_number: Optional[int] = Field(default=None, gt=0)
    payment_required: bool = True
    match_history: Set[str] = Field(default_factory=set)

    @field_serializer("match_history")
    def _sorted_history(self, value: Set[str]) -> List[str]:
        return sorted(value)


class SpecialRequest(BaseModel):
    """A directed request to be paired with a specific person.

    Older state files call the counter ``batches_together`` and the flag
    ``matched``; both spellings are accepted on load.
    """

    model_config = ConfigDict(populate_by_name=True)

    requester_phone: str
    requester_name: Optional[str] = None
    requested_phone: Optional[str] = None
    requested_name: Optional[str] = None
    consecutive_co_presence_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("consecutive_co_presence_count", "batches_together"),
    )
    fulfilled: bool = Field(default=False, validation_alias=AliasChoices("fulfilled", "matched"))

    @property
    def identity(self) -> Tuple[str, Optional[str]]:
        return (self.requester_phone, self.requested_phone)


class MatchMember(BaseModel):
    """Display fields captured when the record is created."""

    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    wristband: Optional[int] = None
    phone: str = ""


class MatchRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: MatchKind
    members: Tuple[MatchMember, ...]
    score: int = 0
    reason: Optional[BlockReason] = None

    @model_validator(mode="after")
    def _check_size(self) -> "MatchRecord":
        expected = 3 if self.kind == MatchKind.FRIEND_GROUP else 2
        if len(self.members) != expected:
            raise ValueError(f"{self.kind.value} record needs {expected} members, got {len(self.members)}")
        keys = [m.key for m in self.members]
        if len(set(keys)) != len(keys):
            raise ValueError(f"record repeats a participant: {keys}")
        return self

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(m.key for m in self.members)


class MatchBatch(BaseModel):
    number: int = Field(ge=1)
    created_at: datetime
    dispatched_at: Optional[datetime] = None
    records: List[MatchRecord] = Field(default_factory=list)

    @property
    def dispatched(self) -> bool:
        return self.dispatched_at is not None


class LastOperation(BaseModel):
    kind: OperationKind
    key: str
    lane: Optional[Lane] = None


class SystemState(BaseModel):
    """Aggregate root persisted as a single JSON document."""

    participants: Dict[str, Participant] = Field(default_factory=dict)
    special_requests: List[SpecialRequest] = Field(default_factory=list)
    batches: List[MatchBatch] = Field(default_factory=list)
    next_standard: int = Field(default=1, ge=1)
    next_walkin: int = Field(default=WALKIN_START, ge=1)
    last_operation: Optional[LastOperation] = None
    last_updated: Optional[datetime] = None
