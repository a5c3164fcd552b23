from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import pandas as pd
from pydantic import TypeAdapter

from .exceptions import MalformedPhone
from .models import Profile, RosterEntry, SpecialRequest
from .store import participant_key


logger = logging.getLogger(__name__)


FIELD_ALIASES: Dict[str, List[str]] = {
    "name": ["name", "What is your name?", "What is your full name?"],
    "email": ["email", "What is your student email?", "What is your email address?"],
    "phone": ["phone", "What is your phone number?"],
    "grade": ["grade", "What grade are you in?", "What year are you in college?"],
    "gender": ["gender", "What is your gender?"],
    "gender_preferences": ["gender_preferences", "Which gender(s) are you interested in?"],
    "school": ["school", "What academic school do you study at?"],
    "ideal_evening": ["ideal_evening", "Which of these is most like your ideal Friday night?"],
    "decision_style": ["decision_style", "What guides your decisions?"],
    "planning_style": ["planning_style", "Do you prefer to plan or be spontaneous?"],
    "fitness_importance": ["fitness_importance", "How important is fitness and nutrition to you?"],
    "core_value": ["core_value", "Which value is most important to you in a partner?"],
    "reading_habit": ["reading_habit", "Do you read?"],
}

# one checkbox column per gender in the main survey export
GENDER_CHECKBOXES = ("Male", "Female", "Non-binary")

GRADES = {
    "freshman": 1,
    "sophomore": 2,
    "junior": 3,
    "senior": 4,
}

FITNESS_LEVELS = {
    "extremely important": 4,
    "somewhat important": 3,
    "neutral": 2,
    "not very important": 1,
}

MISSING_TOKENS = {"nan": None, "None": None, "": None, "Unknown": None}


def normalize_phone(phone: Any) -> str:
    """Digits only, keeping the last 10 so a +1 / 1 country prefix drops off."""
    if phone is None or (isinstance(phone, float) and pd.isna(phone)):
        return ""
    if isinstance(phone, float):
        phone = int(phone)
    digits = re.sub(r"[^0-9]", "", str(phone))
    return digits[-10:] if len(digits) >= 10 else digits


def parse_phone(phone: Any) -> str:
    digits = normalize_phone(phone)
    if len(digits) != 10:
        raise MalformedPhone(phone)
    return digits


def get_alias_column(df: pd.DataFrame, key: str) -> Optional[str]:
    for candidate in FIELD_ALIASES.get(key, []):
        if candidate in df.columns:
            return candidate
    return None


def resolve_aliases(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    return {key: get_alias_column(df, key) for key in FIELD_ALIASES}


def clean_roster_df(df: pd.DataFrame) -> pd.DataFrame:
    """Strip headers and text cells; blanks and 'Unknown' placeholders become None."""
    out = df.copy()
    out.columns = [col.strip() if isinstance(col, str) else col for col in out.columns]
    for col in out.columns:
        if pd.api.types.is_object_dtype(out[col]) or pd.api.types.is_string_dtype(out[col]):
            out[col] = (
                out[col]
                .astype(str)
                .str.replace("\n", " ")
                .str.replace(r"\s+", " ", regex=True)
                .str.strip()
                .replace(MISSING_TOKENS)
            )
    return out


def _text(row: pd.Series, col: Optional[str]) -> Optional[str]:
    if col is None:
        return None
    val = row.get(col)
    if val is None or (isinstance(val, float) and pd.isna(val)):
        return None
    s = str(val).strip()
    return s or None


def _ordinal(value: Optional[str], labels: Dict[str, int]) -> Optional[int]:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in labels:
        return labels[lowered]
    m = re.fullmatch(r"(\d+)(\.0)?", lowered)
    if m and 1 <= int(m.group(1)) <= 4:
        return int(m.group(1))
    return None


def _canonical_gender(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    for label in GENDER_CHECKBOXES:
        if value.lower() == label.lower():
            return label
    return value


def _gender_preferences(row: pd.Series, alias_map: Dict[str, Optional[str]]) -> Set[str]:
    prefs: Set[str] = set()
    for label in GENDER_CHECKBOXES:
        if label in row.index and _text(row, label) == label:
            prefs.add(label)
    listed = _text(row, alias_map.get("gender_preferences"))
    if listed:
        for part in re.split(r"[,;/]", listed):
            gender = _canonical_gender(part.strip())
            if gender:
                prefs.add(gender)
    return prefs


def row_to_entry(row: pd.Series, alias_map: Dict[str, Optional[str]]) -> RosterEntry:
    """Convert one cleaned survey row.

    Raises:
        MalformedPhone: The phone is missing or not 10 digits after normalization.
    """
    phone = parse_phone(row.get(alias_map["phone"]) if alias_map.get("phone") else None)
    email = _text(row, alias_map.get("email"))
    profile = Profile(
        school=_text(row, alias_map.get("school")),
        ideal_evening=_text(row, alias_map.get("ideal_evening")),
        decision_style=_text(row, alias_map.get("decision_style")),
        planning_style=_text(row, alias_map.get("planning_style")),
        fitness_importance=_ordinal(_text(row, alias_map.get("fitness_importance")), FITNESS_LEVELS),
        core_value=_text(row, alias_map.get("core_value")),
        reading_habit=_text(row, alias_map.get("reading_habit")),
    )
    return RosterEntry(
        key=participant_key(phone, email),
        name=_text(row, alias_map.get("name")) or "",
        phone=phone,
        email=email,
        gender=_canonical_gender(_text(row, alias_map.get("gender"))),
        gender_preferences=_gender_preferences(row, alias_map),
        grade=_ordinal(_text(row, alias_map.get("grade")), GRADES),
        profile=profile,
    )


@dataclass
class RosterLoad:
    entries: List[RosterEntry] = field(default_factory=list)
    rejected: List[Tuple[str, str]] = field(default_factory=list)
    duplicates: int = 0


def entries_from_frame(df: pd.DataFrame) -> RosterLoad:
    """Turn a cleaned frame into roster entries, newest row winning on duplicates.

    Later rows are newer, so the frame is walked in reverse and the first
    row seen for an email or phone is kept.
    """
    result = RosterLoad()
    alias_map = resolve_aliases(df)
    if alias_map.get("name") is None:
        raise KeyError(f"Roster has no name column (tried {FIELD_ALIASES['name']})")

    seen_emails: Set[str] = set()
    seen_keys: Set[str] = set()
    kept: List[RosterEntry] = []
    for _, row in df.iloc[::-1].iterrows():
        name = _text(row, alias_map.get("name"))
        if not name:
            continue
        try:
            entry = row_to_entry(row, alias_map)
        except MalformedPhone as exc:
            logger.warning("Skipped %s: %s", name, exc)
            result.rejected.append((name, str(exc)))
            continue
        email = (entry.email or "").lower()
        if entry.key in seen_keys or (email and email in seen_emails):
            result.duplicates += 1
            continue
        seen_keys.add(entry.key)
        if email:
            seen_emails.add(email)
        kept.append(entry)

    result.entries = kept[::-1]
    return result


def read_roster(*paths: Path) -> RosterLoad:
    """Read and merge one or more survey exports (main form, walk-in form)."""
    frames = [clean_roster_df(pd.read_csv(path, dtype=str)) for path in paths]
    if not frames:
        return RosterLoad()
    # rename every frame onto canonical columns before stacking them
    canonical = []
    for df in frames:
        alias_map = resolve_aliases(df)
        renamed = df.rename(columns={col: key for key, col in alias_map.items() if col is not None})
        canonical.append(renamed)
    merged = pd.concat(canonical, ignore_index=True, sort=False)
    result = entries_from_frame(merged)
    logger.info(
        "Loaded %d participants (%d rejected, %d duplicates removed)",
        len(result.entries),
        len(result.rejected),
        result.duplicates,
    )
    return result


def read_special_requests(path: Path) -> List[SpecialRequest]:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    requests = TypeAdapter(List[SpecialRequest]).validate_python(raw)
    for request in requests:
        request.requester_phone = normalize_phone(request.requester_phone)
        if request.requested_phone:
            request.requested_phone = normalize_phone(request.requested_phone) or None
    return requests
