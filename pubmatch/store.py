"""Participant store: roster merge, lookups, reset and whole-file persistence.

The store is a plain ``SystemState``; these functions are the only places that
add or remove participants. Check-in state lives in ``wristbands`` and match
history is written by ``matcher.commit_batch``.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from .exceptions import AmbiguousSearch, UnknownParticipant
from .models import WALKIN_START, Participant, RosterEntry, SpecialRequest, SystemState


logger = logging.getLogger(__name__)


def participant_key(phone: Optional[str], email: Optional[str]) -> str:
    """Phone is the preferred identity; email is the fallback."""
    if phone:
        return phone
    if email:
        return email.strip().lower()
    raise ValueError("participant needs a phone number or an email")


def _is_exempt(entry: RosterEntry, exempt: frozenset) -> bool:
    if entry.key.lower() in exempt:
        return True
    return bool(entry.email) and entry.email.lower() in exempt


@dataclass
class RosterMergeSummary:
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


def merge_roster(
    state: SystemState, entries: Iterable[RosterEntry], exempt: Iterable[str] = ()
) -> RosterMergeSummary:
    """Bring the store in line with the latest roster.

    Existing keys get the new attribute values but keep ``checked_in``,
    ``wristband_number`` and ``match_history``. New keys start checked out with
    no wristband. Keys missing from the roster are purged and removed from
    every remaining history. ``payment_required`` is recomputed for everyone.
    """
    exempt_keys = frozenset(e.strip().lower() for e in exempt if e and e.strip())
    summary = RosterMergeSummary()
    incoming = {}
    for entry in entries:
        incoming[entry.key] = entry

    for key, entry in incoming.items():
        attrs = entry.model_dump(include=set(RosterEntry.model_fields) - {"gender_preferences"})
        attrs["gender_preferences"] = set(entry.gender_preferences)
        existing = state.participants.get(key)
        if existing is None:
            state.participants[key] = Participant(**attrs, payment_required=not _is_exempt(entry, exempt_keys))
            summary.added.append(key)
            continue
        state.participants[key] = Participant(
            **attrs,
            checked_in=existing.checked_in,
            wristband_number=existing.wristband_number,
            match_history=set(existing.match_history),
            payment_required=not _is_exempt(entry, exempt_keys),
        )
        summary.updated.append(key)

    for key in [k for k in state.participants if k not in incoming]:
        logger.info("Removing %s from state (not in roster)", key)
        del state.participants[key]
        summary.removed.append(key)

    if summary.removed:
        gone = set(summary.removed)
        for participant in state.participants.values():
            participant.match_history -= gone
        if state.last_operation is not None and state.last_operation.key in gone:
            state.last_operation = None

    logger.info(
        "Roster merged: %d added, %d updated, %d removed",
        len(summary.added),
        len(summary.updated),
        len(summary.removed),
    )
    return summary


def merge_special_requests(state: SystemState, requests: Iterable[SpecialRequest]) -> int:
    """Merge requests by (requester phone, requested phone); returns how many were new.

    Known requests keep their counter and fulfilled flag; display names are
    replaced.
    """
    added = 0
    for request in requests:
        existing = next((r for r in state.special_requests if r.identity == request.identity), None)
        if existing is None:
            state.special_requests.append(request.model_copy(deep=True))
            added += 1
            continue
        existing.requester_name = request.requester_name
        existing.requested_name = request.requested_name
    return added


def get_participant(state: SystemState, key: str) -> Participant:
    try:
        return state.participants[key]
    except KeyError:
        raise UnknownParticipant(f"No participant with key '{key}'") from None


def checked_in(state: SystemState) -> List[Participant]:
    return [p for p in state.participants.values() if p.checked_in]


def find_participants(state: SystemState, query: str, checked_in_only: bool = False) -> List[Participant]:
    """Search by wristband (all-digit queries) or by name/email/key substring."""
    query = query.strip()
    pool = checked_in(state) if checked_in_only else list(state.participants.values())
    if not query:
        return []
    if query.isdigit() and len(query) < 10:
        return [p for p in pool if p.wristband_number == int(query)]
    needle = query.lower()
    return [
        p
        for p in pool
        if needle in p.name.lower() or needle in (p.email or "").lower() or needle in p.key.lower()
    ]


def resolve_participant(state: SystemState, query: str, checked_in_only: bool = False) -> Participant:
    if query in state.participants:
        return state.participants[query]
    found = find_participants(state, query, checked_in_only=checked_in_only)
    if not found:
        raise UnknownParticipant(f"No participant found matching '{query}'")
    if len(found) > 1:
        raise AmbiguousSearch(query, [p.key for p in found])
    return found[0]


def reset(state: SystemState) -> None:
    """Clear check-ins, wristbands, history, batches and request progress.

    Participant attributes and the special request list itself are kept.
    """
    state.batches = []
    state.next_standard = 1
    state.next_walkin = WALKIN_START
    state.last_operation = None
    for participant in state.participants.values():
        participant.checked_in = False
        participant.wristband_number = None
        participant.match_history = set()
    for request in state.special_requests:
        request.consecutive_co_presence_count = 0
        request.fulfilled = False
    logger.info("State reset: %d participants kept", len(state.participants))


def load_state(path: Path) -> SystemState:
    if not path.exists():
        logger.info("No previous state at %s, starting fresh", path)
        return SystemState()
    state = SystemState.model_validate_json(path.read_text(encoding="utf-8"))
    logger.info("State loaded from %s (%d participants)", path, len(state.participants))
    return state


def save_state(state: SystemState, path: Path) -> None:
    """Rewrite the whole state file; the previous file survives a crash mid-write."""
    state.last_updated = datetime.now(timezone.utc)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(state.model_dump_json(indent=2))
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
