"""
Batch generation for the live event.

One run works on a snapshot of everyone currently checked in and goes through
four ordered phases, sharing a single ``claimed`` set so nobody lands in two
records:

- Phase 0: forced pairings from special requests (second run together)
- Phase 1: romantic pairs, people with a past friend designation first
- Phase 2: pick who may receive a friend designation this round
- Phase 3: friend pairs for pairs blocked by a hard constraint, plus one
  group of three when a single person is left over

``propose_batch`` never touches the state. The operator reviews the proposal
and ``commit_batch`` writes history, the ledger entry and the special request
progress in one step.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .exceptions import InsufficientParticipants, NoCompatibleMatches, StaleProposal
from .ingest import normalize_phone
from .ledger import append_batch, friend_designated_keys, next_batch_number
from .models import (
    SPECIAL_SCORE,
    BlockReason,
    MatchBatch,
    MatchKind,
    MatchMember,
    MatchRecord,
    Participant,
    SpecialRequest,
    SystemState,
)
from .scoring import can_match, romantic_block_reason, score
from .store import checked_in


logger = logging.getLogger(__name__)

SPECIAL_REQUEST_THRESHOLD = 2


@dataclass
class RequestUpdate:
    """Staged change to one special request, applied only on commit."""

    identity: Tuple[str, Optional[str]]
    new_count: int
    fulfil: bool = False


@dataclass
class CandidatePair:
    a: Participant
    b: Participant
    score: int
    priority: int = 0
    reason: Optional[BlockReason] = None


@dataclass
class BatchProposal:
    batch_number: int
    records: List[MatchRecord]
    request_updates: List[RequestUpdate] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)
    considered: int = 0

    def by_kind(self, kind: MatchKind) -> List[MatchRecord]:
        return [r for r in self.records if r.kind == kind]

    @property
    def claimed(self) -> Set[str]:
        return {key for record in self.records for key in record.keys}


def _member(p: Participant) -> MatchMember:
    return MatchMember(key=p.key, name=p.name, wristband=p.wristband_number, phone=p.phone)


def _record(kind: MatchKind, people: Sequence[Participant], points: int, reason: Optional[BlockReason] = None) -> MatchRecord:
    return MatchRecord(kind=kind, members=tuple(_member(p) for p in people), score=points, reason=reason)


def normalize_name(name: Optional[str]) -> str:
    return " ".join((name or "").split()).lower()


def find_by_phone(phone: Optional[str], pool: Sequence[Participant]) -> Optional[Participant]:
    wanted = normalize_phone(phone)
    if not wanted:
        return None
    return next((p for p in pool if normalize_phone(p.phone) == wanted), None)


def find_by_name(name: Optional[str], pool: Sequence[Participant]) -> Optional[Participant]:
    # exact full-name match only; "Kevin Wu" must not pick up "Lilly Wu"
    wanted = normalize_name(name)
    if not wanted:
        return None
    found = [p for p in pool if normalize_name(p.name) == wanted]
    if len(found) > 1:
        logger.warning(
            "Name '%s' matches %d people (%s); using %s",
            name,
            len(found),
            ", ".join(p.key for p in found),
            found[0].key,
        )
    return found[0] if found else None


def resolve_request(
    request: SpecialRequest, pool: Sequence[Participant]
) -> Tuple[Optional[Participant], Optional[Participant]]:
    """Find requester (by phone) and requested person (phone, then exact name) in ``pool``."""
    requester = find_by_phone(request.requester_phone, pool)
    requested = find_by_phone(request.requested_phone, pool) if request.requested_phone else None
    if requested is None and request.requested_name:
        requested = find_by_name(request.requested_name, pool)
    return requester, requested


# ---- Phase 0 ----
def forced_pairs(
    requests: Sequence[SpecialRequest], pool: Sequence[Participant], claimed: Set[str]
) -> Tuple[List[MatchRecord], List[RequestUpdate]]:
    """Emit ``special`` records for requests whose parties are present together a second time.

    Forced pairs skip the no-repeat rule on purpose: two people who asked for
    each other may be paired even if the algorithm matched them before.
    """
    records: List[MatchRecord] = []
    updates: List[RequestUpdate] = []
    emitted: Set[frozenset] = set()

    for request in requests:
        if request.fulfilled:
            continue
        requester, requested = resolve_request(request, pool)
        if requester is None or requested is None or requester.key == requested.key:
            continue

        update = RequestUpdate(identity=request.identity, new_count=request.consecutive_co_presence_count + 1)
        updates.append(update)
        logger.debug(
            "%s <-> %s: batch %d/%d together",
            requester.name,
            requested.name,
            update.new_count,
            SPECIAL_REQUEST_THRESHOLD,
        )
        if update.new_count < SPECIAL_REQUEST_THRESHOLD:
            continue

        pair = frozenset((requester.key, requested.key))
        if pair in emitted:
            # mutual request, the other direction already produced the record
            update.fulfil = True
            continue
        if requester.key in claimed or requested.key in claimed:
            logger.warning(
                "Special request %s -> %s deferred: one of them is already in a special match",
                requester.name,
                requested.name,
            )
            continue
        records.append(_record(MatchKind.SPECIAL, (requester, requested), SPECIAL_SCORE))
        emitted.add(pair)
        claimed.update(pair)
        update.fulfil = True

    return records, updates


# ---- Phase 1 ----
def romantic_candidates(pool: Sequence[Participant], prioritized: Set[str]) -> List[CandidatePair]:
    """All romantically eligible pairs, ordered by (priority desc, score desc).

    Python's sort is stable, so ties keep enumeration order.
    """
    pairs: List[CandidatePair] = []
    for i, a in enumerate(pool):
        for b in pool[i + 1:]:
            if not can_match(a, b, romantic=True):
                continue
            priority = (1 if a.key in prioritized else 0) + (1 if b.key in prioritized else 0)
            pairs.append(CandidatePair(a=a, b=b, score=score(a, b), priority=priority))
    pairs.sort(key=lambda c: (-c.priority, -c.score))
    return pairs


def greedy_select(candidates: Sequence[CandidatePair], claimed: Set[str]) -> List[CandidatePair]:
    """Take candidates in order, skipping any that touch an already claimed key."""
    chosen: List[CandidatePair] = []
    for cand in candidates:
        if cand.a.key in claimed or cand.b.key in claimed:
            continue
        chosen.append(cand)
        claimed.add(cand.a.key)
        claimed.add(cand.b.key)
    return chosen


# ---- Phase 3 ----
def friend_candidates(pool: Sequence[Participant]) -> List[CandidatePair]:
    """Pairs that pass the basic checks but are blocked from a romantic match.

    Low affinity alone never yields a friend pair; only the gender or grade
    constraint does.
    """
    pairs: List[CandidatePair] = []
    for i, a in enumerate(pool):
        for b in pool[i + 1:]:
            if not can_match(a, b, romantic=False):
                continue
            reason = romantic_block_reason(a, b)
            if reason is None:
                continue
            pairs.append(CandidatePair(a=a, b=b, score=score(a, b), reason=reason))
    pairs.sort(key=lambda c: -c.score)
    return pairs


def propose_batch(state: SystemState) -> BatchProposal:
    """Build the next batch without changing ``state``.

    Raises:
        InsufficientParticipants: Fewer than two people are checked in.
        NoCompatibleMatches: No phase produced a record.
    """
    snapshot = [p.model_copy(deep=True) for p in checked_in(state)]
    if len(snapshot) < 2:
        raise InsufficientParticipants(
            f"Need at least 2 people checked in to generate matches (currently {len(snapshot)})"
        )
    logger.info("Generating matches for %d checked-in participants", len(snapshot))

    claimed: Set[str] = set()
    prioritized = friend_designated_keys(state)

    # Phase 0
    special, updates = forced_pairs(state.special_requests, snapshot, claimed)
    logger.info("Phase 0: %d special request matches", len(special))

    # Phase 1
    open_pool = [p for p in snapshot if p.key not in claimed]
    romantic = greedy_select(romantic_candidates(open_pool, prioritized), claimed)
    logger.info(
        "Phase 1: %d romantic matches (%d with friend-history priority)",
        len(romantic),
        sum(1 for c in romantic if c.priority > 0),
    )

    # Phase 2
    eligible = [p for p in snapshot if p.key not in claimed and p.key not in prioritized]
    skipped = sum(1 for p in snapshot if p.key not in claimed and p.key in prioritized)
    if skipped:
        logger.info("%d people already had a friend match and stay unmatched this batch", skipped)

    # Phase 3
    friends: List[CandidatePair] = []
    group: Optional[Tuple[Participant, Participant, Participant]] = None
    if len(eligible) >= 2:
        friends = greedy_select(friend_candidates(eligible), claimed)
        leftover = [p for p in eligible if p.key not in claimed]
        if len(leftover) == 1 and friends:
            last = friends.pop()
            group = (last.a, last.b, leftover[0])
            claimed.add(leftover[0].key)
    logger.info("Phase 3: %d friend pairs, %d groups of 3", len(friends), 1 if group else 0)

    records = list(special)
    records += [_record(MatchKind.ROMANTIC, (c.a, c.b), c.score) for c in romantic]
    records += [_record(MatchKind.FRIEND, (c.a, c.b), c.score, c.reason) for c in friends]
    if group is not None:
        records.append(_record(MatchKind.FRIEND_GROUP, group, 0))

    if not records:
        raise NoCompatibleMatches("No compatible matches found among checked-in participants")

    return BatchProposal(
        batch_number=next_batch_number(state),
        records=records,
        request_updates=updates,
        unmatched=[p.key for p in snapshot if p.key not in claimed],
        considered=len(snapshot),
    )


def _link(state: SystemState, keys: Sequence[str]) -> None:
    for key in keys:
        others = [k for k in keys if k != key]
        state.participants[key].match_history.update(others)


def commit_batch(state: SystemState, proposal: BatchProposal, now: Optional[datetime] = None) -> MatchBatch:
    """Write a confirmed proposal into the store and the ledger.

    Raises:
        StaleProposal: The ledger or the roster changed since the proposal was built.
    """
    if proposal.batch_number != next_batch_number(state):
        raise StaleProposal(
            f"Proposal was built for batch #{proposal.batch_number}, next batch is #{next_batch_number(state)}"
        )
    missing = [k for k in proposal.claimed if k not in state.participants]
    if missing:
        raise StaleProposal(f"Participants no longer in the roster: {', '.join(sorted(missing))}")

    for record in proposal.records:
        _link(state, record.keys)

    by_identity: Dict[Tuple[str, Optional[str]], SpecialRequest] = {r.identity: r for r in state.special_requests}
    for update in proposal.request_updates:
        request = by_identity.get(update.identity)
        if request is None:
            continue
        request.consecutive_co_presence_count = max(request.consecutive_co_presence_count, update.new_count)
        if update.fulfil:
            request.fulfilled = True

    batch = append_batch(state, proposal.records, created_at=now)
    state.last_operation = None
    logger.info("Saved %d matches to batch #%d", len(batch.records), batch.number)
    return batch
