"""Append-only ledger of committed match batches."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set

from .exceptions import AlreadyDispatched
from .models import FRIEND_KINDS, MatchBatch, MatchRecord, SystemState


def next_batch_number(state: SystemState) -> int:
    return len(state.batches) + 1


def append_batch(
    state: SystemState, records: Iterable[MatchRecord], created_at: Optional[datetime] = None
) -> MatchBatch:
    batch = MatchBatch(
        number=next_batch_number(state),
        created_at=created_at or datetime.now(timezone.utc),
        records=list(records),
    )
    state.batches.append(batch)
    return batch


def get_batch(state: SystemState, number: int) -> Optional[MatchBatch]:
    return next((b for b in state.batches if b.number == number), None)


def unsent_batches(state: SystemState) -> List[MatchBatch]:
    return [b for b in state.batches if not b.dispatched]


def latest_unsent(state: SystemState) -> Optional[MatchBatch]:
    pending = unsent_batches(state)
    return pending[-1] if pending else None


def mark_dispatched(batch: MatchBatch, when: Optional[datetime] = None) -> MatchBatch:
    if batch.dispatched_at is not None:
        raise AlreadyDispatched(f"Batch #{batch.number} was already sent at {batch.dispatched_at.isoformat()}")
    batch.dispatched_at = when or datetime.now(timezone.utc)
    return batch


def friend_designated_keys(state: SystemState) -> Set[str]:
    """Everyone who has ever been placed in a friend pair or friend group."""
    keys: Set[str] = set()
    for batch in state.batches:
        for record in batch.records:
            if record.kind in FRIEND_KINDS:
                keys.update(record.keys)
    return keys


def total_records(state: SystemState) -> int:
    return sum(len(b.records) for b in state.batches)
