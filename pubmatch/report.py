"""Read-only views over the state: ledger export, batch reports and status counts."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .ledger import total_records, unsent_batches
from .matcher import resolve_request
from .models import MatchBatch, MatchKind, SystemState
from .store import checked_in


EXPORT_COLUMNS = ["batch", "names", "wristbands", "type", "score", "generated_at", "sent_at"]

KIND_LABELS = {
    MatchKind.SPECIAL: "Special request",
    MatchKind.ROMANTIC: "Romantic",
    MatchKind.FRIEND: "Friend",
    MatchKind.FRIEND_GROUP: "Friend group",
}


def _band(number: Optional[int]) -> str:
    return f"#{number}" if number is not None else "#?"


def batches_frame(state: SystemState) -> pd.DataFrame:
    """One row per match record across the whole ledger."""
    rows = []
    for batch in state.batches:
        for record in batch.records:
            rows.append(
                {
                    "batch": batch.number,
                    "names": " & ".join(m.name for m in record.members),
                    "wristbands": " & ".join(_band(m.wristband) for m in record.members),
                    "type": record.kind.value,
                    "score": record.score,
                    "generated_at": batch.created_at.isoformat(timespec="seconds"),
                    "sent_at": batch.dispatched_at.isoformat(timespec="seconds") if batch.dispatched_at else "Not sent",
                }
            )
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def export_csv(state: SystemState, out_path: Path) -> int:
    df = batches_frame(state)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out_path, index=False)
    return len(df)


def render_markdown(batch: MatchBatch, out_path_md: Path, event_name: str = "Bridge") -> None:
    """Write a Markdown review of one batch, grouped by match kind.

    Args:
        batch: A committed batch from the ledger.
        out_path_md: Destination file path for the Markdown report.
        event_name: Shown in the title.
    """
    lines: List[str] = []
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    lines.append(f"# {event_name} Batch #{batch.number}\n")
    lines.append(f"Generated: {batch.created_at.isoformat(timespec='seconds')}\n")
    lines.append(f"Sent: {batch.dispatched_at.isoformat(timespec='seconds') if batch.dispatched_at else 'not yet'}\n")
    lines.append(f"Report written: {ts}\n")
    lines.append(f"Total matches: {len(batch.records)}\n\n")

    for kind in MatchKind:
        records = [r for r in batch.records if r.kind == kind]
        if not records:
            continue
        lines.append(f"## {KIND_LABELS[kind]} ({len(records)})\n")
        for i, record in enumerate(records, start=1):
            people = " / ".join(f"{m.name} ({_band(m.wristband)})" for m in record.members)
            detail = ""
            if kind == MatchKind.ROMANTIC or kind == MatchKind.FRIEND:
                detail = f" - score {record.score}"
            if record.reason is not None:
                detail += f", blocked by {record.reason.value.replace('_', ' ')}"
            lines.append(f"{i}. {people}{detail}")
        lines.append("")

    out_path_md.parent.mkdir(parents=True, exist_ok=True)
    out_path_md.write_text("\n".join(lines), encoding="utf-8")


@dataclass
class StatusSummary:
    total: int
    checked_in: int
    genders: Dict[str, int] = field(default_factory=dict)
    owe_count: int = 0
    free_count: int = 0
    amount_due: int = 0
    batches_sent: int = 0
    total_matches: int = 0
    never_matched: int = 0
    distribution: Dict[int, int] = field(default_factory=dict)
    unsent_batches: List[int] = field(default_factory=list)


def status_summary(state: SystemState, entry_fee: int = 3) -> StatusSummary:
    present = checked_in(state)
    genders = Counter(p.gender or "Unknown" for p in present)
    distribution = Counter(len(p.match_history) for p in state.participants.values())
    owe = sum(1 for p in present if p.payment_required)
    return StatusSummary(
        total=len(state.participants),
        checked_in=len(present),
        genders=dict(sorted(genders.items())),
        owe_count=owe,
        free_count=len(present) - owe,
        amount_due=owe * entry_fee,
        batches_sent=sum(1 for b in state.batches if b.dispatched),
        total_matches=total_records(state),
        never_matched=sum(1 for p in present if not p.match_history),
        distribution=dict(sorted(distribution.items())),
        unsent_batches=[b.number for b in unsent_batches(state)],
    )


@dataclass
class RequestStatus:
    requester: str
    requested: str
    count: int
    fulfilled: bool
    requester_found: bool
    requested_found: bool
    both_present: bool


def request_status(state: SystemState) -> List[RequestStatus]:
    """Whether each special request resolves against the roster, and who is here."""
    everyone = list(state.participants.values())
    out = []
    for request in state.special_requests:
        requester, requested = resolve_request(request, everyone)
        out.append(
            RequestStatus(
                requester=request.requester_name or request.requester_phone,
                requested=request.requested_name or request.requested_phone or "?",
                count=request.consecutive_co_presence_count,
                fulfilled=request.fulfilled,
                requester_found=requester is not None,
                requested_found=requested is not None,
                both_present=bool(requester and requested and requester.checked_in and requested.checked_in),
            )
        )
    return out
