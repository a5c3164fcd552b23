"""Turn a committed batch into SMS messages and send them.

Real send, resend and test send all go through ``dispatch``. Sends are
sequential with a fixed delay; one failed message is recorded and the rest
of the batch still goes out.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from .exceptions import DispatchFailure
from .ledger import mark_dispatched
from .models import FRIEND_KINDS, MatchBatch, MatchRecord
from .sms import SmsGateway


logger = logging.getLogger(__name__)

MATCH_TEMPLATE = "Your {event} match is #{partner}!"
FRIEND_TEMPLATE = (
    "We didn't find a romantic interest for you this round, but you'd make great friends with "
    "{partners}! You'll be prioritized for a romantic match next round."
)
TEST_PREFIX = "[TEST] "


@dataclass(frozen=True)
class OutboundMessage:
    key: str
    name: str
    to: str
    body: str
    wristband: Optional[int] = None
    partner_wristbands: tuple = ()


@dataclass
class SendResult:
    message: OutboundMessage
    ok: bool
    error: Optional[str] = None


@dataclass
class DispatchReport:
    batch_number: int
    redirected_to: Optional[str] = None
    results: List[SendResult] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failures(self) -> List[SendResult]:
        return [r for r in self.results if not r.ok]


def _band(number: Optional[int]) -> str:
    return f"#{number}" if number is not None else "#?"


def compose_messages(record: MatchRecord, event_name: str = "Bridge") -> List[OutboundMessage]:
    """One message per member, naming the other member(s) by wristband."""
    messages = []
    for member in record.members:
        others = [m for m in record.members if m.key != member.key]
        if record.kind in FRIEND_KINDS:
            body = FRIEND_TEMPLATE.format(partners=" and ".join(_band(o.wristband) for o in others))
        else:
            body = MATCH_TEMPLATE.format(event=event_name, partner=others[0].wristband if others[0].wristband is not None else "?")
        messages.append(
            OutboundMessage(
                key=member.key,
                name=member.name,
                to=member.phone,
                body=body,
                wristband=member.wristband,
                partner_wristbands=tuple(o.wristband for o in others),
            )
        )
    return messages


def batch_messages(batch: MatchBatch, event_name: str = "Bridge") -> List[OutboundMessage]:
    return [msg for record in batch.records for msg in compose_messages(record, event_name)]


def dispatch(
    batch: MatchBatch,
    gateway: SmsGateway,
    redirect_override: Optional[str] = None,
    event_name: str = "Bridge",
    delay: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
    now: Optional[datetime] = None,
) -> DispatchReport:
    """Send every message of ``batch`` through ``gateway``.

    With ``redirect_override`` every message goes to that number with a
    ``[TEST]`` prefix and the batch is left unmarked. Otherwise the batch gets
    its dispatch timestamp after all sends were attempted; a batch that already
    has one (a resend) keeps it.
    """
    report = DispatchReport(batch_number=batch.number, redirected_to=redirect_override)
    for message in batch_messages(batch, event_name):
        to = redirect_override or message.to
        body = f"{TEST_PREFIX}{message.body}" if redirect_override else message.body
        try:
            gateway.send(to, body)
            report.results.append(SendResult(message=message, ok=True))
        except DispatchFailure as exc:
            logger.warning("Failed to send to %s (%s): %s", message.name, to, exc)
            report.results.append(SendResult(message=message, ok=False, error=str(exc)))
        if delay:
            sleep(delay)

    if redirect_override is None and not batch.dispatched:
        mark_dispatched(batch, now)
    logger.info(
        "Batch #%d: %d sent, %d failed%s",
        batch.number,
        report.sent,
        len(report.failures),
        f" (redirected to {redirect_override})" if redirect_override else "",
    )
    return report


def write_failure_log(report: DispatchReport, path: Path, label: str = "Batch") -> None:
    """Append failed sends so the operator can follow up by hand."""
    if not report.failures:
        return
    lines = ["", "=" * 60, f"{label} #{report.batch_number} - {datetime.now().isoformat(timespec='seconds')}", "=" * 60]
    for failure in report.failures:
        msg = failure.message
        lines.append(f"{msg.name} (Wristband {_band(msg.wristband)})")
        lines.append(f"  Phone: {msg.to}")
        lines.append(f"  Match: Wristband {', '.join(_band(w) for w in msg.partner_wristbands)}")
        lines.append(f"  Error: {failure.error}")
        lines.append("")
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write("\n".join(lines) + "\n")
