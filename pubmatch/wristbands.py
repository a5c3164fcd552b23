"""Check-in / check-out state machine and wristband issuance.

Wristband numbers come from two independent counters: the standard lane
starts at 1 and the walk-in lane at 250 so the ranges are easy to tell apart
at the door. Counters only ever go up, and numbers someone already holds
(after a manual override) are skipped. A participant keeps their number for
the whole event, through check-out, re-entry and undo, so the allocator can
never hand the same number to two people.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .exceptions import AlreadyCheckedIn, NotCheckedIn, NothingToUndo, UnknownParticipant, WristbandCollision
from .models import Lane, LastOperation, OperationKind, Participant, SystemState
from .store import get_participant


logger = logging.getLogger(__name__)


def _issue(state: SystemState, participant: Participant, lane: Lane) -> int:
    if participant.wristband_number is not None:
        return participant.wristband_number
    number = state.next_walkin if lane == Lane.WALKIN else state.next_standard
    # skip numbers handed out by a manual override; counters never go back
    while wristband_holder(state, number) is not None:
        number += 1
    if lane == Lane.WALKIN:
        state.next_walkin = number + 1
    else:
        state.next_standard = number + 1
    participant.wristband_number = number
    return number


def check_in(state: SystemState, key: str, lane: Lane = Lane.STANDARD) -> Participant:
    """Check a participant in, issuing a wristband from ``lane`` on first entry.

    Re-entry reuses the stored wristband and ignores ``lane``.

    Raises:
        AlreadyCheckedIn: The participant is already checked in.
    """
    participant = get_participant(state, key)
    if participant.checked_in:
        raise AlreadyCheckedIn(
            f"{participant.name} is already checked in (Wristband #{participant.wristband_number})"
        )
    reused = participant.wristband_number is not None
    number = _issue(state, participant, lane)
    participant.checked_in = True
    state.last_operation = LastOperation(kind=OperationKind.CHECK_IN, key=key, lane=lane)
    logger.info("Checked in %s with wristband #%d%s", participant.name, number, " (reused)" if reused else "")
    return participant


def check_out(state: SystemState, key: str) -> Participant:
    participant = get_participant(state, key)
    if not participant.checked_in:
        raise NotCheckedIn(f"{participant.name} is not checked in")
    participant.checked_in = False
    state.last_operation = LastOperation(kind=OperationKind.CHECK_OUT, key=key)
    logger.info("Checked out %s (wristband #%s kept)", participant.name, participant.wristband_number)
    return participant


def undo_last(state: SystemState) -> LastOperation:
    """Reverse the last check-in or check-out and empty the undo slot.

    Undoing a check-in leaves the wristband assigned and the counters alone;
    the number stays reserved for the same person.
    """
    op = state.last_operation
    if op is None:
        raise NothingToUndo("No recent check-in/out to undo")
    try:
        participant = get_participant(state, op.key)
    except UnknownParticipant:
        state.last_operation = None
        raise NothingToUndo(f"Participant {op.key} is no longer in the roster") from None

    if op.kind == OperationKind.CHECK_IN:
        participant.checked_in = False
    else:
        participant.checked_in = True
    state.last_operation = None
    logger.info("Undid %s for %s", op.kind.value, participant.name)
    return op


def wristband_holder(state: SystemState, number: int, exclude: Optional[str] = None) -> Optional[Participant]:
    return next(
        (p for p in state.participants.values() if p.wristband_number == number and p.key != exclude),
        None,
    )


def edit_wristband(state: SystemState, key: str, new_number: int, force: bool = False) -> Optional[int]:
    """Override a participant's wristband; returns the previous number.

    Raises:
        WristbandCollision: Someone else holds ``new_number`` and ``force`` is not set.
    """
    if new_number < 1:
        raise ValueError(f"Invalid wristband number: {new_number}")
    participant = get_participant(state, key)
    holder = wristband_holder(state, new_number, exclude=key)
    if holder is not None and not force:
        raise WristbandCollision(new_number, holder.name)
    old = participant.wristband_number
    participant.wristband_number = new_number
    state.last_operation = None
    if holder is not None:
        logger.warning("Wristband #%d forced onto %s while %s also holds it", new_number, participant.name, holder.name)
    logger.info("Wristband for %s: #%s -> #%d", participant.name, old, new_number)
    return old


def check_in_everyone(state: SystemState) -> List[Participant]:
    """Check in everyone not yet checked in through the standard lane.

    Bulk check-in cannot be undone, so the undo slot is cleared.
    """
    done = []
    for participant in state.participants.values():
        if participant.checked_in:
            continue
        _issue(state, participant, Lane.STANDARD)
        participant.checked_in = True
        done.append(participant)
    state.last_operation = None
    logger.info("Bulk checked in %d participants", len(done))
    return done
