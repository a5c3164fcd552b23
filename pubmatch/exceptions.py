"""Exceptions raised by the pubmatch engine.

Every error the operator can trigger derives from ``PubMatchError`` so the CLI
can report it with a single except clause and keep running.
"""

from __future__ import annotations

from typing import List, Sequence


class PubMatchError(Exception):
    """Base exception for all pubmatch errors."""

    pass


# ========== Check-in / wristband ==========


class CheckInError(PubMatchError):
    """Base exception for the wristband allocator."""

    pass


class AlreadyCheckedIn(CheckInError):
    """Raised when checking in someone who is already checked in."""

    pass


class NotCheckedIn(CheckInError):
    """Raised when checking out someone who is not checked in."""

    pass


class NothingToUndo(CheckInError):
    """Raised when the undo slot is empty."""

    pass


class WristbandCollision(CheckInError):
    """Raised when an override would give a wristband to a second person."""

    def __init__(self, number: int, holder: str):
        self.number = number
        self.holder = holder
        super().__init__(f"Wristband #{number} is already assigned to {holder}")


# ========== Lookup ==========


class LookupFailed(PubMatchError):
    """Base exception for participant searches."""

    pass


class UnknownParticipant(LookupFailed):
    """Raised when a key or search matches nobody."""

    pass


class AmbiguousSearch(LookupFailed):
    """Raised when a search matches more than one participant."""

    def __init__(self, query: str, candidates: Sequence[str]):
        self.query = query
        self.candidates: List[str] = list(candidates)
        super().__init__(f"'{query}' matches {len(self.candidates)} participants")


# ========== Matching ==========


class MatchingError(PubMatchError):
    """Base exception for batch generation."""

    pass


class InsufficientParticipants(MatchingError):
    """Raised when fewer than two people are checked in."""

    pass


class NoCompatibleMatches(MatchingError):
    """Raised when no phase produced a single record."""

    pass


class StaleProposal(MatchingError):
    """Raised when committing a proposal built against an older ledger."""

    pass


# ========== Ingestion ==========


class MalformedPhone(PubMatchError):
    """Raised for a phone number that does not normalize to 10 digits."""

    def __init__(self, raw: object):
        self.raw = raw
        super().__init__(f"Phone number '{raw}' does not have 10 digits")


# ========== Dispatch ==========


class DispatchError(PubMatchError):
    """Base exception for SMS dispatch."""

    pass


class DispatchFailure(DispatchError):
    """Raised by a gateway when a single message could not be sent."""

    pass


class GatewayNotConfigured(DispatchError):
    """Raised when SMS credentials are missing."""

    pass


class AlreadyDispatched(DispatchError):
    """Raised when marking a batch that already has a dispatch timestamp."""

    pass
