"""
Matchday Ledger - No-Show Pass Data Models

In-memory structures passed between the quorum resolver, the penalty
applier, the recovery tracker and the pass orchestrator.
None of these are persisted directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


# =============================================================================
# ENUMS
# =============================================================================

class SkipReason(str, Enum):
    """Why a participant produced no ledger write in a pass."""
    GUEST = "guest"                          # No linked user account
    NOT_ON_ROSTER = "not_on_roster"          # Reported absent but not a participant of the match
    ALREADY_APPLIED = "already_applied"      # Penalty/recovery row already exists
    ALREADY_PROCESSED = "already_processed"  # Streak already advanced for this match
    EXCUSED = "excused"                      # Absence notice filed in time / replacement found
    MATCH_NOT_PLAYED = "match_not_played"    # Nobody confirmed the match happened


# =============================================================================
# INPUTS
# =============================================================================

@dataclass(frozen=True)
class SurveyReport:
    """One voter's attendance report for a match."""
    voter_id: str
    match_played: bool
    absent_player_ids: List[str] = field(default_factory=list)


@dataclass
class MatchInputs:
    """Everything the core reads from collaborators for one match."""
    match_id: str
    surveys: List[SurveyReport]
    roster: Dict[str, Optional[str]]  # participant_id -> user_id (None for guests)

    def on_roster(self, participant_id: str) -> bool:
        return participant_id in self.roster

    def linked_user(self, participant_id: str) -> Optional[str]:
        return self.roster.get(participant_id)

    def linked_users(self) -> Dict[str, str]:
        """user_id -> participant_id, guests excluded, first participant wins."""
        users: Dict[str, str] = {}
        for participant_id, user_id in self.roster.items():
            if user_id and user_id not in users:
                users[user_id] = participant_id
        return users


# =============================================================================
# QUORUM OUTPUT
# =============================================================================

@dataclass(frozen=True)
class QuorumResult:
    """
    Outcome of quorum resolution for one match.

    witnesses holds every reported player with their distinct non-self voters;
    confirmed is the subset that reached the threshold.
    """
    match_played: bool
    threshold: int
    witnesses: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    confirmed: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    @property
    def confirmed_ids(self) -> FrozenSet[str]:
        return frozenset(self.confirmed)

    def is_confirmed_absent(self, participant_id: str) -> bool:
        return participant_id in self.confirmed


# =============================================================================
# PASS RESULT
# =============================================================================

@dataclass
class SkipEntry:
    """A participant that produced no ledger write, and why."""
    reason: SkipReason
    stage: str  # "penalty" or "recovery"
    participant_id: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason.value,
            "stage": self.stage,
            "participant_id": self.participant_id,
            "user_id": self.user_id,
        }


@dataclass
class DownstreamFailure:
    """A rating-store mutation that failed after its ledger row was committed."""
    user_id: str
    operation: str  # "penalty" or "recovery"
    field: str
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "operation": self.operation,
            "field": self.field,
            "amount": str(self.amount),
        }


@dataclass
class LedgerPassResult:
    """Structured result of one no-show pass over a match."""
    match_id: str
    match_played: bool = False
    confirmed_absent: List[str] = field(default_factory=list)
    penalties_applied: List[str] = field(default_factory=list)
    recoveries_applied: List[str] = field(default_factory=list)
    skipped: List[SkipEntry] = field(default_factory=list)
    failures: List[DownstreamFailure] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def skip(
        self,
        reason: SkipReason,
        stage: str,
        participant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        self.skipped.append(SkipEntry(reason, stage, participant_id, user_id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "match_played": self.match_played,
            "confirmed_absent": list(self.confirmed_absent),
            "penalties_applied": list(self.penalties_applied),
            "recoveries_applied": list(self.recoveries_applied),
            "skipped": [s.to_dict() for s in self.skipped],
            "failures": [f.to_dict() for f in self.failures],
            "error": self.error,
        }
