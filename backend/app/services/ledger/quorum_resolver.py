"""
Quorum Resolver

Turns independent, possibly conflicting attendance reports into the set of
players whose absence is confirmed for a match.

Pure computation: no side effects.

Rules:
- A match nobody says was played has no confirmed absences.
- A voter reporting themselves absent is ignored for that entry only.
- Confirmation is a boolean gate: at least `threshold` distinct voters.
"""
from typing import Dict, Iterable, Optional, Set

from ...config import LEDGER_CONFIG
from ...models.ledger_models import QuorumResult, SurveyReport


class QuorumResolver:
    """Derives confirmed absences from a match's surveys."""

    def __init__(self, threshold: Optional[int] = None):
        self.threshold = threshold if threshold is not None else LEDGER_CONFIG["absence_quorum"]

    @staticmethod
    def match_was_played(surveys: Iterable[SurveyReport]) -> bool:
        """
        A match counts as played only if at least one voter says so.

        No surveys at all, or only "not played" votes, means not played.
        """
        return any(survey.match_played for survey in surveys)

    @staticmethod
    def collect_witnesses(surveys: Iterable[SurveyReport]) -> Dict[str, Set[str]]:
        """Map each reported player to the distinct non-self voters who reported them."""
        witnesses: Dict[str, Set[str]] = {}
        for survey in surveys:
            for player_id in survey.absent_player_ids:
                if player_id == survey.voter_id:
                    continue
                witnesses.setdefault(player_id, set()).add(survey.voter_id)
        return witnesses

    def resolve(self, surveys: Iterable[SurveyReport]) -> QuorumResult:
        surveys = list(surveys)

        if not self.match_was_played(surveys):
            return QuorumResult(match_played=False, threshold=self.threshold)

        witnesses = {
            player_id: frozenset(voters)
            for player_id, voters in self.collect_witnesses(surveys).items()
        }
        confirmed = {
            player_id: voters
            for player_id, voters in witnesses.items()
            if len(voters) >= self.threshold
        }

        return QuorumResult(
            match_played=True,
            threshold=self.threshold,
            witnesses=witnesses,
            confirmed=confirmed,
        )
