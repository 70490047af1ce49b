"""
Match Inputs Repository

Reads the collaborator data a no-show pass needs for one match:
the post-match surveys and the roster (participant -> linked user).

Read-only. Any failure here aborts the pass before anything is written.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import MatchParticipantDB, PostMatchSurveyDB
from ...models.ledger_models import MatchInputs, SurveyReport
from .errors import InputUnavailableError


logger = logging.getLogger(__name__)


class MatchInputsRepository:
    """Loads surveys and roster for a match."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, match_id: str) -> MatchInputs:
        """
        Load surveys and roster for a match.

        Raises:
            InputUnavailableError: storage failed, or the match has no roster
        """
        try:
            surveys = self.load_surveys(match_id)
            roster = self.load_roster(match_id)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to read inputs for match {match_id}: {e}")
            raise InputUnavailableError(match_id, str(e)) from e

        if not roster:
            raise InputUnavailableError(match_id, "no roster found")

        return MatchInputs(match_id=match_id, surveys=surveys, roster=roster)

    def load_surveys(self, match_id: str) -> List[SurveyReport]:
        rows = (
            self.db.query(PostMatchSurveyDB)
            .filter(PostMatchSurveyDB.match_id == match_id)
            .order_by(PostMatchSurveyDB.created_at)
            .all()
        )
        return [
            SurveyReport(
                voter_id=row.voter_id,
                match_played=bool(row.match_played),
                absent_player_ids=[str(pid) for pid in (row.absent_player_ids or []) if pid],
            )
            for row in rows
        ]

    def load_roster(self, match_id: str) -> Dict[str, Optional[str]]:
        rows = (
            self.db.query(MatchParticipantDB)
            .filter(MatchParticipantDB.match_id == match_id)
            .all()
        )
        return {row.id: row.user_id for row in rows}
