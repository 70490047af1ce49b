"""
Penalty Applier

Writes exactly one `penalty` ledger row per (confirmed-absent user, match)
and then asks the rating store to subtract the penalty and count the
abandoned match.

Key behaviors:
- Guests (no linked account) are skipped, never written
- Confirmed ids that are not on the roster are skipped as not_on_roster
- Excused absences (absence notice in time / replacement found) are skipped
- An existing penalty row for (user, match) is a skip, not an error
- Rating mutations run only for newly inserted rows, after the row commits
- A failed rating mutation is logged and reported; it never rolls back the
  ledger row and never blocks other users in the pass
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...config import LEDGER_CONFIG
from ...models.db_models import AdjustmentKind
from ...models.ledger_models import (
    DownstreamFailure,
    LedgerPassResult,
    MatchInputs,
    QuorumResult,
    SkipReason,
)
from .absence_notices import AbsenceNoticeService
from .adjustment_ledger import AdjustmentLedger
from .rating_store import RatingStore


logger = logging.getLogger(__name__)

STAGE = "penalty"


class PenaltyApplier:
    """Applies no-show penalties for one match."""

    def __init__(
        self,
        db: Session,
        magnitude: Optional[Decimal] = None,
        honor_notices: Optional[bool] = None,
    ):
        self.db = db
        self.magnitude = Decimal(magnitude if magnitude is not None else LEDGER_CONFIG["penalty_magnitude"])
        self.honor_notices = (
            honor_notices if honor_notices is not None else LEDGER_CONFIG["honor_absence_notices"]
        )
        self.ledger = AdjustmentLedger(db)
        self.ratings = RatingStore(db)
        self.notices = AbsenceNoticeService(db)

    def apply(
        self,
        inputs: MatchInputs,
        quorum: QuorumResult,
        result: LedgerPassResult,
    ) -> LedgerPassResult:
        """
        Apply penalties for every confirmed absence in `quorum`.

        Args:
            inputs: Roster and surveys for the match
            quorum: Output of QuorumResolver.resolve()
            result: Pass result to append to

        Returns:
            The same result, with penalties, skips and failures filled in
        """
        match_id = inputs.match_id

        for participant_id in sorted(quorum.confirmed):
            voters = sorted(quorum.confirmed[participant_id])
            if not inputs.on_roster(participant_id):
                logger.warning(
                    f"Match {match_id}: confirmed absent participant {participant_id} is not on the roster"
                )
                result.skip(SkipReason.NOT_ON_ROSTER, STAGE, participant_id=participant_id)
                continue

            user_id = inputs.linked_user(participant_id)
            if not user_id:
                logger.debug(f"Match {match_id}: absent participant {participant_id} is a guest")
                result.skip(SkipReason.GUEST, STAGE, participant_id=participant_id)
                continue

            if self.honor_notices and self.notices.is_excused(user_id, match_id):
                logger.info(f"Match {match_id}: absence of user {user_id} excused by notice")
                result.skip(SkipReason.EXCUSED, STAGE, participant_id, user_id)
                continue

            row = self.ledger.record(
                user_id=user_id,
                match_id=match_id,
                kind=AdjustmentKind.PENALTY,
                magnitude=self.magnitude,
                details={
                    "participant_id": participant_id,
                    "confirmed_by": voters,
                    "confirmations": len(voters),
                },
            )
            if row is None:
                logger.debug(f"Match {match_id}: penalty for user {user_id} already applied")
                result.skip(SkipReason.ALREADY_APPLIED, STAGE, participant_id, user_id)
                continue

            # Ledger row is the commit point
            self.db.commit()
            result.penalties_applied.append(user_id)
            logger.info(
                f"Match {match_id}: penalty {self.magnitude} recorded for user {user_id} "
                f"({len(voters)} confirmations)"
            )

            self._apply_downstream(user_id, result)

        return result

    def _apply_downstream(self, user_id: str, result: LedgerPassResult) -> None:
        mutations = (
            ("rating", -self.magnitude),
            ("matches_abandoned", 1),
        )
        for field, amount in mutations:
            if self.ratings.apply_delta("profile", user_id, field, amount):
                continue
            logger.error(
                f"Match {result.match_id}: could not apply {field} {amount} for user {user_id}; "
                f"ledger row kept for reconciliation"
            )
            result.failures.append(
                DownstreamFailure(user_id=user_id, operation=STAGE, field=field, amount=Decimal(amount))
            )
        self.db.commit()
