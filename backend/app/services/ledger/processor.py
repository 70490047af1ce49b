"""
No-Show Ledger Processor

Runs the full no-show pass for a match:

    surveys + roster -> QuorumResolver -> PenaltyApplier -> RecoveryTracker

A pass is safe to repeat from scratch: penalty and recovery rows are
insert-or-ignore on (user, match, kind), and streaks advance at most once
per (user, match).

Failure semantics:
- Inputs unavailable: the pass aborts before writing; result.error is set
- Rating-store failures: reported in result.failures, pass continues
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ...models.ledger_models import LedgerPassResult, SkipReason
from .errors import InputUnavailableError
from .match_inputs import MatchInputsRepository
from .penalty_applier import PenaltyApplier
from .quorum_resolver import QuorumResolver
from .recovery_tracker import RecoveryTracker, UserLockRegistry


logger = logging.getLogger(__name__)


class NoShowLedgerProcessor:
    """
    Orchestrates one no-show pass per match.

    Usage:
        processor = NoShowLedgerProcessor(db)
        result = processor.process_match("match-100")
    """

    def __init__(
        self,
        db: Session,
        resolver: Optional[QuorumResolver] = None,
        locks: Optional[UserLockRegistry] = None,
    ):
        self.db = db
        self.inputs = MatchInputsRepository(db)
        self.resolver = resolver or QuorumResolver()
        self.penalties = PenaltyApplier(db)
        self.recovery = RecoveryTracker(db, locks=locks)

    def process_match(self, match_id: str) -> LedgerPassResult:
        """
        Run the no-show pass for a single match.

        Args:
            match_id: Match to process

        Returns:
            LedgerPassResult with penalties, recoveries, skips and failures
        """
        result = LedgerPassResult(match_id=match_id)
        logger.info(f"Starting no-show pass for match {match_id}")

        try:
            inputs = self.inputs.load(match_id)
        except InputUnavailableError as e:
            logger.warning(f"Aborting no-show pass for match {match_id}: {e}")
            self.db.rollback()
            result.error = str(e)
            return result

        quorum = self.resolver.resolve(inputs.surveys)
        result.match_played = quorum.match_played
        result.confirmed_absent = sorted(quorum.confirmed_ids)

        if not quorum.match_played:
            logger.info(f"Match {match_id} not confirmed as played; no penalties or streak changes")
            for user_id, participant_id in sorted(inputs.linked_users().items()):
                result.skip(SkipReason.MATCH_NOT_PLAYED, "recovery", participant_id, user_id)
            return result

        self.penalties.apply(inputs, quorum, result)
        self.recovery.track(inputs, quorum, result)

        logger.info(
            f"No-show pass for match {match_id} complete: "
            f"{len(result.penalties_applied)} penalties, "
            f"{len(result.recoveries_applied)} recoveries, "
            f"{len(result.skipped)} skipped, {len(result.failures)} downstream failures"
        )
        return result


class NoShowScheduler:
    """
    Batch runner for the no-show pass.

    AUTHORITY: SYSTEM - called from the internal scheduler endpoint.
    Each match is isolated: one match failing never blocks the others.
    """

    def __init__(self, db: Session):
        self.db = db
        self.processor = NoShowLedgerProcessor(db)

    def run(self, match_ids: Iterable[str]) -> Dict[str, Any]:
        started_at = datetime.now(timezone.utc)
        processed = []
        errors = []

        for match_id in match_ids:
            try:
                result = self.processor.process_match(match_id)
            except Exception as e:
                self.db.rollback()
                logger.error(f"No-show pass for match {match_id} failed: {e}")
                errors.append({"match_id": match_id, "error": str(e)})
                continue

            if result.error:
                errors.append({"match_id": match_id, "error": result.error})
                continue
            processed.append(result.to_dict())

        completed_at = datetime.now(timezone.utc)
        return {
            "task": "no_show_pass",
            "run_date": started_at.isoformat(),
            "duration_seconds": (completed_at - started_at).total_seconds(),
            "matches_processed": len(processed),
            "penalties_applied": sum(len(r["penalties_applied"]) for r in processed),
            "recoveries_applied": sum(len(r["recoveries_applied"]) for r in processed),
            "errors": len(errors),
            "details": {
                "results": processed,
                "errors": errors,
            },
        }


def run_no_show_pass(db: Session, match_ids: Iterable[str]) -> Dict[str, Any]:
    """
    Convenience function to run the no-show pass over several matches.

    Args:
        db: Database session
        match_ids: Matches to process

    Returns:
        Batch summary
    """
    return NoShowScheduler(db).run(match_ids)
