"""
Recovery Tracker

Forgiveness for players carrying no-show debt. Every linked participant of a
processed match either:
- was confirmed absent: streak resets to 0
- attended with no debt: streak resets to 0 (no streak without debt)
- attended with debt: streak += 1, and every `cycle_length`-th step grants a
  recovery of min(recovery_step, debt)

Streak updates for one user are serialized: an in-process lock per user plus
a row lock on the streak row, with each user's step committed while held.
An attendance record per (user, match) keeps re-processing from advancing
a streak twice. An absence confirmed only on a later pass still resets it.
"""
import logging
import threading
from contextlib import contextmanager
from uuid import uuid4
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import LEDGER_CONFIG
from ...models.db_models import AdjustmentKind, AttendanceRecordDB, RecoveryStreakDB
from ...models.ledger_models import (
    DownstreamFailure,
    LedgerPassResult,
    MatchInputs,
    QuorumResult,
    SkipReason,
)
from .adjustment_ledger import AdjustmentLedger, ZERO
from .rating_store import RatingStore


logger = logging.getLogger(__name__)

STAGE = "recovery"


class UserLockRegistry:
    """One lock per user id, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(user_id, threading.Lock())
        with lock:
            yield


# Shared by every tracker in this process
default_user_locks = UserLockRegistry()


class RecoveryTracker:
    """Advances attendance streaks and grants recoveries for one match."""

    def __init__(
        self,
        db: Session,
        cycle_length: Optional[int] = None,
        recovery_step: Optional[Decimal] = None,
        locks: Optional[UserLockRegistry] = None,
    ):
        self.db = db
        self.cycle_length = cycle_length or LEDGER_CONFIG["recovery_cycle_length"]
        self.recovery_step = Decimal(
            recovery_step if recovery_step is not None else LEDGER_CONFIG["recovery_step"]
        )
        self.locks = locks or default_user_locks
        self.ledger = AdjustmentLedger(db)
        self.ratings = RatingStore(db)

    # =========================================================================
    # PASS
    # =========================================================================

    def track(
        self,
        inputs: MatchInputs,
        quorum: QuorumResult,
        result: LedgerPassResult,
    ) -> LedgerPassResult:
        """
        Advance or reset the streak of every linked participant of the match.

        Args:
            inputs: Roster and surveys for the match
            quorum: Output of QuorumResolver.resolve()
            result: Pass result to append to

        Returns:
            The same result, with recoveries and skips filled in
        """
        for participant_id, user_id in sorted(inputs.roster.items()):
            if not user_id and not quorum.is_confirmed_absent(participant_id):
                result.skip(SkipReason.GUEST, STAGE, participant_id=participant_id)

        absent_users: Set[str] = {
            inputs.linked_user(pid) for pid in quorum.confirmed if inputs.linked_user(pid)
        }

        for user_id, participant_id in sorted(inputs.linked_users().items()):
            attended = user_id not in absent_users
            with self.locks.hold(user_id):
                try:
                    self.track_user(user_id, inputs.match_id, attended, result, participant_id)
                    self.db.commit()
                except Exception:
                    self.db.rollback()
                    raise

        return result

    def track_user(
        self,
        user_id: str,
        match_id: str,
        attended: bool,
        result: LedgerPassResult,
        participant_id: Optional[str] = None,
    ) -> None:
        """
        Process one user's streak step for a match. Caller holds the user lock.

        An attended step runs once per (user, match). An absence confirmed on a
        later pass, after the user was recorded as attending, still resets the
        streak and flips the attendance marker.
        """
        if not self._record_attendance(user_id, match_id, attended):
            if attended or not self._mark_absent(user_id, match_id):
                logger.debug(f"Match {match_id}: streak for user {user_id} already processed")
                result.skip(SkipReason.ALREADY_PROCESSED, STAGE, participant_id, user_id)
                return
            logger.info(f"Match {match_id}: user {user_id} now confirmed absent on re-processing")

        state = self._lock_streak(user_id)
        now = datetime.utcnow()

        if not attended:
            if state.streak:
                logger.info(f"Match {match_id}: user {user_id} absent, streak {state.streak} -> 0")
            state.streak = 0
            state.updated_at = now
            return

        debt = self.ledger.debt(user_id)
        if debt <= ZERO:
            state.streak = 0
            state.updated_at = now
            return

        state.streak = (state.streak or 0) + 1
        state.updated_at = now
        self.db.flush()
        streak = state.streak

        if streak % self.cycle_length != 0:
            return

        if self.ledger.exists(user_id, match_id, AdjustmentKind.RECOVERY):
            result.skip(SkipReason.ALREADY_APPLIED, STAGE, participant_id, user_id)
            return

        amount = min(self.recovery_step, debt)
        if amount <= ZERO:
            return

        row = self.ledger.record(
            user_id=user_id,
            match_id=match_id,
            kind=AdjustmentKind.RECOVERY,
            magnitude=amount,
            details={
                "streak": streak,
                "cycle": streak // self.cycle_length,
                "debt_before": str(debt),
            },
        )
        if row is None:
            result.skip(SkipReason.ALREADY_APPLIED, STAGE, participant_id, user_id)
            return

        # Ledger row and streak are durable before the rating mutation
        self.db.commit()
        result.recoveries_applied.append(user_id)
        logger.info(
            f"Match {match_id}: recovery {amount} granted to user {user_id} "
            f"(streak {streak}, debt before {debt})"
        )

        if not self.ratings.apply_delta("profile", user_id, "rating", amount):
            logger.error(
                f"Match {match_id}: could not add recovery {amount} to rating of user {user_id}; "
                f"ledger row kept for reconciliation"
            )
            result.failures.append(
                DownstreamFailure(user_id=user_id, operation=STAGE, field="rating", amount=amount)
            )

    # =========================================================================
    # STREAK STATE
    # =========================================================================

    def get_streak(self, user_id: str) -> int:
        state = (
            self.db.query(RecoveryStreakDB)
            .filter(RecoveryStreakDB.user_id == user_id)
            .first()
        )
        return state.streak if state else 0

    def _lock_streak(self, user_id: str) -> RecoveryStreakDB:
        """Fetch the user's streak row with a row lock, creating it on first use."""
        state = (
            self.db.query(RecoveryStreakDB)
            .filter(RecoveryStreakDB.user_id == user_id)
            .with_for_update()
            .first()
        )
        if state is not None:
            return state

        state = RecoveryStreakDB(user_id=user_id, streak=0, updated_at=datetime.utcnow())
        try:
            with self.db.begin_nested():
                self.db.add(state)
                self.db.flush()
            return state
        except IntegrityError:
            return (
                self.db.query(RecoveryStreakDB)
                .filter(RecoveryStreakDB.user_id == user_id)
                .with_for_update()
                .one()
            )

    def _record_attendance(self, user_id: str, match_id: str, attended: bool) -> bool:
        """Insert the (user, match) attendance marker. False if it already existed."""
        record = AttendanceRecordDB(
            id=str(uuid4()),
            user_id=user_id,
            match_id=match_id,
            attended=attended,
        )
        try:
            with self.db.begin_nested():
                self.db.add(record)
                self.db.flush()
        except IntegrityError:
            return False
        return True

    def _mark_absent(self, user_id: str, match_id: str) -> bool:
        """Flip an existing attended marker to absent. False if it was already absent."""
        record = (
            self.db.query(AttendanceRecordDB)
            .filter(
                AttendanceRecordDB.user_id == user_id,
                AttendanceRecordDB.match_id == match_id,
            )
            .with_for_update()
            .one()
        )
        if not record.attended:
            return False
        record.attended = False
        self.db.flush()
        return True
