"""
Rating Adjustment Ledger

Append-only record of every rating mutation produced by the no-show system.

Core Principles:
1. The Ledger is the source of truth. Stored ratings can be rebuilt from it.
2. Append-only - no updates or deletes.
3. At most one row per (user, match, kind). The unique constraint is the
   idempotence guard; a duplicate insert is a normal skip, not an error.
4. Debt is derived, never stored: sum(penalties) - sum(recoveries).
"""
from uuid import uuid4
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import AdjustmentKind, RatingAdjustmentDB


ZERO = Decimal("0")
CENT = Decimal("0.01")


class AdjustmentLedger:
    """
    Service for the append-only rating adjustment ledger.

    Provides:
    - record(): insert-or-ignore of a penalty or recovery row
    - read queries by user and by (user, match)
    - debt(): outstanding penalty debt for a user
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # WRITES
    # =========================================================================

    def record(
        self,
        user_id: str,
        match_id: str,
        kind: AdjustmentKind,
        magnitude: Decimal,
        details: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> Optional[RatingAdjustmentDB]:
        """
        Insert an adjustment row unless one already exists for (user, match, kind).

        The insert runs in a savepoint so a unique-constraint violation only
        discards this row, not the caller's transaction.

        Args:
            user_id: Linked user account
            match_id: Match that produced the adjustment
            kind: PENALTY or RECOVERY
            magnitude: Positive amount; the kind carries the sign
            details: Free-form metadata (confirming voters, streak cycle)
            created_at: Insert time (default: now)

        Returns:
            The new row, or None if the row already existed
        """
        magnitude = Decimal(magnitude)
        if magnitude <= ZERO:
            raise ValueError(f"Adjustment magnitude must be positive, got {magnitude}")

        adjustment = RatingAdjustmentDB(
            id=str(uuid4()),
            user_id=user_id,
            match_id=match_id,
            kind=kind,
            magnitude=magnitude,
            details=details or {},
            created_at=created_at or datetime.utcnow(),
        )
        try:
            with self.db.begin_nested():
                self.db.add(adjustment)
                self.db.flush()
        except IntegrityError:
            return None
        return adjustment

    # =========================================================================
    # READS
    # =========================================================================

    def exists(self, user_id: str, match_id: str, kind: AdjustmentKind) -> bool:
        return (
            self.db.query(RatingAdjustmentDB.id)
            .filter(
                RatingAdjustmentDB.user_id == user_id,
                RatingAdjustmentDB.match_id == match_id,
                RatingAdjustmentDB.kind == kind,
            )
            .first()
            is not None
        )

    def for_user(self, user_id: str) -> List[RatingAdjustmentDB]:
        """All adjustments for a user, oldest first."""
        return (
            self.db.query(RatingAdjustmentDB)
            .filter(RatingAdjustmentDB.user_id == user_id)
            .order_by(RatingAdjustmentDB.created_at, RatingAdjustmentDB.id)
            .all()
        )

    def for_user_match(self, user_id: str, match_id: str) -> List[RatingAdjustmentDB]:
        return (
            self.db.query(RatingAdjustmentDB)
            .filter(
                RatingAdjustmentDB.user_id == user_id,
                RatingAdjustmentDB.match_id == match_id,
            )
            .order_by(RatingAdjustmentDB.created_at, RatingAdjustmentDB.id)
            .all()
        )

    # =========================================================================
    # DEBT
    # =========================================================================

    def debt(self, user_id: str) -> Decimal:
        """
        Outstanding debt for a user.

        debt = sum(penalty magnitudes) - sum(recovery magnitudes), over every
        adjustment ever recorded for the user.
        """
        signed = case(
            (RatingAdjustmentDB.kind == AdjustmentKind.PENALTY, RatingAdjustmentDB.magnitude),
            else_=-RatingAdjustmentDB.magnitude,
        )
        total = (
            self.db.query(func.coalesce(func.sum(signed), 0))
            .filter(RatingAdjustmentDB.user_id == user_id)
            .scalar()
        )
        return Decimal(str(total)).quantize(CENT)


def compute_debt(adjustments: List[RatingAdjustmentDB]) -> Decimal:
    """Debt over an already-loaded adjustment history."""
    total = ZERO
    for adjustment in adjustments:
        magnitude = Decimal(str(adjustment.magnitude))
        if adjustment.kind == AdjustmentKind.PENALTY:
            total += magnitude
        else:
            total -= magnitude
    return total.quantize(CENT)
