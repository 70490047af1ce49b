"""
Absence Notice Service

Players can warn ahead of time that they will miss a match. A notice filed
at least `notice_min_hours` before kickoff, or one where the player found a
replacement, excuses the no-show penalty for that match.

The notice does not stop the absence from counting as an absence: the
recovery streak still resets.
"""
import logging
from uuid import uuid4
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...config import LEDGER_CONFIG
from ...models.db_models import AbsenceNoticeDB, MatchDB
from .errors import LedgerServiceError


logger = logging.getLogger(__name__)


class AbsenceNoticeService:
    """Records absence notices and answers whether a no-show is excused."""

    def __init__(self, db: Session, min_hours: Optional[float] = None):
        self.db = db
        self.min_hours = min_hours if min_hours is not None else LEDGER_CONFIG["notice_min_hours"]

    def record_notice(
        self,
        user_id: str,
        match_id: str,
        reason: str = "",
        found_replacement: bool = False,
        now: Optional[datetime] = None,
    ) -> AbsenceNoticeDB:
        """
        Record an absence notice.

        Args:
            user_id: Player giving notice
            match_id: Match they will miss
            reason: Free-text reason
            found_replacement: Whether they arranged a replacement
            now: Time the notice is given (default: now)

        Returns:
            The created notice

        Raises:
            LedgerServiceError: match does not exist
        """
        if not user_id or not match_id:
            raise LedgerServiceError("User ID and Match ID are required")

        match = self.db.query(MatchDB).filter(MatchDB.id == match_id).first()
        if match is None:
            raise LedgerServiceError(f"Match {match_id} not found")

        now = now or datetime.utcnow()
        hours_before = None
        notified_in_time = False
        if match.starts_at is not None:
            hours_before = (match.starts_at - now).total_seconds() / 3600
            notified_in_time = hours_before >= self.min_hours
            hours_before = max(0.0, hours_before)

        notice = AbsenceNoticeDB(
            id=str(uuid4()),
            user_id=user_id,
            match_id=match_id,
            reason=reason,
            found_replacement=found_replacement,
            notified_in_time=notified_in_time,
            hours_before_match=hours_before,
            created_at=now,
        )
        self.db.add(notice)
        self.db.flush()

        logger.info(
            f"Recorded absence notice for user {user_id} match {match_id}: "
            f"in_time={notified_in_time} replacement={found_replacement}"
        )
        return notice

    def latest_notice(self, user_id: str, match_id: str) -> Optional[AbsenceNoticeDB]:
        return (
            self.db.query(AbsenceNoticeDB)
            .filter(
                AbsenceNoticeDB.user_id == user_id,
                AbsenceNoticeDB.match_id == match_id,
            )
            .order_by(AbsenceNoticeDB.created_at.desc())
            .first()
        )

    def is_excused(self, user_id: str, match_id: str) -> bool:
        """True if the latest notice was in time or came with a replacement."""
        notice = self.latest_notice(user_id, match_id)
        if notice is None:
            return False
        return bool(notice.notified_in_time or notice.found_replacement)
