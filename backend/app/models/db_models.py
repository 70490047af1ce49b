"""
Matchday Ledger - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, Numeric, Boolean,
    ForeignKey, UniqueConstraint, Enum as SQLEnum,
)
from ..database import Base


# =============================================================================
# MATCH / ROSTER / SURVEY MODELS (external collaborators, read-only to ledger)
# =============================================================================

class MatchDB(Base):
    """A scheduled informal match."""
    __tablename__ = "matches"

    id = Column(String(36), primary_key=True)
    starts_at = Column(DateTime, nullable=True)  # Kickoff, used for absence notice timing
    created_at = Column(DateTime, default=datetime.utcnow)


class MatchParticipantDB(Base):
    """
    Roster entry for a match.
    Guests have no linked user account (user_id is NULL).
    Participant IDs are scoped to their match.
    """
    __tablename__ = "match_participants"

    match_id = Column(String(36), ForeignKey("matches.id", ondelete="CASCADE"), primary_key=True)
    id = Column(String(36), primary_key=True)  # Participant ID (used in surveys)
    user_id = Column(String(36), nullable=True, index=True)  # NULL for guests
    display_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class PostMatchSurveyDB(Base):
    """
    One attendance report per (match, reporting voter).
    Created once after the match; immutable thereafter.
    """
    __tablename__ = "post_match_surveys"
    __table_args__ = (
        UniqueConstraint("match_id", "voter_id", name="uq_survey_match_voter"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    match_id = Column(String(36), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    voter_id = Column(String(36), nullable=False)  # Participant ID of the reporter

    match_played = Column(Boolean, nullable=False, default=True)
    absent_player_ids = Column(JSON, nullable=True)  # ["participant-id", ...] in reported order

    created_at = Column(DateTime, default=datetime.utcnow)


class PlayerProfileDB(Base):
    """
    Downstream rating store.
    Mutated only through RatingStore.apply_delta.
    """
    __tablename__ = "player_profiles"

    user_id = Column(String(36), primary_key=True)
    rating = Column(Float, nullable=False, default=5.0)
    matches_abandoned = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# =============================================================================
# NO-SHOW LEDGER MODELS
# =============================================================================
# Append-only rating adjustments plus one mutable streak row per user.
# Debt is never stored: it is derived from the adjustment rows.
# =============================================================================

class AdjustmentKind(str, Enum):
    """Kind of rating adjustment. Magnitude is always positive; kind gives the sign."""
    PENALTY = "penalty"
    RECOVERY = "recovery"


class RatingAdjustmentDB(Base):
    """
    One row per applied rating mutation.

    At most one row per (user, match, kind). The unique constraint is the
    idempotence guard: repeated or concurrent passes insert-or-ignore.

    Append-only. Never updated or deleted.
    """
    __tablename__ = "rating_adjustments"
    __table_args__ = (
        UniqueConstraint("user_id", "match_id", "kind", name="uq_adjustment_user_match_kind"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), nullable=False, index=True)
    match_id = Column(String(36), nullable=False, index=True)

    kind = Column(SQLEnum(AdjustmentKind), nullable=False)
    magnitude = Column(Numeric(10, 2), nullable=False)  # Always > 0
    details = Column(JSON, nullable=True)  # {"confirmed_by": [...]} or {"streak": 3, "cycle": 1}

    created_at = Column(DateTime, default=datetime.utcnow)


class RecoveryStreakDB(Base):
    """
    Consecutive attended matches while carrying debt.
    The only mutable ledger entity; overwritten on every processed match.
    """
    __tablename__ = "recovery_streaks"

    user_id = Column(String(36), primary_key=True)
    streak = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow)


class AttendanceRecordDB(Base):
    """
    Marks that a user's streak was advanced (or reset) for a match.
    Re-processing a match finds this row and leaves the streak alone.
    """
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("user_id", "match_id", name="uq_attendance_user_match"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), nullable=False, index=True)
    match_id = Column(String(36), nullable=False, index=True)
    attended = Column(Boolean, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class AbsenceNoticeDB(Base):
    """
    Advance notice from a player that they will miss a match.
    Excuses the no-show penalty when filed in time or when a replacement was found.
    """
    __tablename__ = "absence_notices"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), nullable=False, index=True)
    match_id = Column(String(36), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)

    reason = Column(Text, nullable=True)
    found_replacement = Column(Boolean, default=False)
    notified_in_time = Column(Boolean, default=False)
    hours_before_match = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
