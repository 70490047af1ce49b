"""
Shared fixtures for the no-show ledger test suites.

Ledger behavior is exercised against an in-memory SQLite database so that
unique constraints and savepoints behave like they do in PostgreSQL.
"""
import os

# Keep app.database off the production Postgres URL during tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models.db_models import (
    AdjustmentKind,
    MatchDB,
    MatchParticipantDB,
    PlayerProfileDB,
    PostMatchSurveyDB,
)
from app.services.ledger import AdjustmentLedger, UserLockRegistry


@pytest.fixture
def engine():
    """In-memory SQLite engine with working SAVEPOINT support."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Database session bound to the in-memory engine."""
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def locks():
    """Fresh per-test user lock registry."""
    return UserLockRegistry()


@pytest.fixture
def make_match(db):
    """
    Create a match with roster, surveys and player profiles.

    roster: {participant_id: user_id or None}
    surveys: [(voter_id, match_played, [absent participant ids]), ...]
    """
    def _make_match(match_id, roster, surveys=(), starts_at=None, rating=5.0):
        db.add(MatchDB(id=match_id, starts_at=starts_at))
        for participant_id, user_id in roster.items():
            db.add(MatchParticipantDB(id=participant_id, match_id=match_id, user_id=user_id))
            if user_id and db.get(PlayerProfileDB, user_id) is None:
                db.add(PlayerProfileDB(user_id=user_id, rating=rating, matches_abandoned=0))
                db.flush()
        for voter_id, played, absent in surveys:
            db.add(PostMatchSurveyDB(
                id=str(uuid4()),
                match_id=match_id,
                voter_id=voter_id,
                match_played=played,
                absent_player_ids=list(absent),
                created_at=datetime.utcnow(),
            ))
        db.commit()
        return match_id

    return _make_match


@pytest.fixture
def give_debt(db):
    """Record a prior penalty for a user so they carry debt."""
    def _give_debt(user_id, amount="0.30", match_id=None):
        AdjustmentLedger(db).record(
            user_id=user_id,
            match_id=match_id or f"prior-{uuid4()}",
            kind=AdjustmentKind.PENALTY,
            magnitude=Decimal(amount),
        )
        db.commit()

    return _give_debt


@pytest.fixture
def read_profile(db):
    """Fresh read of a player profile."""
    def _read_profile(user_id):
        db.expire_all()
        return db.get(PlayerProfileDB, user_id)

    return _read_profile
