"""
Tests for NoShowLedgerProcessor and NoShowScheduler.

Covers:
1. End-to-end pass over a match (penalty + streaks + recovery)
2. Re-running a pass is a no-op
3. An absence confirmed by surveys that arrive later still resets the streak
4. Excused absences skip the penalty but reset the streak
5. Not-played matches write nothing
6. Unavailable inputs abort before any write
7. Batch isolation: one failing match never blocks the others
8. Debt never goes negative over a long history
"""
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from app.models.db_models import (
    AdjustmentKind,
    AttendanceRecordDB,
    PostMatchSurveyDB,
    RatingAdjustmentDB,
    RecoveryStreakDB,
)
from app.models.ledger_models import SkipReason
from app.services.ledger import (
    AbsenceNoticeService,
    AdjustmentLedger,
    NoShowLedgerProcessor,
    PenaltyApplier,
    RecoveryTracker,
    run_no_show_pass,
)


FIVE_A_SIDE = {p: f"user-{p.lower()}" for p in "ABCDE"}


@pytest.fixture
def processor(db, locks):
    return NoShowLedgerProcessor(db, locks=locks)


def seed_streak(db, user_id, streak):
    db.add(RecoveryStreakDB(user_id=user_id, streak=streak))
    db.commit()


def add_survey(db, match_id, voter_id, absent, played=True):
    db.add(PostMatchSurveyDB(
        id=str(uuid4()),
        match_id=match_id,
        voter_id=voter_id,
        match_played=played,
        absent_player_ids=list(absent),
        created_at=datetime.utcnow(),
    ))
    db.commit()


class TestProcessMatch:

    def test_match_100_scenario(self, processor, db, make_match, give_debt, read_profile):
        make_match("100", FIVE_A_SIDE, [
            ("A", True, ["B"]),
            ("C", True, ["B"]),
            ("D", True, []),
        ])
        give_debt("user-d")
        seed_streak(db, "user-d", 2)

        result = processor.process_match("100")

        assert result.ok
        assert result.match_played is True
        assert result.confirmed_absent == ["B"]
        assert result.penalties_applied == ["user-b"]
        assert result.recoveries_applied == ["user-d"]

        penalty = AdjustmentLedger(db).for_user_match("user-b", "100")
        assert [(r.kind, r.magnitude) for r in penalty] == [(AdjustmentKind.PENALTY, Decimal("0.30"))]

        tracker = RecoveryTracker(db)
        assert tracker.get_streak("user-b") == 0
        assert tracker.get_streak("user-d") == 3
        # No debt, no streak
        for user_id in ("user-a", "user-c", "user-e"):
            assert tracker.get_streak(user_id) == 0

        assert read_profile("user-b").rating == pytest.approx(4.7)
        assert read_profile("user-d").rating == pytest.approx(5.1)
        assert AdjustmentLedger(db).debt("user-d") == Decimal("0.20")

    def test_streak_advances_without_recovery_mid_cycle(self, processor, db, make_match, give_debt):
        make_match("100", FIVE_A_SIDE, [("A", True, ["B"]), ("C", True, ["B"])])
        give_debt("user-a")

        result = processor.process_match("100")

        assert result.recoveries_applied == []
        assert RecoveryTracker(db).get_streak("user-a") == 1

    def test_rerun_is_noop(self, processor, db, make_match, give_debt, read_profile):
        make_match("100", FIVE_A_SIDE, [("A", True, ["B"]), ("C", True, ["B"])])
        give_debt("user-d")
        seed_streak(db, "user-d", 2)

        processor.process_match("100")
        rows_after_first = db.query(RatingAdjustmentDB).count()
        second = processor.process_match("100")

        assert second.ok
        assert second.penalties_applied == []
        assert second.recoveries_applied == []
        assert db.query(RatingAdjustmentDB).count() == rows_after_first
        assert RecoveryTracker(db).get_streak("user-d") == 3
        assert read_profile("user-b").rating == pytest.approx(4.7)
        assert read_profile("user-b").matches_abandoned == 1
        assert read_profile("user-d").rating == pytest.approx(5.1)

        reasons = {(s.stage, s.reason) for s in second.skipped}
        assert ("penalty", SkipReason.ALREADY_APPLIED) in reasons
        assert ("recovery", SkipReason.ALREADY_PROCESSED) in reasons

    def test_late_surveys_confirm_absence_and_reset_streak(self, processor, db, make_match, give_debt):
        make_match("m1", FIVE_A_SIDE, [("A", True, ["B"])])
        give_debt("user-b")

        first = processor.process_match("m1")
        assert first.confirmed_absent == []
        assert RecoveryTracker(db).get_streak("user-b") == 1

        add_survey(db, "m1", "C", ["B"])
        second = processor.process_match("m1")

        assert second.confirmed_absent == ["B"]
        assert second.penalties_applied == ["user-b"]
        assert RecoveryTracker(db).get_streak("user-b") == 0
        marker = (
            db.query(AttendanceRecordDB)
            .filter(AttendanceRecordDB.user_id == "user-b", AttendanceRecordDB.match_id == "m1")
            .one()
        )
        assert marker.attended is False

        third = processor.process_match("m1")
        assert third.penalties_applied == []
        assert ("recovery", SkipReason.ALREADY_PROCESSED, "user-b") in {
            (s.stage, s.reason, s.user_id) for s in third.skipped
        }
        assert RecoveryTracker(db).get_streak("user-b") == 0

    def test_excused_absence_still_resets_streak(self, processor, db, make_match, give_debt, read_profile):
        kickoff = datetime(2026, 5, 1, 20, 0)
        make_match("100", FIVE_A_SIDE, [("A", True, ["B"]), ("C", True, ["B"])], starts_at=kickoff)
        give_debt("user-b")
        seed_streak(db, "user-b", 2)
        AbsenceNoticeService(db).record_notice("user-b", "100", now=kickoff - timedelta(hours=6))
        db.commit()

        result = processor.process_match("100")

        assert result.penalties_applied == []
        assert ("penalty", SkipReason.EXCUSED) in {(s.stage, s.reason) for s in result.skipped}
        assert result.recoveries_applied == []
        assert RecoveryTracker(db).get_streak("user-b") == 0
        assert read_profile("user-b").rating == pytest.approx(5.0)

    def test_not_played_writes_nothing(self, processor, db, make_match, give_debt):
        make_match("100", FIVE_A_SIDE, [
            ("A", False, ["B"]),
            ("C", False, ["B"]),
            ("D", False, ["B"]),
        ])
        give_debt("user-a")
        seed_streak(db, "user-a", 2)
        rows_before = db.query(RatingAdjustmentDB).count()

        result = processor.process_match("100")

        assert result.ok
        assert result.match_played is False
        assert result.penalties_applied == []
        assert db.query(RatingAdjustmentDB).count() == rows_before
        assert db.query(AttendanceRecordDB).count() == 0
        assert RecoveryTracker(db).get_streak("user-a") == 2
        assert {s.reason for s in result.skipped} == {SkipReason.MATCH_NOT_PLAYED}
        assert len(result.skipped) == 5

    def test_no_surveys_means_not_played(self, processor, make_match):
        make_match("100", FIVE_A_SIDE)

        result = processor.process_match("100")

        assert result.match_played is False
        assert result.penalties_applied == []

    def test_guest_is_reported_and_untouched(self, processor, db, make_match):
        make_match("100", {"A": "user-a", "C": "user-c", "G": None}, [
            ("A", True, ["G"]),
            ("C", True, ["G"]),
        ])

        result = processor.process_match("100")

        assert result.confirmed_absent == ["G"]
        assert result.penalties_applied == []
        assert [(s.stage, s.reason) for s in result.skipped] == [("penalty", SkipReason.GUEST)]
        assert db.query(RatingAdjustmentDB).count() == 0


class TestInputsUnavailable:

    def test_unknown_match_aborts(self, processor, db):
        result = processor.process_match("missing")

        assert not result.ok
        assert "no roster" in result.error
        assert db.query(RatingAdjustmentDB).count() == 0

    def test_storage_error_aborts_before_writes(self):
        db = MagicMock()
        db.query.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))

        result = NoShowLedgerProcessor(db).process_match("100")

        assert not result.ok
        assert "connection refused" in result.error
        db.add.assert_not_called()
        db.commit.assert_not_called()
        db.rollback.assert_called_once()


class TestScheduler:

    def test_batch_summary(self, db, make_match):
        make_match("m1", FIVE_A_SIDE, [("A", True, ["B"]), ("C", True, ["B"])])
        make_match("m2", {"X": "user-x", "Y": "user-y", "Z": "user-z"}, [
            ("X", True, ["Z"]),
            ("Y", True, ["Z"]),
        ])

        summary = run_no_show_pass(db, ["m1", "missing", "m2"])

        assert summary["task"] == "no_show_pass"
        assert summary["matches_processed"] == 2
        assert summary["penalties_applied"] == 2
        assert summary["errors"] == 1
        assert summary["details"]["errors"][0]["match_id"] == "missing"
        assert [r["match_id"] for r in summary["details"]["results"]] == ["m1", "m2"]

    def test_one_crashing_match_does_not_block_others(self, db, make_match):
        make_match("m1", FIVE_A_SIDE, [("A", True, ["B"]), ("C", True, ["B"])])
        make_match("m2", {"X": "user-x", "Y": "user-y", "Z": "user-z"}, [
            ("X", True, ["Z"]),
            ("Y", True, ["Z"]),
        ])
        real_apply = PenaltyApplier.apply

        def flaky_apply(self, inputs, quorum, result):
            if inputs.match_id == "m1":
                raise RuntimeError("boom")
            return real_apply(self, inputs, quorum, result)

        with patch.object(PenaltyApplier, "apply", flaky_apply):
            summary = run_no_show_pass(db, ["m1", "m2"])

        assert summary["matches_processed"] == 1
        assert summary["details"]["errors"] == [{"match_id": "m1", "error": "boom"}]
        assert AdjustmentLedger(db).exists("user-z", "m2", AdjustmentKind.PENALTY)
        assert not AdjustmentLedger(db).exists("user-b", "m1", AdjustmentKind.PENALTY)


class TestDebtOverTime:

    def test_debt_never_negative_and_recovery_never_exceeds_debt(self, processor, db, make_match):
        roster = {"P": "user-p", "Q": "user-q", "R": "user-r"}
        ledger = AdjustmentLedger(db)
        # Q and R report P absent in matches 1 and 5; everyone shows up otherwise
        absent_in = {1, 5}

        for n in range(1, 16):
            match_id = f"m{n}"
            absent = ["P"] if n in absent_in else []
            make_match(match_id, roster, [("Q", True, absent), ("R", True, absent)])
            debt_before = ledger.debt("user-p")

            processor.process_match(match_id)

            debt_after = ledger.debt("user-p")
            assert debt_after >= Decimal("0")
            for row in ledger.for_user_match("user-p", match_id):
                if row.kind == AdjustmentKind.RECOVERY:
                    assert row.magnitude <= debt_before

        penalties = [r for r in ledger.for_user("user-p") if r.kind == AdjustmentKind.PENALTY]
        recoveries = [r for r in ledger.for_user("user-p") if r.kind == AdjustmentKind.RECOVERY]
        assert len(penalties) == 2
        assert ledger.debt("user-p") == (
            sum(r.magnitude for r in penalties) - sum(r.magnitude for r in recoveries)
        )
