"""
Tests for the feedback ledger and its aggregate reports.
"""
from contextlib import contextmanager

from scangrade.database import (
    CorrectionAction,
    CorrectionRecord,
    MisconceptionFeedback,
    Strictness,
    VerificationDecision,
    get_session,
)
from scangrade.grading.outcomes import GradingOutcome, OutcomeTag
from scangrade.ledger import FeedbackLedger, misconception_summary, strictness_for, training_stats, verification_patterns

OUTCOME = GradingOutcome(OutcomeTag.AI, raw_percentage=82.0, grade=82, justification="Solid setup.")


class TestStrictness:

    def test_within_tolerance(self):
        assert strictness_for(80, 85) is Strictness.AS_EXPECTED
        assert strictness_for(80, 75) is Strictness.AS_EXPECTED

    def test_teacher_more_lenient(self):
        assert strictness_for(80, 86) is Strictness.MORE_LENIENT

    def test_teacher_more_strict(self):
        assert strictness_for(80, 74) is Strictness.MORE_STRICT


class TestFeedbackLedger:

    def test_override_is_recorded(self, db):
        assert FeedbackLedger().record_grade_override("k", OUTCOME, 95, "Full credit", "S-1", "Q1")

        with get_session() as session:
            row = session.query(CorrectionRecord).one()
        assert row.action is CorrectionAction.OVERRIDDEN
        assert row.ai_grade == 82
        assert row.corrected_grade == 95
        assert row.adjustment == 13
        assert row.strictness is Strictness.MORE_LENIENT
        assert row.question_id == "Q1"

    def test_confirmation_is_recorded(self, db):
        assert FeedbackLedger().record_grade_confirmation("k", OUTCOME, 90, "S-1")

        with get_session() as session:
            row = session.query(CorrectionRecord).one()
        assert row.action is CorrectionAction.CONFIRMED
        assert row.corrected_grade == 90
        assert row.adjustment == 0

    def test_misconception_decisions(self, db):
        ledger = FeedbackLedger()
        assert ledger.record_misconception_decisions("k", OutcomeTag.AI, {"sign error": True, "order of operations": False}, "S-1")
        assert ledger.record_misconception_decisions("k2", OutcomeTag.AI, {"sign error": True}, "S-1")

        with get_session() as session:
            assert session.query(MisconceptionFeedback).count() == 3

        summary = misconception_summary("S-1")
        assert summary[0] == {"misconception": "sign error", "confirmed": 2, "dismissed": 0}
        assert summary[1]["dismissed"] == 1

    def test_interpretations(self, db):
        ledger = FeedbackLedger()
        assert ledger.record_interpretations("k", [("x = 5", True), ("x = s", False)], "S-1")
        assert ledger.record_interpretations("k2", [("x = 5", True)])

        with get_session() as session:
            assert session.query(VerificationDecision).count() == 3

        patterns = verification_patterns()
        assert patterns["total"] == 3
        assert patterns["approved"] == [("x = 5", 2)]
        assert patterns["rejected"] == [("x = s", 1)]

    def test_empty_decisions_write_nothing(self, db):
        assert FeedbackLedger().record_misconception_decisions("k", OutcomeTag.AI, {})
        with get_session() as session:
            assert session.query(MisconceptionFeedback).count() == 0

    def test_write_failure_is_swallowed(self, db, monkeypatch):
        @contextmanager
        def broken_session():
            raise RuntimeError("database is locked")
            yield

        monkeypatch.setattr("scangrade.ledger.ledger.get_session", broken_session)
        ledger = FeedbackLedger()
        assert ledger.record_grade_override("k", OUTCOME, 95) is False
        assert ledger.record_grade_confirmation("k", OUTCOME) is False
        assert ledger.record_interpretations("k", [("x = 5", True)]) is False


class TestTrainingStats:

    def test_no_corrections(self, db):
        stats = training_stats()
        assert stats["total_corrections"] == 0
        assert not stats["is_fully_trained"]

    def test_average_and_style(self, db):
        ledger = FeedbackLedger()
        ledger.record_grade_override("a", OUTCOME, 92)
        ledger.record_grade_override("b", OUTCOME, 90)
        ledger.record_grade_override("c", OUTCOME, 70)

        stats = training_stats()
        assert stats["total_corrections"] == 3
        assert stats["avg_adjustment"] == (10 + 8 - 12) / 3
        assert stats["dominant_style"] == Strictness.MORE_LENIENT.value
