"""Append-only record of how teachers responded to each stage's output.

The ledger is purely observational. A failed write is logged and reported
as False; it never fails a grading session.
"""

import logging
from typing import Iterable, Mapping, Optional

from ..config import STRICTNESS_TOLERANCE
from ..database import (
    CorrectionAction,
    CorrectionRecord,
    MisconceptionDecision,
    MisconceptionFeedback,
    Strictness,
    VerificationDecision,
    VerificationOutcome,
    get_session,
)
from ..grading.outcomes import GradingOutcome, OutcomeTag

logger = logging.getLogger("scangrade.ledger")


def strictness_for(ai_grade: int, corrected_grade: int, tolerance: int = STRICTNESS_TOLERANCE) -> Strictness:
    """How the teacher's grade compares with the strategy's."""
    diff = corrected_grade - ai_grade
    if diff > tolerance:
        return Strictness.MORE_LENIENT
    if diff < -tolerance:
        return Strictness.MORE_STRICT
    return Strictness.AS_EXPECTED


class FeedbackLedger:
    def _append(self, rows: list, what: str) -> bool:
        if not rows:
            return True
        try:
            with get_session() as session:
                session.add_all(rows)
                session.commit()
        except Exception:
            logger.exception("Failed to record %s", what)
            return False
        logger.debug("Recorded %d %s row(s)", len(rows), what)
        return True

    def record_grade_confirmation(
        self,
        session_key: str,
        outcome: GradingOutcome,
        final_grade: Optional[int] = None,
        student_code: Optional[str] = None,
        question_id: Optional[str] = None,
    ) -> bool:
        """The teacher accepted the strategy's grade as is."""
        grade = outcome.suggested_grade
        try:
            row = CorrectionRecord(
                session_key=session_key,
                student_code=student_code,
                question_id=question_id,
                outcome_tag=outcome.tag.value,
                action=CorrectionAction.CONFIRMED,
                ai_grade=grade,
                corrected_grade=final_grade if final_grade is not None else grade,
                adjustment=0,
                strictness=Strictness.AS_EXPECTED,
                ai_justification=outcome.justification,
            )
        except Exception:
            logger.exception("Failed to build grade confirmation")
            return False
        return self._append([row], "grade confirmation")

    def record_grade_override(
        self,
        session_key: str,
        outcome: GradingOutcome,
        corrected_grade: int,
        reason: Optional[str] = None,
        student_code: Optional[str] = None,
        question_id: Optional[str] = None,
    ) -> bool:
        """The teacher replaced the strategy's grade with their own."""
        try:
            ai_grade = outcome.suggested_grade
            corrected = int(corrected_grade)
            row = CorrectionRecord(
                session_key=session_key,
                student_code=student_code,
                question_id=question_id,
                outcome_tag=outcome.tag.value,
                action=CorrectionAction.OVERRIDDEN,
                ai_grade=ai_grade,
                corrected_grade=corrected,
                adjustment=corrected - ai_grade,
                strictness=strictness_for(ai_grade, corrected),
                reason=reason,
                ai_justification=outcome.justification,
            )
        except Exception:
            logger.exception("Failed to build grade override")
            return False
        return self._append([row], "grade override")

    def record_misconception_decisions(
        self,
        session_key: str,
        tag: OutcomeTag,
        decisions: Mapping[str, bool],
        student_code: Optional[str] = None,
    ) -> bool:
        """`decisions` maps each misconception to True (confirmed) or False (dismissed)."""
        try:
            rows = [
                MisconceptionFeedback(
                    session_key=session_key,
                    student_code=student_code,
                    outcome_tag=OutcomeTag(tag).value,
                    misconception=text,
                    decision=MisconceptionDecision.CONFIRMED if confirmed else MisconceptionDecision.DISMISSED,
                )
                for text, confirmed in decisions.items()
            ]
        except Exception:
            logger.exception("Failed to build misconception feedback")
            return False
        return self._append(rows, "misconception feedback")

    def record_interpretations(
        self,
        session_key: str,
        decisions: Iterable[tuple[str, bool]],
        student_code: Optional[str] = None,
        context: Optional[str] = None,
    ) -> bool:
        """Approve (True) or reject (False) readings of the scanned work."""
        try:
            rows = [
                VerificationDecision(
                    session_key=session_key,
                    student_code=student_code,
                    interpretation=interpretation,
                    decision=VerificationOutcome.APPROVED if approved else VerificationOutcome.REJECTED,
                    context=context,
                )
                for interpretation, approved in decisions
            ]
        except Exception:
            logger.exception("Failed to build verification decisions")
            return False
        return self._append(rows, "verification decision")
