"""Aggregate reads over the feedback ledger. The pipeline never calls these."""

from collections import Counter
from typing import Optional

from ..database import (
    CorrectionRecord,
    MisconceptionDecision,
    MisconceptionFeedback,
    VerificationDecision,
    VerificationOutcome,
    get_session,
)

FULLY_TRAINED_CORRECTIONS = 50


def training_stats() -> dict:
    """How teachers have adjusted strategy grades so far."""
    with get_session() as session:
        rows = session.query(CorrectionRecord.ai_grade, CorrectionRecord.corrected_grade, CorrectionRecord.strictness).all()

    if not rows:
        return {
            "total_corrections": 0,
            "avg_adjustment": 0.0,
            "dominant_style": None,
            "is_fully_trained": False,
        }

    avg_adjustment = sum(corrected - ai for ai, corrected, _ in rows) / len(rows)
    styles = Counter(strictness.value for _, _, strictness in rows if strictness)
    dominant = styles.most_common(1)[0][0] if styles else None

    return {
        "total_corrections": len(rows),
        "avg_adjustment": avg_adjustment,
        "dominant_style": dominant,
        "is_fully_trained": len(rows) >= FULLY_TRAINED_CORRECTIONS,
    }


def verification_patterns(limit: int = 10) -> dict:
    """Most frequently approved and rejected interpretations."""
    with get_session() as session:
        rows = session.query(VerificationDecision.interpretation, VerificationDecision.decision).all()

    approved = Counter(i for i, d in rows if d == VerificationOutcome.APPROVED)
    rejected = Counter(i for i, d in rows if d == VerificationOutcome.REJECTED)
    return {
        "total": len(rows),
        "approved": approved.most_common(limit),
        "rejected": rejected.most_common(limit),
    }


def misconception_summary(student_code: Optional[str] = None, limit: int = 10) -> list[dict]:
    """Confirmed vs dismissed counts per misconception, most confirmed first."""
    with get_session() as session:
        query = session.query(MisconceptionFeedback.misconception, MisconceptionFeedback.decision)
        if student_code:
            query = query.filter(MisconceptionFeedback.student_code == student_code)
        rows = query.all()

    summary: dict[str, dict] = {}
    for text, decision in rows:
        entry = summary.setdefault(text, {"misconception": text, "confirmed": 0, "dismissed": 0})
        if decision == MisconceptionDecision.CONFIRMED:
            entry["confirmed"] += 1
        else:
            entry["dismissed"] += 1

    ordered = sorted(summary.values(), key=lambda e: (-e["confirmed"], e["dismissed"], e["misconception"]))
    return ordered[:limit]
