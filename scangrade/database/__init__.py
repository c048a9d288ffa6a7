"""Database models and connection management."""

from .db import init_db, get_session
from .models import (
    Base,
    Student,
    GradeRecord,
    CorrectionRecord,
    MisconceptionFeedback,
    VerificationDecision,
    CorrectionAction,
    Strictness,
    MisconceptionDecision,
    VerificationOutcome,
)
from .gradebook import Gradebook

__all__ = [
    "init_db",
    "get_session",
    "Base",
    "Student",
    "GradeRecord",
    "CorrectionRecord",
    "MisconceptionFeedback",
    "VerificationDecision",
    "CorrectionAction",
    "Strictness",
    "MisconceptionDecision",
    "VerificationOutcome",
    "Gradebook",
]
