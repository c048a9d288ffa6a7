"""SQLAlchemy models: roster, gradebook and the feedback ledger."""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class CorrectionAction(enum.Enum):
    CONFIRMED = "confirmed"
    OVERRIDDEN = "overridden"


class Strictness(enum.Enum):
    AS_EXPECTED = "as_expected"
    MORE_LENIENT = "more_lenient"
    MORE_STRICT = "more_strict"


class MisconceptionDecision(enum.Enum):
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"


class VerificationOutcome(enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class Student(Base):
    """A roster entry. `code` is what the printed QR code carries."""
    __tablename__ = "students"

    id = Column(Integer, primary_key=True)
    code = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    class_id = Column(String(64), index=True)
    created_at = Column(DateTime, default=utcnow)

    grades = relationship("GradeRecord", back_populates="student", order_by="GradeRecord.created_at")

    def __repr__(self):
        return f"<Student {self.code} {self.name!r}>"


class GradeRecord(Base):
    """A saved NormalizedGrade with the outcome it came from."""
    __tablename__ = "grade_records"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    session_key = Column(String(64))
    class_id = Column(String(64))
    question_id = Column(String(64))

    final_grade = Column(Integer, nullable=False)
    has_work = Column(Boolean, nullable=False, default=True)
    source_tag = Column(String(32))  # ai / teacher-guided / manual, None for blank
    overridden = Column(Boolean, default=False)
    adjudication_method = Column(String(32))
    strategy_delta = Column(Integer)

    proficiency_level = Column(Integer)
    raw_percentage = Column(Float)
    justification = Column(Text)
    misconceptions_json = Column(JSON, default=list)
    rubric_json = Column(JSON, default=list)

    created_at = Column(DateTime, default=utcnow)

    student = relationship("Student", back_populates="grades")


class CorrectionRecord(Base):
    """A teacher confirming or overriding a strategy's grade. Never updated."""
    __tablename__ = "correction_records"

    id = Column(Integer, primary_key=True)
    session_key = Column(String(64), index=True)
    student_code = Column(String(64))
    question_id = Column(String(64))
    outcome_tag = Column(String(32), nullable=False)

    action = Column(Enum(CorrectionAction), nullable=False)
    ai_grade = Column(Integer, nullable=False)
    corrected_grade = Column(Integer, nullable=False)
    adjustment = Column(Integer, nullable=False, default=0)
    strictness = Column(Enum(Strictness), nullable=False)
    reason = Column(Text)
    ai_justification = Column(Text)

    created_at = Column(DateTime, default=utcnow)


class MisconceptionFeedback(Base):
    """Whether a teacher agreed with an identified misconception."""
    __tablename__ = "misconception_feedback"

    id = Column(Integer, primary_key=True)
    session_key = Column(String(64), index=True)
    student_code = Column(String(64))
    outcome_tag = Column(String(32))
    misconception = Column(Text, nullable=False)
    decision = Column(Enum(MisconceptionDecision), nullable=False)
    created_at = Column(DateTime, default=utcnow)


class VerificationDecision(Base):
    """A teacher approving or rejecting how the scan was read."""
    __tablename__ = "verification_decisions"

    id = Column(Integer, primary_key=True)
    session_key = Column(String(64), index=True)
    student_code = Column(String(64))
    interpretation = Column(Text, nullable=False)
    decision = Column(Enum(VerificationOutcome), nullable=False)
    context = Column(Text)
    created_at = Column(DateTime, default=utcnow)
