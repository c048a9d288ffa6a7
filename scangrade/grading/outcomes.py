"""Value types produced by grading strategies and consumed by normalization."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence

from ..config import DEFAULT_GRADE_FLOOR_WITH_EFFORT

# Regents-style proficiency level -> grade. Level 1 and 0 depend on the effort floor.
PROFICIENCY_GRADES = {
    4: 95,  # Exceeding
    3: 85,  # Meeting
    2: 75,  # Approaching
    1: 65,  # Limited (never below the effort floor)
}


class OutcomeTag(str, Enum):
    """Which strategy produced an outcome."""
    AI = "ai"
    TEACHER_GUIDED = "teacher-guided"
    MANUAL = "manual"


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive grades (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def level_grade(level: int, grade_floor_with_effort: int = DEFAULT_GRADE_FLOOR_WITH_EFFORT) -> int:
    """Grade for a 0-4 proficiency level, before clamping to the policy band."""
    if level == 0:
        return grade_floor_with_effort
    if level == 1:
        return max(grade_floor_with_effort, PROFICIENCY_GRADES[1])
    return PROFICIENCY_GRADES[level]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RubricScore:
    criterion: str
    earned: float
    possible: float
    feedback: str = ""

    def to_dict(self) -> dict:
        return {
            "criterion": self.criterion,
            "earned": self.earned,
            "possible": self.possible,
            "feedback": self.feedback,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RubricScore":
        return cls(
            criterion=str(data.get("criterion", "")),
            earned=float(data.get("earned", 0) or 0),
            possible=float(data.get("possible", 0) or 0),
            feedback=str(data.get("feedback", "") or ""),
        )


def rubric_percentage(scores: Sequence[RubricScore]) -> Optional[float]:
    """earned / possible x 100 across all criteria, or None without totals."""
    possible = sum(s.possible for s in scores)
    if possible <= 0:
        return None
    return sum(s.earned for s in scores) / possible * 100


@dataclass(frozen=True)
class GradingOutcome:
    """The result of one strategy invocation. Superseded only by a re-run."""
    tag: OutcomeTag
    rubric_scores: tuple[RubricScore, ...] = ()
    misconceptions: tuple[str, ...] = ()
    proficiency_level: Optional[int] = None
    justification: str = ""
    raw_percentage: Optional[float] = None
    grade: Optional[int] = None
    raw_response: str = ""
    created_at: str = field(default_factory=_now_iso)

    @property
    def suggested_grade(self) -> int:
        """The grade the strategy proposed; used when comparing strategies."""
        if self.grade is not None:
            return self.grade
        if self.proficiency_level is not None and 0 <= self.proficiency_level <= 4:
            return level_grade(self.proficiency_level)
        if self.raw_percentage is not None:
            return round_half_up(self.raw_percentage)
        return 0

    @property
    def has_score(self) -> bool:
        return self.proficiency_level is not None or self.raw_percentage is not None

    def to_dict(self) -> dict:
        return {
            "tag": self.tag.value,
            "rubricScores": [s.to_dict() for s in self.rubric_scores],
            "misconceptions": list(self.misconceptions),
            "proficiencyLevel": self.proficiency_level,
            "justification": self.justification,
            "rawPercentage": self.raw_percentage,
            "grade": self.grade,
            "rawResponse": self.raw_response,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GradingOutcome":
        """Rebuild a stored outcome. Raises ValueError for an unknown tag."""
        level = data.get("proficiencyLevel")
        percentage = data.get("rawPercentage")
        grade = data.get("grade")
        return cls(
            tag=OutcomeTag(data["tag"]),
            rubric_scores=tuple(RubricScore.from_dict(s) for s in data.get("rubricScores") or []),
            misconceptions=tuple(str(m) for m in data.get("misconceptions") or []),
            proficiency_level=int(level) if level is not None else None,
            justification=data.get("justification") or "",
            raw_percentage=float(percentage) if percentage is not None else None,
            grade=int(grade) if grade is not None else None,
            raw_response=data.get("rawResponse") or "",
            created_at=data.get("createdAt") or _now_iso(),
        )


@dataclass(frozen=True)
class NormalizedGrade:
    """The only artifact persisted as "the grade"."""
    final_grade: int
    has_work: bool
    source_tag: Optional[OutcomeTag]
    overridden: bool = False

    def to_dict(self) -> dict:
        return {
            "finalGrade": self.final_grade,
            "hasWork": self.has_work,
            "sourceOutcomeTag": self.source_tag.value if self.source_tag else None,
            "overridden": self.overridden,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NormalizedGrade":
        tag = data.get("sourceOutcomeTag")
        return cls(
            final_grade=int(data["finalGrade"]),
            has_work=bool(data.get("hasWork", True)),
            source_tag=OutcomeTag(tag) if tag else None,
            overridden=bool(data.get("overridden", False)),
        )
