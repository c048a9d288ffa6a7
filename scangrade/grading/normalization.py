"""Grade normalization: map a strategy outcome onto a bounded final grade.

The rules, in order:

1. No work detected: the grade floor, whatever else was supplied.
2. A 0-4 proficiency level maps through a fixed table, clamped to the
   effort band.
3. Otherwise a raw percentage is interpolated linearly onto the effort band
   [grade floor with effort, 95].
4. Work present but nothing usable: the grade floor with effort.

Automatic computation never exceeds 95. Reaching 100 takes an explicit
teacher override (`override_grade`).
"""

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import (
    DEFAULT_GRADE_FLOOR,
    DEFAULT_GRADE_FLOOR_WITH_EFFORT,
    MAJOR_DIFFERENCE_THRESHOLD,
    MAX_CALCULATED_GRADE,
    POLICY_FILE,
)
from .outcomes import GradingOutcome, NormalizedGrade, OutcomeTag, level_grade, round_half_up

logger = logging.getLogger("scangrade.grading")

MAX_OVERRIDE_GRADE = 100


@dataclass(frozen=True)
class GradePolicy:
    grade_floor: int = DEFAULT_GRADE_FLOOR
    grade_floor_with_effort: int = DEFAULT_GRADE_FLOOR_WITH_EFFORT

    def __post_init__(self):
        if not 0 <= self.grade_floor <= MAX_OVERRIDE_GRADE:
            raise ValueError(f"gradeFloor must be between 0 and 100, got {self.grade_floor}")
        if not 0 <= self.grade_floor_with_effort <= MAX_CALCULATED_GRADE:
            raise ValueError(
                f"gradeFloorWithEffort must be between 0 and {MAX_CALCULATED_GRADE}, "
                f"got {self.grade_floor_with_effort}"
            )

    def to_dict(self) -> dict:
        return {"gradeFloor": self.grade_floor, "gradeFloorWithEffort": self.grade_floor_with_effort}

    @classmethod
    def from_dict(cls, data: dict) -> "GradePolicy":
        return cls(
            grade_floor=int(data.get("gradeFloor", DEFAULT_GRADE_FLOOR)),
            grade_floor_with_effort=int(data.get("gradeFloorWithEffort", DEFAULT_GRADE_FLOOR_WITH_EFFORT)),
        )


def load_grade_policy(path: Optional[Path] = None) -> GradePolicy:
    """Read the per-user policy file, falling back to configured defaults."""
    path = Path(path or POLICY_FILE)
    if not path.exists():
        return GradePolicy()

    try:
        data = json.loads(path.read_text())
        return GradePolicy.from_dict(data)
    except (OSError, ValueError, TypeError, AttributeError) as e:
        logger.warning("Ignoring invalid grade policy at %s: %s", path, e)
        return GradePolicy()


def save_grade_policy(policy: GradePolicy, path: Optional[Path] = None) -> Path:
    path = Path(path or POLICY_FILE)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(policy.to_dict(), indent=2))
    return path


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _usable_level(level) -> Optional[int]:
    if level is None:
        return None
    try:
        level = int(level)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric proficiency level %r", level)
        return None
    if not 0 <= level <= 4:
        logger.warning("Ignoring proficiency level %d outside 0-4", level)
        return None
    return level


def _usable_percentage(percentage) -> Optional[float]:
    if percentage is None:
        return None
    try:
        percentage = float(percentage)
    except (TypeError, ValueError):
        return None
    if math.isnan(percentage):
        return None
    return max(0.0, min(100.0, percentage))


def grade_for_level(level: int, policy: GradePolicy) -> int:
    grade = level_grade(level, policy.grade_floor_with_effort)
    return _clamp(grade, policy.grade_floor_with_effort, MAX_CALCULATED_GRADE)


def grade_for_percentage(percentage: float, policy: GradePolicy) -> int:
    floor = policy.grade_floor_with_effort
    grade = round_half_up(floor + (percentage / 100) * (MAX_CALCULATED_GRADE - floor))
    return _clamp(grade, floor, MAX_CALCULATED_GRADE)


def calculate_grade(
    has_work: bool,
    raw_percentage: Optional[float] = None,
    proficiency_level: Optional[int] = None,
    policy: Optional[GradePolicy] = None,
) -> int:
    """Compute a final grade from the strategy's score.

    Args:
        has_work: False when no student work was detected.
        raw_percentage: earned / possible x 100, if known.
        proficiency_level: 0-4 proficiency level, if known. Takes precedence
            over the percentage.
        policy: The teacher's grade floors.

    Returns:
        An integer grade. With work present it always lies in
        [grade_floor_with_effort, 95].
    """
    policy = policy or GradePolicy()

    if not has_work:
        return policy.grade_floor

    level = _usable_level(proficiency_level)
    percentage = _usable_percentage(raw_percentage)

    if level is not None:
        grade = grade_for_level(level, policy)
        if percentage is not None:
            from_percentage = grade_for_percentage(percentage, policy)
            if abs(grade - from_percentage) >= MAJOR_DIFFERENCE_THRESHOLD:
                logger.warning(
                    "Proficiency level %d (grade %d) disagrees with %.0f%% (grade %d); using the level",
                    level, grade, percentage, from_percentage,
                )
        return grade

    if percentage is not None:
        return grade_for_percentage(percentage, policy)

    return policy.grade_floor_with_effort


def override_grade(score: float, policy: Optional[GradePolicy] = None) -> int:
    """A teacher-entered grade. The only path that may reach 100."""
    policy = policy or GradePolicy()
    return _clamp(round_half_up(float(score)), policy.grade_floor, MAX_OVERRIDE_GRADE)


def normalize_blank(policy: Optional[GradePolicy] = None) -> NormalizedGrade:
    policy = policy or GradePolicy()
    return NormalizedGrade(final_grade=policy.grade_floor, has_work=False, source_tag=None)


def normalize_outcome(
    outcome: GradingOutcome,
    has_work: bool,
    policy: Optional[GradePolicy] = None,
) -> NormalizedGrade:
    """Turn the selected outcome into the grade that gets saved."""
    policy = policy or GradePolicy()

    if not has_work:
        return NormalizedGrade(policy.grade_floor, False, outcome.tag)

    tag = outcome.tag
    if tag is OutcomeTag.AI or tag is OutcomeTag.TEACHER_GUIDED:
        final = calculate_grade(True, outcome.raw_percentage, outcome.proficiency_level, policy)
        return NormalizedGrade(final, True, tag)
    elif tag is OutcomeTag.MANUAL:
        return NormalizedGrade(override_grade(outcome.suggested_grade, policy), True, tag, overridden=True)
    else:
        raise ValueError(f"Unhandled outcome tag: {tag!r}")
