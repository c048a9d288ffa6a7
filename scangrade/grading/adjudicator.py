"""Reconcile the outcomes of two grading strategies for one submission."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from ..config import MAJOR_DIFFERENCE_THRESHOLD
from ..errors import AdjudicationRequired, PolicyViolation
from .outcomes import GradingOutcome, OutcomeTag

logger = logging.getLogger("scangrade.grading")

# Reference-guided used more ground truth than autonomous; manual comes last.
PREFERENCE_ORDER = (OutcomeTag.TEACHER_GUIDED, OutcomeTag.AI, OutcomeTag.MANUAL)


class SelectionMethod(str, Enum):
    AUTOMATIC = "automatic"
    HUMAN = "human"
    TIE_BREAK = "tie-break"


@dataclass(frozen=True)
class Comparison:
    delta: int
    major_difference: bool

    @property
    def requires_human(self) -> bool:
        return self.major_difference


@dataclass(frozen=True)
class AdjudicationDecision:
    selected_tag: OutcomeTag
    delta: int
    method: SelectionMethod

    @property
    def automatic(self) -> bool:
        return self.method is SelectionMethod.AUTOMATIC

    def to_dict(self) -> dict:
        return {"selectedTag": self.selected_tag.value, "delta": self.delta, "method": self.method.value}

    @classmethod
    def from_dict(cls, data: dict) -> "AdjudicationDecision":
        return cls(OutcomeTag(data["selectedTag"]), int(data.get("delta", 0)), SelectionMethod(data["method"]))


def _by_tag(outcomes: Sequence[GradingOutcome]) -> dict[OutcomeTag, GradingOutcome]:
    if not outcomes:
        raise PolicyViolation("No grading result to choose from. Grade the submission first.")
    if len(outcomes) > 2:
        raise PolicyViolation(f"Expected at most two grading results, got {len(outcomes)}.")

    indexed = {o.tag: o for o in outcomes}
    if len(indexed) != len(outcomes):
        raise PolicyViolation("Two grading results came from the same strategy.")
    return indexed


def compare(outcomes: Sequence[GradingOutcome], threshold: int = MAJOR_DIFFERENCE_THRESHOLD) -> Comparison:
    """Delta between the two suggested grades. Order does not matter."""
    indexed = _by_tag(outcomes)
    if len(indexed) == 1:
        return Comparison(delta=0, major_difference=False)

    first, second = indexed.values()
    delta = abs(first.suggested_grade - second.suggested_grade)
    return Comparison(delta=delta, major_difference=delta >= threshold)


def _preferred(indexed: dict[OutcomeTag, GradingOutcome]) -> OutcomeTag:
    for tag in PREFERENCE_ORDER:
        if tag in indexed:
            return tag
    raise PolicyViolation("No grading result to choose from.")


def auto_select(
    outcomes: Sequence[GradingOutcome],
    threshold: int = MAJOR_DIFFERENCE_THRESHOLD,
) -> AdjudicationDecision:
    """Pick without a human. Raises AdjudicationRequired on a major difference."""
    indexed = _by_tag(outcomes)
    comparison = compare(outcomes, threshold)

    if comparison.requires_human:
        grades = ", ".join(f"{t.value} {o.suggested_grade}" for t, o in indexed.items())
        raise AdjudicationRequired(
            f"The grading results differ by {comparison.delta} points ({grades}). "
            "Choose which result to keep."
        )

    decision = AdjudicationDecision(_preferred(indexed), comparison.delta, SelectionMethod.AUTOMATIC)
    logger.info("Auto-selected %s result (delta %d)", decision.selected_tag.value, decision.delta)
    return decision


def select(outcomes: Sequence[GradingOutcome], tag: OutcomeTag) -> AdjudicationDecision:
    """Record a human choice, allowed at any delta."""
    indexed = _by_tag(outcomes)
    tag = OutcomeTag(tag)
    if tag not in indexed:
        raise PolicyViolation(f"There is no {tag.value} result to select.")

    decision = AdjudicationDecision(tag, compare(outcomes).delta, SelectionMethod.HUMAN)
    logger.info("Teacher selected %s result (delta %d)", tag.value, decision.delta)
    return decision


def resolve_declined(outcomes: Sequence[GradingOutcome]) -> AdjudicationDecision:
    """The teacher declined to choose: fall back to the preference order."""
    indexed = _by_tag(outcomes)
    decision = AdjudicationDecision(_preferred(indexed), compare(outcomes).delta, SelectionMethod.TIE_BREAK)
    logger.info("Tie-break selected %s result (delta %d)", decision.selected_tag.value, decision.delta)
    return decision


def adjudicate(
    outcomes: Sequence[GradingOutcome],
    choice: Optional[OutcomeTag] = None,
    declined: bool = False,
) -> AdjudicationDecision:
    """One entry point: human choice, tie-break, or automatic selection."""
    if choice is not None:
        return select(outcomes, choice)
    if declined:
        return resolve_declined(outcomes)
    return auto_select(outcomes)
