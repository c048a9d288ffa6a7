"""Scan session state machine and its durable record format."""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..errors import GradingFailure, InvalidTransition
from ..extraction.extractor import ExtractionBatch
from ..extraction.images import PageImage
from ..grading.adjudicator import AdjudicationDecision
from ..grading.outcomes import GradingOutcome, NormalizedGrade, OutcomeTag
from ..grading.qr_scanner import Identification

logger = logging.getLogger("scangrade.session")


class ScanState(str, Enum):
    CAPTURING = "capturing"
    IDENTIFYING = "identifying"
    EXTRACTING = "extracting"
    CHOOSING_STRATEGY = "choosing-strategy"
    GRADING = "grading"
    COMPARING = "comparing"
    ADJUDICATING = "adjudicating"
    NORMALIZING = "normalizing"
    SAVED = "saved"
    ABANDONED = "abandoned"


# States where meaningful (billed, irreversible) work has happened
PERSISTABLE_STATES = frozenset({
    ScanState.CHOOSING_STRATEGY,
    ScanState.GRADING,
    ScanState.COMPARING,
    ScanState.ADJUDICATING,
})

TERMINAL_STATES = frozenset({ScanState.SAVED, ScanState.ABANDONED})

TRANSITIONS = {
    ScanState.CAPTURING: {ScanState.IDENTIFYING, ScanState.EXTRACTING},
    ScanState.IDENTIFYING: {ScanState.EXTRACTING},
    # All-blank submissions skip grading entirely
    ScanState.EXTRACTING: {ScanState.CHOOSING_STRATEGY, ScanState.NORMALIZING},
    ScanState.CHOOSING_STRATEGY: {ScanState.GRADING},
    # Back to choosing-strategy after a surfaced grading failure
    ScanState.GRADING: {ScanState.COMPARING, ScanState.CHOOSING_STRATEGY},
    ScanState.COMPARING: {ScanState.ADJUDICATING, ScanState.NORMALIZING, ScanState.CHOOSING_STRATEGY},
    ScanState.ADJUDICATING: {ScanState.NORMALIZING, ScanState.CHOOSING_STRATEGY},
    # On to the next selected question once the current one is saved
    ScanState.NORMALIZING: {ScanState.SAVED, ScanState.CHOOSING_STRATEGY},
    ScanState.SAVED: set(),
    ScanState.ABANDONED: set(),
}


def can_transition(current: ScanState, target: ScanState) -> bool:
    if target is ScanState.ABANDONED:
        return current not in TERMINAL_STATES
    return target in TRANSITIONS[current]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ScanSession:
    """Everything known about one submission while it moves through the pipeline."""
    key: str
    state: ScanState = ScanState.CAPTURING
    pages: list[PageImage] = field(default_factory=list)
    reference_image: Optional[PageImage] = None
    identification: Optional[Identification] = None
    needs_manual_selection: bool = False
    class_id: Optional[str] = None
    student_id: Optional[str] = None
    selected_question_ids: list[str] = field(default_factory=list)
    current_question_index: int = 0
    multi_question_results: dict = field(default_factory=dict)
    grading_mode: Optional[str] = None
    extraction: Optional[ExtractionBatch] = None
    outcomes: dict[OutcomeTag, GradingOutcome] = field(default_factory=dict)
    failures: dict[OutcomeTag, GradingFailure] = field(default_factory=dict)
    adjudication: Optional[AdjudicationDecision] = None
    normalized_grade: Optional[NormalizedGrade] = None
    raw_analysis: Optional[str] = None
    saved_record_id: Optional[int] = None

    def transition(self, target: ScanState) -> None:
        """Move to `target` or raise InvalidTransition."""
        target = ScanState(target)
        if not can_transition(self.state, target):
            raise InvalidTransition(
                f"Cannot move a scan from {self.state.value} to {target.value}."
            )
        logger.debug("Session %s: %s -> %s", self.key, self.state.value, target.value)
        self.state = target

    @property
    def is_persistable(self) -> bool:
        return self.state in PERSISTABLE_STATES

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def has_work(self) -> bool:
        return self.extraction is not None and self.extraction.has_work

    @property
    def current_question_id(self) -> Optional[str]:
        if not self.selected_question_ids:
            return None
        index = min(self.current_question_index, len(self.selected_question_ids) - 1)
        return self.selected_question_ids[index]

    @property
    def has_next_question(self) -> bool:
        return self.current_question_index + 1 < len(self.selected_question_ids)

    @property
    def selected_outcome(self) -> Optional[GradingOutcome]:
        if self.adjudication is None:
            return None
        return self.outcomes.get(self.adjudication.selected_tag)

    def reset_grading(self) -> None:
        """Drop outcomes and decisions before a re-run."""
        self.outcomes = {}
        self.failures = {}
        self.adjudication = None
        self.normalized_grade = None
        self.raw_analysis = None

    def to_record(self, timestamp: Optional[int] = None) -> dict:
        """The JSON-ready snapshot written to the session slot."""
        result = self.outcomes.get(OutcomeTag.AI) or self.outcomes.get(OutcomeTag.MANUAL)
        guided = self.outcomes.get(OutcomeTag.TEACHER_GUIDED)
        return {
            "scanState": self.state.value,
            "finalImage": self.pages[0].to_data_url() if self.pages else None,
            "additionalImages": [p.to_data_url() for p in self.pages[1:]],
            "classId": self.class_id,
            "studentId": self.student_id,
            "identification": self.identification.to_dict() if self.identification else None,
            "selectedQuestionIds": list(self.selected_question_ids),
            "gradingMode": self.grading_mode,
            "result": result.to_dict() if result else None,
            "teacherGuidedResult": guided.to_dict() if guided else None,
            "rawAnalysis": self.raw_analysis,
            "answerGuideImage": self.reference_image.to_data_url() if self.reference_image else None,
            "multiQuestionResults": dict(self.multi_question_results),
            "currentQuestionIndex": self.current_question_index,
            "extraction": self.extraction.to_dict() if self.extraction else None,
            "timestamp": timestamp if timestamp is not None else _now_ms(),
        }

    @classmethod
    def from_record(cls, key: str, record: dict) -> "ScanSession":
        """Rebuild a session from a stored record.

        Raises:
            KeyError, ValueError, TypeError: If the record is malformed.
        """
        images = [record["finalImage"]] if record.get("finalImage") else []
        images.extend(record.get("additionalImages") or [])
        pages = [PageImage.from_data_url(url, page_number=i + 1) for i, url in enumerate(images)]

        outcomes = {}
        for name in ("result", "teacherGuidedResult"):
            if record.get(name):
                outcome = GradingOutcome.from_dict(record[name])
                outcomes[outcome.tag] = outcome

        guide = record.get("answerGuideImage")
        identification = Identification.from_dict(record.get("identification"))

        return cls(
            key=key,
            state=ScanState(record["scanState"]),
            pages=pages,
            reference_image=PageImage.from_data_url(guide) if guide else None,
            identification=identification,
            class_id=record.get("classId"),
            student_id=record.get("studentId"),
            needs_manual_selection=not record.get("studentId"),
            selected_question_ids=list(record.get("selectedQuestionIds") or []),
            current_question_index=int(record.get("currentQuestionIndex") or 0),
            multi_question_results=dict(record.get("multiQuestionResults") or {}),
            grading_mode=record.get("gradingMode"),
            extraction=ExtractionBatch.from_dict(record.get("extraction")),
            outcomes=outcomes,
            raw_analysis=record.get("rawAnalysis"),
        )
