"""The scan-to-grade pipeline.

One ScanSession moves strictly forward:

    capture -> identify -> extract -> grade -> compare/adjudicate -> normalize -> save

With several questions selected, each save loops back to choosing a grading
strategy for the next question until the last one is saved.

Every transition is checkpointed through the recovery manager, so a crash
after grading resumes with the billed outcomes intact instead of grading
again.
"""

import asyncio
import logging
from typing import Mapping, Optional, Union

from .config import DEFAULT_SESSION_KEY
from .database import Gradebook
from .errors import GradingFailure, InputError, PolicyViolation
from .extraction import ClaudeTextExtractor, ExtractionBatch, PageImage, TextExtractor, extract_pages
from .extraction.images import page_from_bytes
from .grading.adjudicator import adjudicate as decide, auto_select, compare
from .grading.grader import (
    STRATEGY_TAGS,
    ClaudeGradingOracle,
    GradingExecutor,
    GradingMode,
    GradingRequest,
    StrategyResults,
    manual_outcome,
)
from .grading.normalization import GradePolicy, load_grade_policy, normalize_blank, normalize_outcome, override_grade
from .grading.outcomes import NormalizedGrade, OutcomeTag
from .grading.qr_scanner import Identification, QRResolver
from .ledger import FeedbackLedger
from .session import (
    FileSessionStore,
    MemorySessionStore,
    ScanSession,
    ScanState,
    SessionRecoveryManager,
    SessionRepository,
)

logger = logging.getLogger("scangrade.pipeline")

RERUNNABLE_STATES = {ScanState.GRADING, ScanState.COMPARING, ScanState.ADJUDICATING}
QUESTION_SELECTION_STATES = {
    ScanState.CAPTURING,
    ScanState.IDENTIFYING,
    ScanState.EXTRACTING,
    ScanState.CHOOSING_STRATEGY,
}


def _as_page(image: Union[PageImage, bytes], page_number: int) -> PageImage:
    if isinstance(image, PageImage):
        return PageImage(page_number, image.data, image.media_type)
    return page_from_bytes(image, page_number)


class ScanPipeline:
    """Drive scan sessions through every stage with injected collaborators."""

    def __init__(
        self,
        extractor: TextExtractor,
        executor: GradingExecutor,
        resolver: Optional[QRResolver] = None,
        recovery: Optional[SessionRecoveryManager] = None,
        gradebook: Optional[Gradebook] = None,
        ledger: Optional[FeedbackLedger] = None,
        policy: Optional[GradePolicy] = None,
    ):
        self.extractor = extractor
        self.executor = executor
        self.resolver = resolver or QRResolver()
        self.recovery = recovery or SessionRecoveryManager(SessionRepository(MemorySessionStore()))
        self.gradebook = gradebook or Gradebook()
        self.ledger = ledger or FeedbackLedger()
        self.policy = policy or load_grade_policy()

    @classmethod
    def from_config(cls) -> "ScanPipeline":
        """Claude for OCR and grading, sessions on disk, policy from POLICY_FILE."""
        return cls(
            extractor=ClaudeTextExtractor(),
            executor=GradingExecutor(ClaudeGradingOracle()),
            recovery=SessionRecoveryManager(SessionRepository(FileSessionStore())),
        )

    async def _move(self, session: ScanSession, state: ScanState) -> None:
        session.transition(state)
        await self.recovery.checkpoint(session)

    # --- Capture and identification ---

    def start(self, key: str = DEFAULT_SESSION_KEY) -> ScanSession:
        logger.info("Starting scan session %s", key)
        return ScanSession(key=key)

    def capture(self, session: ScanSession, image: Union[PageImage, bytes]) -> PageImage:
        """Add the next page of the submission."""
        if session.state is not ScanState.CAPTURING:
            raise PolicyViolation("Pages can only be added while capturing. Start a new scan.")
        page = _as_page(image, len(session.pages) + 1)
        session.pages.append(page)
        logger.debug("Session %s: captured page %d", session.key, page.page_number)
        return page

    async def identify(self, session: ScanSession) -> Optional[Identification]:
        """Read the student code on the first page. None means pick manually."""
        if not session.pages:
            raise InputError("No image was captured.")

        await self._move(session, ScanState.IDENTIFYING)
        identification = await self.resolver.resolve(session.pages[0].data)

        student = None
        if identification:
            student = await asyncio.to_thread(self.gradebook.find_student, identification.student_id)
            if student is None:
                logger.info("QR code names student %s, who is not on the roster", identification.student_id)

        if student is None:
            session.needs_manual_selection = True
            logger.info("Session %s: student not identified, manual selection required", session.key)
            return None

        session.identification = identification
        session.student_id = student.code
        session.class_id = student.class_id
        session.needs_manual_selection = False
        if identification.question_id and not session.selected_question_ids:
            session.selected_question_ids = [identification.question_id]
            session.current_question_index = 0
        logger.info("Session %s: identified %s (%s)", session.key, student.name, student.code)
        return identification

    async def select_student(self, session: ScanSession, student_id: str, class_id: Optional[str] = None) -> None:
        """Bind the session to a roster student chosen by the teacher."""
        if session.is_finished:
            raise PolicyViolation("This scan is already finished.")

        student = await asyncio.to_thread(self.gradebook.find_student, student_id)
        if student is None:
            raise PolicyViolation(f"Student {student_id} is not on the roster.")

        session.student_id = student.code
        session.class_id = class_id or student.class_id
        session.needs_manual_selection = False
        await self.recovery.checkpoint(session)

    async def select_questions(self, session: ScanSession, question_ids) -> list[str]:
        """Grade the scan once per question, in the order given."""
        if session.state not in QUESTION_SELECTION_STATES or session.multi_question_results:
            raise PolicyViolation("Questions can only be chosen before grading starts.")

        selected = []
        for question_id in question_ids:
            question_id = str(question_id).strip()
            if question_id and question_id not in selected:
                selected.append(question_id)

        session.selected_question_ids = selected
        session.current_question_index = 0
        await self.recovery.checkpoint(session)
        logger.info("Session %s: grading question(s) %s", session.key, ", ".join(selected) or "-")
        return selected

    # --- Extraction ---

    async def extract(self, session: ScanSession) -> ExtractionBatch:
        """Transcribe every page and decide whether there is work to grade."""
        if not session.pages:
            raise InputError("No image was captured.")

        await self._move(session, ScanState.EXTRACTING)
        batch = await extract_pages(session.pages, self.extractor)
        session.extraction = batch

        if batch.has_work:
            await self._move(session, ScanState.CHOOSING_STRATEGY)
        else:
            logger.info("Session %s: every page is blank, skipping grading", session.key)
            await self._move(session, ScanState.NORMALIZING)
        return batch

    # --- Grading ---

    def _build_request(self, session: ScanSession) -> GradingRequest:
        blank = {r.page_number for r in session.extraction.pages if r.is_blank}
        student = session.identification.student_id if session.identification else session.student_id
        return GradingRequest(
            text=session.extraction.gradable_text,
            images=tuple(p for p in session.pages if p.page_number not in blank),
            reference_image=session.reference_image,
            question_id=session.current_question_id,
            student_name=student,
        )

    async def _surface_failure(self, session: ScanSession, failure: GradingFailure):
        await self._move(session, ScanState.CHOOSING_STRATEGY)
        raise failure

    async def grade(
        self,
        session: ScanSession,
        mode: Union[GradingMode, str],
        reference_image: Union[PageImage, bytes, None] = None,
        manual_score: Optional[float] = None,
        possible: float = 100,
    ) -> StrategyResults:
        """Run the requested strategies and compare their outcomes.

        Raises:
            PolicyViolation: If extraction has not run, nothing is gradable or
                a required input (answer guide, manual score) is missing.
            GradingFailure: If every requested strategy failed after its retry.
        """
        mode = GradingMode(mode)

        if session.extraction is None:
            raise PolicyViolation("Extract text from the scan before grading.")
        if not session.has_work:
            raise PolicyViolation("No student work was detected, so there is nothing to grade.")

        if reference_image is not None:
            session.reference_image = _as_page(reference_image, 1)
        if mode in (GradingMode.TEACHER_GUIDED, GradingMode.BOTH) and session.reference_image is None:
            raise PolicyViolation("Upload the answer guide before using teacher-guided grading.")
        if mode is GradingMode.MANUAL and manual_score is None:
            raise PolicyViolation("Enter a score for manual grading.")

        if session.state in RERUNNABLE_STATES:
            logger.info("Session %s: re-running grading from %s", session.key, session.state.value)
            await self._move(session, ScanState.CHOOSING_STRATEGY)

        session.reset_grading()
        session.grading_mode = mode.value
        await self._move(session, ScanState.GRADING)

        if mode is GradingMode.MANUAL:
            try:
                outcome = manual_outcome(manual_score, possible)
            except InputError:
                await self._move(session, ScanState.CHOOSING_STRATEGY)
                raise
            results = StrategyResults(outcomes={OutcomeTag.MANUAL: outcome})
        elif len(mode.strategies) == 1:
            strategy = mode.strategies[0]
            try:
                outcome = await self.executor.run(strategy, self._build_request(session))
            except GradingFailure as e:
                session.failures[STRATEGY_TAGS[strategy]] = e
                await self._surface_failure(session, e)
            results = StrategyResults(outcomes={outcome.tag: outcome})
        else:
            results = await self.executor.run_both(self._build_request(session), mode.strategies)
            session.failures = dict(results.failures)
            if not results.succeeded:
                first = next(iter(results.failures.values()))
                await self._surface_failure(session, first)
            for tag, failure in results.failures.items():
                logger.warning("Session %s: %s strategy failed (%s), continuing without it", session.key, tag.value, failure.reason.value)

        session.outcomes = dict(results.outcomes)
        ai = session.outcomes.get(OutcomeTag.AI)
        session.raw_analysis = ai.raw_response if ai else None

        await self._move(session, ScanState.COMPARING)
        await self._compare(session)
        return results

    async def _compare(self, session: ScanSession) -> None:
        outcomes = list(session.outcomes.values())
        comparison = compare(outcomes)
        if comparison.requires_human:
            logger.info("Session %s: results differ by %d points, teacher must choose", session.key, comparison.delta)
            await self._move(session, ScanState.ADJUDICATING)
            return

        session.adjudication = auto_select(outcomes)
        await self._move(session, ScanState.NORMALIZING)

    async def adjudicate(
        self,
        session: ScanSession,
        choice: Union[OutcomeTag, str, None] = None,
        declined: bool = False,
    ):
        """Settle which outcome counts.

        In `adjudicating` a choice (or an explicit decline) is required.
        After an automatic selection the teacher may still pick the other
        outcome, as long as the grade has not been normalized.
        """
        if session.state is ScanState.NORMALIZING and session.normalized_grade is None and session.outcomes:
            if choice is None and not declined:
                return session.adjudication
        elif session.state is not ScanState.ADJUDICATING:
            raise PolicyViolation("There are no grading results waiting for a decision.")

        session.adjudication = decide(
            list(session.outcomes.values()),
            OutcomeTag(choice) if choice is not None else None,
            declined,
        )
        if session.state is ScanState.ADJUDICATING:
            await self._move(session, ScanState.NORMALIZING)
        return session.adjudication

    # --- Normalization and saving ---

    async def normalize(self, session: ScanSession, override: Optional[float] = None) -> NormalizedGrade:
        """Produce the final grade, once.

        `override` is a teacher-entered grade; it may reach 100 and is
        recorded in the feedback ledger.
        """
        if session.state is not ScanState.NORMALIZING:
            raise PolicyViolation("Finish grading before computing the final grade.")
        if session.normalized_grade is not None:
            raise PolicyViolation("The final grade has already been computed.")

        if not session.has_work:
            if override is not None:
                logger.warning("Session %s: ignoring override %s for a blank submission", session.key, override)
            session.normalized_grade = normalize_blank(self.policy)
            logger.info("Session %s: no work detected, grade %d", session.key, session.normalized_grade.final_grade)
            return session.normalized_grade

        outcome = session.selected_outcome
        if outcome is None:
            raise PolicyViolation("Select a grading result before computing the final grade.")

        if override is not None:
            grade = NormalizedGrade(override_grade(override, self.policy), True, outcome.tag, overridden=True)
            await asyncio.to_thread(
                self.ledger.record_grade_override,
                session.key, outcome, grade.final_grade, None, session.student_id, session.current_question_id,
            )
        else:
            grade = normalize_outcome(outcome, True, self.policy)

        session.normalized_grade = grade
        logger.info(
            "Session %s: final grade %d from %s result%s",
            session.key, grade.final_grade, outcome.tag.value, " (override)" if grade.overridden else "",
        )
        return grade

    async def _record(self, session: ScanSession) -> int:
        record_id = await asyncio.to_thread(self.gradebook.record, session)
        session.saved_record_id = record_id
        question_id = session.current_question_id
        if question_id:
            grade = session.normalized_grade
            session.multi_question_results[question_id] = {
                "grade": grade.final_grade,
                "sourceOutcomeTag": grade.source_tag.value if grade.source_tag else None,
                "recordId": record_id,
            }
        return record_id

    async def save(self, session: ScanSession) -> int:
        """Write the current question's grade to the gradebook.

        With more selected questions left, the session moves back to
        `choosing-strategy` for the next one and stays checkpointed. The
        slot is cleared once the last question is saved. A blank submission
        saves the floor for every selected question at once.
        """
        if session.state is not ScanState.NORMALIZING or session.normalized_grade is None:
            raise PolicyViolation("There is no final grade to save yet.")
        if not session.student_id:
            raise PolicyViolation("Select a student before saving.")

        record_id = await self._record(session)

        if session.has_next_question and session.has_work:
            session.current_question_index += 1
            session.reset_grading()
            await self._move(session, ScanState.CHOOSING_STRATEGY)
            logger.info("Session %s: moving on to question %s", session.key, session.current_question_id)
            return record_id

        while session.has_next_question:
            session.current_question_index += 1
            record_id = await self._record(session)

        await self._move(session, ScanState.SAVED)
        await self.recovery.discard(session.key)
        return record_id

    async def abandon(self, session: ScanSession) -> None:
        session.transition(ScanState.ABANDONED)
        await self.recovery.discard(session.key)
        logger.info("Session %s abandoned", session.key)

    async def resume(self, key: str = DEFAULT_SESSION_KEY) -> Optional[ScanSession]:
        """Pick up a checkpointed session. Never re-runs a grading strategy."""
        session = await self.recovery.recover(key)
        if session is None:
            return None

        if session.state is ScanState.COMPARING and session.outcomes:
            await self._compare(session)
        logger.info("Resumed session %s in state %s", key, session.state.value)
        return session

    # --- Feedback ---

    async def confirm_grade(self, session: ScanSession) -> bool:
        outcome = session.selected_outcome
        if outcome is None:
            return False
        final = session.normalized_grade.final_grade if session.normalized_grade else None
        return await asyncio.to_thread(
            self.ledger.record_grade_confirmation,
            session.key, outcome, final, session.student_id, session.current_question_id,
        )

    async def record_misconceptions(self, session: ScanSession, tag: Union[OutcomeTag, str], decisions: Mapping[str, bool]) -> bool:
        return await asyncio.to_thread(
            self.ledger.record_misconception_decisions, session.key, OutcomeTag(tag), decisions, session.student_id,
        )

    async def record_interpretations(self, session: ScanSession, decisions, context: Optional[str] = None) -> bool:
        """`decisions` pairs each reading of the work with True (approved) or False."""
        return await asyncio.to_thread(
            self.ledger.record_interpretations, session.key, list(decisions), session.student_id, context,
        )
